from enum import StrEnum


class PubSubTopic(StrEnum):
    VALUE_CHANGED = "value_changed"
