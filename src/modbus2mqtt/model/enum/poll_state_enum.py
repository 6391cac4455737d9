from enum import StrEnum


class PollStateEnum(StrEnum):
    IDLE = "idle"
    DUE = "due"
    READING = "reading"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    EMITTING = "emitting"
    FAILED = "failed"
    BACKOFF = "backoff"
