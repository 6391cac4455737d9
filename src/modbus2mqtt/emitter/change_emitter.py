import json
import logging
from dataclasses import dataclass
from typing import Any

from modbus2mqtt.model.value_change import BitFieldChange, ValueChange

logger = logging.getLogger("ChangeEmitter")


@dataclass(frozen=True)
class OutboundMessage:
    topic: str
    payload: str


class ChangeEmitter:
    """
    Turns one ValueChange into the messages to publish.

    The parent value goes to the definition topic unless the definition is hidden.
    Each reported bit field goes to its own path, when it has one.
    """

    def build_messages(self, change: ValueChange) -> list[OutboundMessage]:
        definition = change.definition
        message_list: list[OutboundMessage] = []

        if definition.is_visible:
            message_list.append(OutboundMessage(topic=definition.topic, payload=change.value.to_json()))
        else:
            logger.debug(f"[Emitter] {definition.label} is hidden, parent value not published")

        for bit_change in change.bit_changes:
            topic: str | None = bit_change.bit_field.topic_for(definition.topic)
            if topic is None:
                continue
            message_list.append(OutboundMessage(topic=topic, payload=self._bit_payload(change, bit_change)))

        return message_list

    @staticmethod
    def _bit_payload(change: ValueChange, bit_change: BitFieldChange) -> str:
        bit_field = bit_change.bit_field
        payload: dict[str, Any] = {
            "address": change.definition.address,
            "bits": str(bit_field.range),
            "name": bit_field.name,
            "value": bit_change.value,
        }
        if change.observed_at is not None:
            payload["date"] = change.observed_at.isoformat(timespec="seconds")
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)
