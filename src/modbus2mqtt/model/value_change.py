from dataclasses import dataclass
from datetime import datetime

from modbus2mqtt.model.modbus_value import ModbusValue
from modbus2mqtt.schema.definition_schema import BitFieldDefinition, ModbusDefinition


@dataclass(frozen=True)
class BitFieldChange:
    bit_field: BitFieldDefinition
    value: int


@dataclass(frozen=True)
class ValueChange:
    """Message from a device poller to the emitter: one definition's raw words changed."""

    device: str
    definition: ModbusDefinition
    words: tuple[int, ...]
    value: ModbusValue
    bit_changes: tuple[BitFieldChange, ...]
    observed_at: datetime
