from collections.abc import Mapping, Sequence

from pymodbus.client.mixin import ModbusClientMixin

from modbus2mqtt.exception import DecodingError
from modbus2mqtt.model.bit_range import BitRange
from modbus2mqtt.model.enum.value_type_enum import ValueType
from modbus2mqtt.model.modbus_value import TypedValue

WORD_MASK = 0xFFFF

_DATATYPE_BY_VALUE_TYPE: dict[ValueType, ModbusClientMixin.DATATYPE] = {
    ValueType.INT16: ModbusClientMixin.DATATYPE.INT16,
    ValueType.UINT16: ModbusClientMixin.DATATYPE.UINT16,
    ValueType.INT32: ModbusClientMixin.DATATYPE.INT32,
    ValueType.UINT32: ModbusClientMixin.DATATYPE.UINT32,
    ValueType.FLOAT32: ModbusClientMixin.DATATYPE.FLOAT32,
    ValueType.INT64: ModbusClientMixin.DATATYPE.INT64,
    ValueType.UINT64: ModbusClientMixin.DATATYPE.UINT64,
    ValueType.FLOAT64: ModbusClientMixin.DATATYPE.FLOAT64,
}


def decode_value(words: Sequence[int], value_type: ValueType, float_interpretation: bool = False) -> TypedValue:
    """
    Decode raw 16-bit register words into a typed value.

    Word order is most significant word first:
        - 16-bit kinds consume 1 word, 32-bit kinds 2, 64-bit kinds 4
        - float_interpretation reinterprets the bit pattern of a 32-bit integer
          kind as IEEE-754 binary32; no numeric cast

    Example:
        [0x4228, 0x0000] as uint32                          -> 1110258688
        [0x4228, 0x0000] as uint32 with float_interpretation -> 42.0

    Raises:
        DecodingError: word count does not match the value type, or float
            interpretation was requested on a kind that cannot carry it
    """
    if len(words) != value_type.word_count:
        raise DecodingError(f"{value_type} needs {value_type.word_count} word(s), got {len(words)}: {list(words)}")

    target_type: ValueType = value_type
    if float_interpretation:
        if not value_type.supports_float_interpretation:
            raise DecodingError(f"float interpretation is not defined for {value_type}")
        target_type = value_type.float_counterpart

    registers: list[int] = [int(w) & WORD_MASK for w in words]
    raw = ModbusClientMixin.convert_from_registers(
        registers, data_type=_DATATYPE_BY_VALUE_TYPE[target_type], word_order="big"
    )
    return TypedValue(kind=target_type, value=float(raw) if not target_type.is_integer else int(raw))


def encode_value(typed_value: TypedValue) -> list[int]:
    """Inverse of decode_value: typed value -> register words (most significant first)."""
    return ModbusClientMixin.convert_to_registers(
        typed_value.value, data_type=_DATATYPE_BY_VALUE_TYPE[typed_value.kind], word_order="big"
    )


def extract_bit_field(value: int, bit_range: BitRange) -> int:
    """Right-shift by range start, then mask to the range width."""
    return bit_range.extract(value)


def lookup_mapped_label(raw: int, value_map: Mapping[int, str]) -> str | None:
    return value_map.get(raw)
