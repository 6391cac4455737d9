from enum import StrEnum


class ValueType(StrEnum):
    """
    Register value kinds.

    word_count: number of 16-bit registers consumed (most significant word first)
    bit_width:  width used for bit range validation
    """

    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    FLOAT32 = "float32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT64 = "float64"

    @property
    def word_count(self) -> int:
        return self.bit_width // 16

    @property
    def bit_width(self) -> int:
        return _BIT_WIDTH[self]

    @property
    def is_integer(self) -> bool:
        return self not in (ValueType.FLOAT32, ValueType.FLOAT64)

    @property
    def is_signed(self) -> bool:
        return self in (ValueType.INT16, ValueType.INT32, ValueType.INT64)

    @property
    def supports_float_interpretation(self) -> bool:
        return self.is_integer and self.bit_width == 32

    @property
    def float_counterpart(self) -> "ValueType":
        """Target kind of float interpretation (32-bit integer kinds only)."""
        if not self.supports_float_interpretation:
            raise ValueError(f"{self} has no float counterpart")
        return ValueType.FLOAT32


_BIT_WIDTH: dict[ValueType, int] = {
    ValueType.INT16: 16,
    ValueType.UINT16: 16,
    ValueType.INT32: 32,
    ValueType.UINT32: 32,
    ValueType.FLOAT32: 32,
    ValueType.INT64: 64,
    ValueType.UINT64: 64,
    ValueType.FLOAT64: 64,
}
