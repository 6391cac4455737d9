import re
from dataclasses import dataclass

from modbus2mqtt.exception import BitRangeOutOfBounds, InvalidBitRangeOrder, InvalidBitRangeSyntax

_BIT_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


@dataclass(frozen=True, order=True)
class BitRange:
    """Inclusive span of bits within a register value."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.start > self.end:
            raise ValueError(f"start must be <= end, got {self.start}-{self.end}")

    @classmethod
    def parse(cls, text: str, bit_width: int) -> "BitRange":
        """
        Parse '<n>' or '<a>-<b>'.

        Raises:
            InvalidBitRangeSyntax: malformed text
            InvalidBitRangeOrder: a > b
            BitRangeOutOfBounds: end >= bit_width
        """
        match = _BIT_RANGE_PATTERN.match(text) if isinstance(text, str) else None
        if not match:
            raise InvalidBitRangeSyntax(str(text))

        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) is not None else start

        if start > end:
            raise InvalidBitRangeOrder(text)
        if end >= bit_width:
            raise BitRangeOutOfBounds(text, bit_width)

        return cls(start=start, end=end)

    @property
    def width(self) -> int:
        return self.end - self.start + 1

    @property
    def mask(self) -> int:
        return (1 << self.width) - 1

    def overlaps(self, other: "BitRange") -> bool:
        return self.start <= other.end and other.start <= self.end

    def extract(self, value: int) -> int:
        """Shift right by start, then keep width bits."""
        return (int(value) >> self.start) & self.mask

    def __str__(self) -> str:
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"
