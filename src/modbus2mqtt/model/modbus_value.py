import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from modbus2mqtt.model.enum.value_type_enum import ValueType


@dataclass(frozen=True)
class TypedValue:
    """
    Decoded value tagged with its kind.

    Integer kinds hold an int inside the kind's range, float kinds hold a float.
    """

    kind: ValueType
    value: int | float

    def __post_init__(self) -> None:
        if self.kind.is_integer:
            if isinstance(self.value, bool) or not isinstance(self.value, int):
                raise TypeError(f"{self.kind} requires an int, got {type(self.value).__name__}")
            low, high = _int_bounds(self.kind)
            if not low <= self.value <= high:
                raise ValueError(f"{self.value} out of range for {self.kind} [{low}, {high}]")
        elif not isinstance(self.value, float):
            raise TypeError(f"{self.kind} requires a float, got {type(self.value).__name__}")

    @property
    def is_integer(self) -> bool:
        return self.kind.is_integer

    def as_json_value(self) -> int | float | str | None:
        # NaN / inf are not valid JSON numbers
        if isinstance(self.value, float) and not math.isfinite(self.value):
            return str(self.value)
        return self.value

    def __str__(self) -> str:
        return f"{self.kind}({self.value})"


@dataclass(frozen=True)
class ModbusValue:
    address: int
    value: TypedValue
    label: str | None = None
    title: str | None = None
    observed_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "address": self.address,
            "type": self.value.kind.value,
            "value": self.value.as_json_value(),
        }
        if self.label is not None:
            payload["label"] = self.label
        if self.title:
            payload["title"] = self.title
        if self.observed_at is not None:
            payload["date"] = self.observed_at.isoformat(timespec="seconds")
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, sort_keys=True)


def _int_bounds(kind: ValueType) -> tuple[int, int]:
    bits = kind.bit_width
    if kind.is_signed:
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1
