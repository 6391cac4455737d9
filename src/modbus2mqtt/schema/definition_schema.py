"""
Definition Schema for modbus2mqtt
One record per published signal: which register(s) to read, how to decode them, where to publish
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from modbus2mqtt.exception import ConfigurationError
from modbus2mqtt.model.bit_range import BitRange
from modbus2mqtt.model.enum.definition_enum import ModbusAccess, MqttVisibility
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.model.enum.value_type_enum import ValueType

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "default"


class BitFieldDefinition(BaseModel):
    """Named sub-range of a register value, published on its own path when mqtt_path is set"""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True, arbitrary_types_allowed=True)

    range: BitRange
    name: str = Field(..., min_length=1)
    mqtt_path: str | None = Field(default=None, alias="mqttPath")

    @property
    def is_visible(self) -> bool:
        return bool(self.mqtt_path)

    def topic_for(self, parent_topic: str) -> str | None:
        """Relative paths hang below the parent topic, '/'-prefixed paths are used as-is (minus the slash)."""
        if not self.mqtt_path:
            return None
        if self.mqtt_path.startswith("/"):
            return self.mqtt_path.lstrip("/")
        return f"{parent_topic.rstrip('/')}/{self.mqtt_path}"


class ModbusDefinition(BaseModel):
    """
    One signal definition.

    JSON record keys follow the on-disk format (modbustype, modbusaccess, valuetype,
    mqtt, floatInterpretation, map); python attribute names are snake_case.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
        arbitrary_types_allowed=True,
    )

    device: str = Field(default=DEFAULT_DEVICE_NAME, description="Device the register lives on")
    address: int = Field(..., ge=0, le=0xFFFF, description="Register address")
    register_kind: RegisterType = Field(..., alias="modbustype")
    access: ModbusAccess = Field(default=ModbusAccess.READ, alias="modbusaccess")
    value_type: ValueType = Field(..., alias="valuetype")
    float_interpretation: bool = Field(default=False, alias="floatInterpretation")
    mqtt_visibility: MqttVisibility = Field(default=MqttVisibility.VISIBLE, alias="mqtt")
    interval: float = Field(..., description="Poll interval (seconds)")
    topic: str
    title: str = ""
    bits: dict[BitRange, BitFieldDefinition] = Field(default_factory=dict)
    value_map: dict[int, str] = Field(default_factory=dict, alias="map")

    # ---- normalisation ----

    @model_validator(mode="before")
    @classmethod
    def _warn_unknown_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            known: set[str] = set(cls.model_fields)
            known.update(field.alias for field in cls.model_fields.values() if field.alias)
            unknown: list[str] = sorted(str(key) for key in data if key not in known)
            if unknown:
                logger.warning(f"[Definition] topic={data.get('topic')!r}: ignoring unknown key(s) {unknown}")
        return data

    @field_validator("register_kind", mode="before")
    @classmethod
    def _normalize_register_kind(cls, v: Any) -> Any:
        if isinstance(v, str):
            return RegisterType.from_string(v)
        return v

    @field_validator("access", "value_type", mode="before")
    @classmethod
    def _normalize_lower(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("mqtt_visibility", mode="before")
    @classmethod
    def _normalize_visibility(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return MqttVisibility.HIDDEN if v == "invisible" else v
        return v

    @field_validator("bits", mode="before")
    @classmethod
    def _parse_bits(cls, v: Any, info: ValidationInfo) -> Any:
        if not v:
            return {}
        if not isinstance(v, dict):
            raise ValueError("bits must be a mapping of bit range to {name, mqttPath}")

        value_type: ValueType | None = info.data.get("value_type")
        if value_type is None:
            raise ValueError("bits require a valid valuetype")

        parsed: dict[BitRange, BitFieldDefinition] = {}
        for key, field_cfg in v.items():
            if isinstance(key, BitRange):
                bit_range = key
            else:
                bit_range = BitRange.parse(str(key), value_type.bit_width)

            if isinstance(field_cfg, BitFieldDefinition):
                parsed[bit_range] = field_cfg
            elif isinstance(field_cfg, dict):
                parsed[bit_range] = BitFieldDefinition(range=bit_range, **field_cfg)
            else:
                raise ValueError(f"bits[{key!r}] must be an object with a name")
        return parsed

    @field_validator("value_map", mode="before")
    @classmethod
    def _parse_value_map(cls, v: Any) -> Any:
        if not v:
            return {}
        if not isinstance(v, dict):
            raise ValueError("map must be a mapping of integer value to label")

        parsed: dict[int, str] = {}
        for key, label in v.items():
            try:
                raw = int(key)
            except (TypeError, ValueError):
                raise ValueError(f"map key {key!r} is not an integer") from None
            if raw in parsed:
                raise ConfigurationError(f"duplicate map key {key!r} (= {raw})", field="map", rule="unique_keys")
            parsed[raw] = label
        return parsed

    @model_validator(mode="after")
    def _validate(self) -> "ModbusDefinition":
        self.check_invariants()
        return self

    # ---- invariants ----

    def check_invariants(self) -> None:
        """
        Raises ConfigurationError for:
            - non-positive interval / empty topic
            - float interpretation on anything but a 32/64-bit integer kind
            - bit fields on float values, out of bounds or overlapping
            - coil / discrete input with a multi-word value type
        """
        if self.interval <= 0:
            self._fail(f"interval must be > 0, got {self.interval}", "interval", "positive")
        if not self.topic or not self.topic.strip():
            self._fail("topic must not be empty", "topic", "non_empty")

        if self.float_interpretation and not self.value_type.supports_float_interpretation:
            self._fail(
                f"floatInterpretation requires a 32-bit integer valuetype, got {self.value_type}",
                "floatInterpretation",
                "float_type",
            )

        if self.register_kind.is_bit_addressed and self.value_type.word_count != 1:
            self._fail(
                f"{self.register_kind} registers hold a single bit, valuetype {self.value_type} is too wide",
                "valuetype",
                "bit_register_width",
            )

        if not self.bits:
            return

        if not self.value_type.is_integer or self.float_interpretation:
            self._fail("bits are only allowed on integer values", "bits", "integer_only")

        ordered: list[BitRange] = sorted(self.bits)
        for bit_range in ordered:
            if bit_range.end >= self.value_type.bit_width:
                self._fail(
                    f"bit range {bit_range} exceeds {self.value_type} width {self.value_type.bit_width}",
                    "bits",
                    "bounds",
                )
        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                self._fail(f"bit ranges {previous} and {current} overlap", "bits", "overlap")

    def _fail(self, message: str, field: str, rule: str) -> None:
        raise ConfigurationError(message, definition=self.label, field=field, rule=rule)

    # ---- derived ----

    @property
    def key(self) -> tuple[str, RegisterType, int]:
        return self.device, self.register_kind, self.address

    @property
    def label(self) -> str:
        return f"{self.device}:{self.register_kind}:{self.address} ({self.topic})"

    @property
    def word_count(self) -> int:
        return self.value_type.word_count

    @property
    def is_visible(self) -> bool:
        return self.mqtt_visibility == MqttVisibility.VISIBLE

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible record in the on-disk format."""
        record: dict[str, Any] = {
            "device": self.device,
            "address": self.address,
            "modbustype": self.register_kind.value,
            "modbusaccess": self.access.value,
            "valuetype": self.value_type.value,
            "mqtt": self.mqtt_visibility.value,
            "interval": self.interval,
            "topic": self.topic,
            "title": self.title,
        }
        if self.float_interpretation:
            record["floatInterpretation"] = True
        if self.bits:
            record["bits"] = {
                str(bit_range): (
                    {"name": bit_field.name, "mqttPath": bit_field.mqtt_path}
                    if bit_field.mqtt_path
                    else {"name": bit_field.name}
                )
                for bit_range, bit_field in sorted(self.bits.items())
            }
        if self.value_map:
            record["map"] = {str(raw): label for raw, label in self.value_map.items()}
        return record
