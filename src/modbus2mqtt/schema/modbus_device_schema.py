from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class BusType(StrEnum):
    TCP = "tcp"
    RTU = "rtu"


class ModbusBusConfig(BaseModel):
    """
    One physical bus: a TCP endpoint or a serial (RTU) line.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    type: BusType = Field(default=BusType.TCP, description="tcp or rtu")

    # TCP
    host: str | None = Field(default=None, description="Modbus TCP host")
    port: int = Field(default=502, ge=1, le=65535, description="Modbus TCP port")

    # RTU
    serial_port: str | None = Field(default=None, description="Serial port path (e.g., /dev/ttyUSB0)")
    baudrate: int = Field(default=9600, description="Baud rate")
    parity: str = Field(default="N", pattern="^[NEO]$")
    bytesize: int = Field(default=8, ge=5, le=8)
    stopbits: int = Field(default=1, ge=1, le=2)

    timeout: float = Field(default=1.0, gt=0, le=30.0, description="Modbus client timeout for this bus (seconds)")
    retries: int = Field(default=3, ge=0, le=10)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("baudrate", mode="before")
    @classmethod
    def _to_int_baudrate(cls, v: Any) -> int:
        try:
            return int(v)
        except Exception:
            fallback_baudrate: int = 9600
            logger.warning(f"[modbus_device] invalid baudrate={v!r}, fallback={fallback_baudrate}")
            return fallback_baudrate

    @model_validator(mode="after")
    def _check_endpoint(self) -> "ModbusBusConfig":
        if self.type == BusType.TCP and not self.host:
            raise ValueError("tcp bus requires host")
        if self.type == BusType.RTU and not self.serial_port:
            raise ValueError("rtu bus requires serial_port")
        return self

    @property
    def endpoint(self) -> str:
        if self.type == BusType.TCP:
            return f"{self.host}:{self.port}"
        return str(self.serial_port)


class ModbusDeviceConfig(BaseModel):
    """
    One device on a bus. `name` is what definitions refer to in their `device` field.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    bus: str
    unit_id: int = Field(default=1, ge=0, le=247, validation_alias="slave_id")

    @field_validator("unit_id", mode="before")
    @classmethod
    def _to_int_unit_id(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return v


class ModbusDeviceFileConfig(BaseModel):
    """
    Root config for modbus_device.yml
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, populate_by_name=True)

    bus_dict: dict[str, ModbusBusConfig] = Field(default_factory=dict, validation_alias="buses")
    device_list: list[ModbusDeviceConfig] = Field(default_factory=list, validation_alias="devices")

    @model_validator(mode="after")
    def _check_references(self) -> "ModbusDeviceFileConfig":
        seen: set[str] = set()
        for device in self.device_list:
            if device.name in seen:
                raise ValueError(f"duplicate device name {device.name!r}")
            seen.add(device.name)
            if device.bus not in self.bus_dict:
                raise ValueError(f"device {device.name!r} references unknown bus {device.bus!r}")
        return self

    def bus_for(self, device: ModbusDeviceConfig) -> ModbusBusConfig:
        return self.bus_dict[device.bus]

    def device_names(self) -> list[str]:
        return [device.name for device in self.device_list]
