import json
import os
import re
from typing import Any

import yaml
from pydantic import ValidationError

from modbus2mqtt.definition.definition_registry import DefinitionRegistry
from modbus2mqtt.exception import ConfigurationError
from modbus2mqtt.model.enum.definition_enum import DuplicatePolicy
from modbus2mqtt.schema.modbus_device_schema import ModbusDeviceFileConfig
from modbus2mqtt.schema.system_config_schema import SystemConfig


class ConfigManager:

    @staticmethod
    def load_yaml_file(path: str) -> dict:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def load_json_file(path: str) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def load_system_config(path: str) -> SystemConfig:
        raw_config: dict = ConfigManager.resolve_env_vars(ConfigManager.load_yaml_file(path))
        try:
            return SystemConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(str(e), definition=path, rule="system_config") from e

    @staticmethod
    def load_device_config(path: str) -> ModbusDeviceFileConfig:
        raw_config: dict = ConfigManager.resolve_env_vars(ConfigManager.load_yaml_file(path))
        try:
            return ModbusDeviceFileConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(str(e), definition=path, rule="device_config") from e

    @staticmethod
    def load_definitions(
        path: str, duplicate_policy: DuplicatePolicy = DuplicatePolicy.ADDRESS_AND_KIND
    ) -> DefinitionRegistry:
        """Load the definition records (a JSON array) and build the validated registry."""
        try:
            records = ConfigManager.load_json_file(path)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path}: invalid JSON at line {e.lineno}: {e.msg}", rule="json") from e

        if isinstance(records, dict) and "definitions" in records:
            records = records["definitions"]
        if not isinstance(records, list):
            raise ConfigurationError(f"{path}: expected a list of definition records", rule="json")

        return DefinitionRegistry.from_records(records, duplicate_policy)

    @staticmethod
    def resolve_env_vars(value: Any) -> Any:
        """Resolve ${VAR:-default} strings recursively through dicts and lists."""
        if isinstance(value, dict):
            return {k: ConfigManager.resolve_env_vars(v) for k, v in value.items()}
        if isinstance(value, list):
            return [ConfigManager.resolve_env_vars(v) for v in value]
        if isinstance(value, str):
            return ConfigManager.parse_env_var_with_default(value)
        return value

    @staticmethod
    def parse_env_var_with_default(value: str) -> bool | int | float | str | None:
        match = re.match(r"\$\{(\w+)(?::-([^\}]*))?\}", value)  # Match ${VAR_NAME:-default} or ${VAR_NAME}
        if not match:
            return value

        var_name = match.group(1)
        default_value = match.group(2)

        resolved_value = os.getenv(var_name) or default_value
        if resolved_value is not None:
            return ConfigManager._parse_value_by_type(resolved_value)
        return None

    @staticmethod
    def _parse_value_by_type(value: str) -> bool | int | float | str:
        if value.lower() in ["true", "false"]:
            return value.lower() == "true"
        if ConfigManager._is_int(value):
            return int(value)
        if ConfigManager._is_float(value):
            return float(value)
        return value

    @staticmethod
    def _is_int(value: str) -> bool:
        try:
            int(value)
            return True
        except ValueError:
            return False

    @staticmethod
    def _is_float(value: str) -> bool:
        try:
            float(value)
            return True
        except ValueError:
            return False
