import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from modbus2mqtt.exception import ConfigurationError, DuplicateAddressError
from modbus2mqtt.model.enum.definition_enum import DuplicatePolicy
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.schema.definition_schema import DEFAULT_DEVICE_NAME, ModbusDefinition

logger = logging.getLogger("DefinitionRegistry")

RegisterIndex = Mapping[str, Mapping[RegisterType, Mapping[int, ModbusDefinition]]]


class DefinitionRegistry:
    """
    Validated, read-only collection of definitions.

    Indexed device -> register kind -> address. Built once; a schema reload builds a
    new registry instead of mutating this one, so it can be shared by every device loop.
    """

    def __init__(
        self,
        definitions: tuple[ModbusDefinition, ...],
        index: RegisterIndex,
        duplicate_policy: DuplicatePolicy,
    ):
        self._definitions = definitions
        self._index = index
        self._duplicate_policy = duplicate_policy

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        definitions: Iterable[ModbusDefinition],
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ADDRESS_AND_KIND,
    ) -> "DefinitionRegistry":
        """
        Validate and index definitions.

        Order of checks:
            1) each definition's own invariants
            2) register uniqueness per device (key depends on duplicate_policy)

        Raises:
            ConfigurationError: a definition breaks its own invariants
            DuplicateAddressError: first key collision; raised even if both records are identical
        """
        definition_list: list[ModbusDefinition] = list(definitions)

        for definition in definition_list:
            definition.check_invariants()

        seen: set[tuple] = set()
        index: dict[str, dict[RegisterType, dict[int, ModbusDefinition]]] = {}

        for definition in definition_list:
            key = cls._duplicate_key(definition, duplicate_policy)
            if key in seen:
                raise DuplicateAddressError(definition.address, definition.register_kind.value, definition.device)
            seen.add(key)

            by_kind = index.setdefault(definition.device, {})
            by_kind.setdefault(definition.register_kind, {})[definition.address] = definition

        frozen_index: RegisterIndex = MappingProxyType(
            {
                device: MappingProxyType({kind: MappingProxyType(by_address) for kind, by_address in by_kind.items()})
                for device, by_kind in index.items()
            }
        )

        logger.info(
            f"[Registry] {len(definition_list)} definitions on {len(frozen_index)} device(s) "
            f"(duplicate_policy={duplicate_policy.value})"
        )
        return cls(tuple(definition_list), frozen_index, duplicate_policy)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ADDRESS_AND_KIND,
    ) -> "DefinitionRegistry":
        """Parse raw JSON records and build; every failure is reported as a ConfigurationError."""
        definitions: list[ModbusDefinition] = []

        for position, record in enumerate(records):
            name = cls._record_name(position, record)
            try:
                definitions.append(ModbusDefinition.model_validate(record))
            except ConfigurationError as e:
                raise e.attribute_to(name)
            except ValidationError as e:
                errors = e.errors()
                field = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
                details = "; ".join(
                    f"{'.'.join(str(part) for part in err['loc']) or '<record>'}: {err['msg']}" for err in errors
                )
                raise ConfigurationError(
                    details,
                    definition=name,
                    field=field,
                    rule=errors[0]["type"] if errors else None,
                ) from e

        return cls.build(definitions, duplicate_policy)

    @staticmethod
    def _duplicate_key(definition: ModbusDefinition, policy: DuplicatePolicy) -> tuple:
        if policy == DuplicatePolicy.ADDRESS_ONLY:
            return definition.device, definition.address
        return definition.device, definition.register_kind, definition.address

    @staticmethod
    def _record_name(position: int, record: Any) -> str:
        topic = record.get("topic") if isinstance(record, Mapping) else None
        return f"definition #{position}" + (f" ({topic})" if topic else "")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def duplicate_policy(self) -> DuplicatePolicy:
        return self._duplicate_policy

    def devices(self) -> list[str]:
        return list(self._index.keys())

    def for_device(self, device: str) -> list[ModbusDefinition]:
        return [definition for definition in self._definitions if definition.device == device]

    def readable_for_device(self, device: str) -> list[ModbusDefinition]:
        return [definition for definition in self.for_device(device) if definition.access.is_readable]

    def get(
        self, address: int, register_kind: RegisterType, device: str = DEFAULT_DEVICE_NAME
    ) -> ModbusDefinition | None:
        return self._index.get(device, {}).get(register_kind, {}).get(address)

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[ModbusDefinition]:
        return iter(self._definitions)

    def __repr__(self) -> str:
        return f"DefinitionRegistry(definitions={len(self)}, devices={self.devices()})"
