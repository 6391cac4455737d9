from enum import StrEnum


class ModbusAccess(StrEnum):
    READ = "read"
    WRITE = "write"
    READ_WRITE = "readwrite"

    @property
    def is_readable(self) -> bool:
        return self in (ModbusAccess.READ, ModbusAccess.READ_WRITE)


class MqttVisibility(StrEnum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


class DuplicatePolicy(StrEnum):
    """Which fields make two definitions collide."""

    ADDRESS_AND_KIND = "address_and_kind"
    ADDRESS_ONLY = "address_only"


class BitFieldEmitPolicy(StrEnum):
    """
    on_field_change:  a bit field is emitted only when its own extracted bits change
    on_parent_change: every bit field is emitted whenever the parent raw words change
    """

    ON_FIELD_CHANGE = "on_field_change"
    ON_PARENT_CHANGE = "on_parent_change"
