"""Bridge Exception Definitions"""


class Modbus2MqttError(Exception):
    """Base exception for the bridge"""

    pass


class ConfigurationError(Modbus2MqttError):
    """Definition schema is invalid; the whole load fails"""

    def __init__(self, message: str, definition: str | None = None, field: str | None = None, rule: str | None = None):
        self.definition = definition
        self.field = field
        self.rule = rule

        prefix = f"[{definition}] " if definition else ""
        where = f"{field}: " if field else ""
        super().__init__(f"{prefix}{where}{message}")

    def attribute_to(self, definition: str) -> "ConfigurationError":
        """Name the offending definition when the error was raised before it was known."""
        if self.definition is None:
            self.definition = definition
            self.args = (f"[{definition}] {self.args[0]}",) + self.args[1:]
        return self


class BitRangeError(ConfigurationError):
    """Base class for bit range parse errors"""

    def __init__(self, message: str, text: str, field: str | None = "bits", rule: str | None = None):
        super().__init__(message, field=field, rule=rule)
        self.text = text


class InvalidBitRangeSyntax(BitRangeError):
    """Bit range text is neither '<n>' nor '<a>-<b>'"""

    def __init__(self, text: str):
        super().__init__(f"Invalid bit range syntax: {text!r}", text, rule="syntax")


class BitRangeOutOfBounds(BitRangeError):
    """Bit range ends past the value's bit width"""

    def __init__(self, text: str, bit_width: int):
        super().__init__(f"Bit range {text!r} exceeds bit width {bit_width}", text, rule="bounds")
        self.bit_width = bit_width


class InvalidBitRangeOrder(BitRangeError):
    """Bit range start is greater than its end"""

    def __init__(self, text: str):
        super().__init__(f"Bit range {text!r} has start > end", text, rule="order")


class DuplicateAddressError(ConfigurationError):
    """Two definitions claim the same register"""

    def __init__(self, address: int, register_kind: str, device: str | None = None):
        self.address = address
        self.register_kind = register_kind
        self.device = device
        super().__init__(
            f"Duplicate modbus address defined: address={address} ({address:#06x}), register_kind={register_kind}",
            definition=device,
            field="address",
            rule="unique",
        )


class DeviceError(Modbus2MqttError):
    """Base class for device-related exceptions"""

    def __init__(self, message: str, device_id: str | None = None):
        super().__init__(message)
        self.device_id = device_id


class TransportError(DeviceError):
    """Register read failed (timeout, disconnect, exception response, short response)"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        *,
        address: int | None = None,
        register_kind: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, device_id)
        self.address = address
        self.register_kind = register_kind
        self.cause = cause


class DecodingError(Modbus2MqttError):
    """Raw words do not fit the value type; a validated definition never triggers this"""

    pass


class PublishError(Modbus2MqttError):
    """Outbound message could not be handed to the MQTT client"""

    def __init__(self, message: str, topic: str | None = None):
        super().__init__(message)
        self.topic = topic
