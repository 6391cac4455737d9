from enum import StrEnum


class RegisterType(StrEnum):
    HOLDING = "holding"
    INPUT = "input"
    DISCRETE_INPUT = "discrete_input"
    COIL = "coil"

    @property
    def is_bit_addressed(self) -> bool:
        return self in (RegisterType.COIL, RegisterType.DISCRETE_INPUT)

    @classmethod
    def from_string(cls, value: str) -> "RegisterType":
        normalized = value.strip().lower().replace("discreteinput", "discrete_input")
        return cls(normalized)
