from collections import defaultdict
from typing import Any, Callable

import pytest

from modbus2mqtt.exception import TransportError
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.schema.definition_schema import ModbusDefinition

BASE_RECORD: dict[str, Any] = {
    "address": 1,
    "modbustype": "holding",
    "modbusaccess": "read",
    "valuetype": "int16",
    "mqtt": "visible",
    "interval": 10,
    "topic": "ambient/errornumber",
    "title": "Ambient Error Number",
}


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTransport:
    """
    Transport double: per (address, kind) a queue of responses.

    A response is a word list or an exception instance; the last response repeats.
    Unscripted registers read as zeros.
    """

    def __init__(self):
        self.responses: dict[tuple[int, RegisterType], list[Any]] = defaultdict(list)
        self.calls: list[tuple[int, int, RegisterType]] = []

    def script(self, address: int, *responses: Any, register_kind: RegisterType = RegisterType.HOLDING) -> None:
        self.responses[(address, register_kind)].extend(responses)

    async def read_registers(self, address: int, count: int, register_kind: RegisterType) -> list[int]:
        self.calls.append((address, count, register_kind))
        queue = self.responses.get((address, register_kind))
        if not queue:
            return [0] * count

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return list(response)


@pytest.fixture
def make_record() -> Callable[..., dict]:
    def _make(**overrides) -> dict:
        record = dict(BASE_RECORD)
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def make_definition(make_record) -> Callable[..., ModbusDefinition]:
    def _make(**overrides) -> ModbusDefinition:
        return ModbusDefinition.model_validate(make_record(**overrides))

    return _make


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def transport_error() -> Callable[..., TransportError]:
    def _make(message: str = "no response", address: int = 1) -> TransportError:
        return TransportError(message, "default", address=address, register_kind="holding")

    return _make
