import asyncio
import contextlib
import logging
from typing import Protocol

from pymodbus.client.base import ModbusBaseClient
from pymodbus.exceptions import ModbusException
from pymodbus.pdu.pdu import ModbusPDU

from modbus2mqtt.exception import TransportError
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.util.data_decoder import WORD_MASK

logger = logging.getLogger("ModbusBus")


class ModbusTransport(Protocol):
    """The only bus call the poller needs."""

    async def read_registers(self, address: int, count: int, register_kind: RegisterType) -> list[int]: ...


class ModbusBus:
    def __init__(
        self,
        client: ModbusBaseClient,
        unit_id: int,
        device_id: str,
        lock: asyncio.Lock | None = None,
    ):
        """
        Initialize ModbusBus.

        Args:
            client: pymodbus async client (TCP or serial)
            unit_id: Modbus unit (slave) address
            device_id: device name, used in errors and logs
            lock: per-port asyncio.Lock, serializes devices sharing one serial line
        """
        self.client = client
        self.unit_id = int(unit_id)
        self.device_id = device_id
        self.lock = lock

    async def read_registers(self, address: int, count: int, register_kind: RegisterType) -> list[int]:
        """
        Read `count` words of `register_kind` starting at `address`.

        Coils and discrete inputs come back as one 0/1 word per bit.

        Raises:
            TransportError: connect failure, exception response, short response, pymodbus error
        """
        async with self._lock_context():
            await self._ensure_connected(address, register_kind)

            try:
                resp: ModbusPDU = await self._dispatch_read(address, count, register_kind)
            except ModbusException as e:
                raise self._error(f"read failed: {e}", address, register_kind, cause=e) from e

            if resp.isError():
                raise self._error(f"exception response: {resp}", address, register_kind)

            if register_kind.is_bit_addressed:
                bits = getattr(resp, "bits", None)
                if not isinstance(bits, list) or len(bits) < count:
                    raise self._error(f"short bit response: {bits!r}", address, register_kind)
                return [1 if bit else 0 for bit in bits[:count]]

            registers = getattr(resp, "registers", None)
            if not isinstance(registers, list) or len(registers) != count:
                raise self._error(f"malformed register response: {registers!r}", address, register_kind)
            return [int(word) & WORD_MASK for word in registers]

    async def _dispatch_read(self, address: int, count: int, register_kind: RegisterType) -> ModbusPDU:
        if register_kind == RegisterType.HOLDING:
            return await self.client.read_holding_registers(address=address, count=count, device_id=self.unit_id)
        if register_kind == RegisterType.INPUT:
            return await self.client.read_input_registers(address=address, count=count, device_id=self.unit_id)
        if register_kind == RegisterType.COIL:
            return await self.client.read_coils(address=address, count=count, device_id=self.unit_id)
        if register_kind == RegisterType.DISCRETE_INPUT:
            return await self.client.read_discrete_inputs(address=address, count=count, device_id=self.unit_id)
        raise self._error(f"unsupported register kind: {register_kind!r}", address, register_kind)

    async def _ensure_connected(self, address: int, register_kind: RegisterType) -> None:
        if self.client.connected:
            return

        is_ok: bool = await self.client.connect()
        if not is_ok:
            raise self._error(f"connect failed (unit={self.unit_id})", address, register_kind)
        logger.info(f"[Bus] {self.device_id} connected (unit={self.unit_id})")

    def _error(
        self, message: str, address: int, register_kind: RegisterType, cause: BaseException | None = None
    ) -> TransportError:
        return TransportError(
            f"[{self.device_id}] {message}",
            self.device_id,
            address=address,
            register_kind=str(register_kind),
            cause=cause,
        )

    def _lock_context(self):
        """Use the port lock if provided, else a no-op context."""
        if self.lock:
            return self.lock
        return contextlib.nullcontext()
