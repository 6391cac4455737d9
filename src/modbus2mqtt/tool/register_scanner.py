import logging
from collections.abc import Callable

from modbus2mqtt.device.modbus_bus import ModbusTransport
from modbus2mqtt.exception import TransportError
from modbus2mqtt.model.enum.register_type_enum import RegisterType

logger = logging.getLogger("RegisterScanner")

DEFAULT_STRIPE_SIZE = 0x10
ADDRESS_SPACE_END = 0x10000


def format_stripe(address: int, words: list[int]) -> str:
    """Two lines: hex words and decimal words, zeros blanked so live registers stand out."""
    hex_line = " ".join("  -  " if word == 0 else f"{word:04x} " for word in words)
    dec_line = " ".join("     " if word == 0 else f"{word:05d}" for word in words)
    return f"{address:04x}: {hex_line}\n{address:04x}: {dec_line}\n"


class RegisterScanner:
    """
    Reverse-engineering aid for undocumented devices.

    Reads the register space in fixed stripes, remembers every stripe (an unseen
    stripe counts as all zero) and reports the stripes whose words differ from
    the remembered ones. Rescans only revisit stripes that were ever non-zero.
    """

    def __init__(
        self,
        transport: ModbusTransport,
        register_kind: RegisterType = RegisterType.HOLDING,
        stripe_size: int = DEFAULT_STRIPE_SIZE,
        report: Callable[[str], None] = print,
    ):
        if stripe_size < 1:
            raise ValueError("stripe_size must be >= 1")

        self.transport = transport
        self.register_kind = register_kind
        self.stripe_size = stripe_size
        self.report = report

        self.store: dict[int, list[int]] = {}
        self.failed_addresses: set[int] = set()

    @property
    def empty_stripe(self) -> list[int]:
        return [0] * self.stripe_size

    async def read_stripe(self, address: int) -> bool:
        """Read one stripe; True if it differed from the remembered words."""
        count: int = min(self.stripe_size, ADDRESS_SPACE_END - address)
        try:
            words: list[int] = await self.transport.read_registers(address, count, self.register_kind)
        except TransportError as e:
            self.failed_addresses.add(address)
            logger.debug(f"[Scan] {address:04x}: {e}")
            return False

        previous: list[int] = self.store.get(address, self.empty_stripe[:count])
        if words == previous:
            return False

        self.report(format_stripe(address, words))
        self.store[address] = list(words)
        return True

    async def scan(self, start: int = 0, end: int = ADDRESS_SPACE_END) -> int:
        """Sweep [start, end) once; returns the number of changed stripes."""
        changed: int = 0
        for address in range(start, min(end, ADDRESS_SPACE_END), self.stripe_size):
            if await self.read_stripe(address):
                changed += 1

        logger.info(
            f"[Scan] {self.register_kind} {start:04x}-{end - 1:04x}: {changed} changed, "
            f"{len(self.store)} known, {len(self.failed_addresses)} failed"
        )
        return changed

    async def rescan(self, rounds: int = 20) -> int:
        changed: int = 0
        for round_no in range(rounds):
            self.report(f"--- rescan {round_no + 1}/{rounds} ---")
            for address in sorted(self.store):
                if await self.read_stripe(address):
                    changed += 1
        return changed
