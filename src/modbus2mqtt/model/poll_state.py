from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from modbus2mqtt.model.bit_range import BitRange
from modbus2mqtt.model.enum.poll_state_enum import PollStateEnum
from modbus2mqtt.schema.definition_schema import ModbusDefinition


@dataclass
class PollState:
    """
    Read/compare state of one definition.

    Owned by exactly one device poller; nothing else reads or writes it.
    """

    definition: ModbusDefinition
    state: PollStateEnum = PollStateEnum.IDLE

    last_raw_words: list[int] = field(default_factory=list)
    last_observed_at: datetime | None = None
    last_bit_values: dict[BitRange, int] = field(default_factory=dict)

    # Monotonic timestamp at which the definition is due again
    next_due: float = 0.0

    consecutive_failures: int = 0
    last_error: str | None = None

    def has_changed(self, words: Sequence[int]) -> bool:
        """Element-wise comparison; an empty history differs from any real read."""
        return list(words) != self.last_raw_words

    def mark_failure(self, error: str) -> None:
        self.state = PollStateEnum.FAILED
        self.consecutive_failures += 1
        self.last_error = error

    def mark_success(self, observed_at: datetime) -> None:
        self.last_observed_at = observed_at
        self.consecutive_failures = 0
        self.last_error = None
