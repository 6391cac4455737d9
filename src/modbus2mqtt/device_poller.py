import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime

from modbus2mqtt.device.modbus_bus import ModbusTransport
from modbus2mqtt.exception import TransportError
from modbus2mqtt.model.enum.definition_enum import BitFieldEmitPolicy
from modbus2mqtt.model.enum.poll_state_enum import PollStateEnum
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.model.modbus_value import ModbusValue, TypedValue
from modbus2mqtt.model.poll_state import PollState
from modbus2mqtt.model.value_change import BitFieldChange, ValueChange
from modbus2mqtt.schema.definition_schema import ModbusDefinition
from modbus2mqtt.util.data_decoder import decode_value, extract_bit_field, lookup_mapped_label
from modbus2mqtt.util.pubsub.base import PubSub
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic

logger = logging.getLogger("AsyncDevicePoller")

DefinitionKey = tuple[str, RegisterType, int]


class AsyncDevicePoller:
    """
    Single-flight read loop of one physical device.

    Guarantees:
    - At most one register transaction in flight per device (one loop, no other caller)
    - Definitions are read in non-decreasing due-time order (heap keyed by next due time)
    - Publish only on change of the raw words; hand-off via pubsub so emission never blocks reads
    - A failing definition backs off; the others keep their cadence
    - stop() lets the in-flight transaction finish (bounded by transaction_timeout) and starts no new one
    """

    def __init__(
        self,
        device_name: str,
        transport: ModbusTransport,
        definitions: Iterable[ModbusDefinition],
        pubsub: PubSub,
        *,
        transaction_timeout: float = 3.0,
        backoff_skip_intervals: int = 1,
        bit_field_emit_policy: BitFieldEmitPolicy = BitFieldEmitPolicy.ON_FIELD_CHANGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.device_name = device_name
        self.transport = transport
        self.pubsub = pubsub

        self.transaction_timeout = float(transaction_timeout)
        self.backoff_skip_intervals = int(backoff_skip_intervals)
        self.bit_field_emit_policy = bit_field_emit_policy
        self._clock = clock

        self._states: dict[DefinitionKey, PollState] = {}
        self._queue: list[tuple[float, int, DefinitionKey]] = []
        self._sequence = itertools.count()
        self._stop_event = asyncio.Event()

        for definition in definitions:
            if definition.device != device_name:
                raise ValueError(f"definition {definition.label} does not belong to device {device_name!r}")
            if not definition.access.is_readable:
                continue
            self._states[definition.key] = PollState(definition=definition)
            # Never read -> due immediately, in definition order
            heapq.heappush(self._queue, (0.0, next(self._sequence), definition.key))

    # ------------------------------------------------------------------

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def state_for(self, definition: ModbusDefinition) -> PollState:
        return self._states[definition.key]

    def states(self) -> list[PollState]:
        return list(self._states.values())

    async def run(self) -> None:
        logger.info(f"[{self.device_name}] poller started ({len(self._states)} definitions)")

        try:
            while not self.is_stopping:
                if not self._queue:
                    await self._stop_event.wait()
                    break
                await self.tick()

        except asyncio.CancelledError:
            logger.info(f"[{self.device_name}] poller cancelled")
            raise
        finally:
            logger.info(f"[{self.device_name}] poller stopped")

    async def tick(self) -> PollStateEnum | None:
        """
        Wait for the earliest due definition, poll it, reschedule it.

        Returns the poll outcome (CHANGED / UNCHANGED / FAILED), or None if stopped
        before anything was read.
        """
        if not self._queue or self.is_stopping:
            return None

        due, _, key = self._queue[0]
        delay: float = due - self._clock()
        if delay > 0 and await self._wait_for_stop(delay):
            return None

        heapq.heappop(self._queue)
        poll_state = self._states[key]
        try:
            return await self.poll_definition(poll_state)
        finally:
            heapq.heappush(self._queue, (poll_state.next_due, next(self._sequence), key))

    async def poll_definition(self, poll_state: PollState) -> PollStateEnum:
        """One read/compare/hand-off cycle for a single definition."""
        definition = poll_state.definition
        poll_state.state = PollStateEnum.DUE

        try:
            poll_state.state = PollStateEnum.READING
            words: list[int] = await asyncio.wait_for(
                self.transport.read_registers(definition.address, definition.word_count, definition.register_kind),
                timeout=self.transaction_timeout,
            )
            if len(words) != definition.word_count:
                raise TransportError(
                    f"expected {definition.word_count} word(s), got {len(words)}",
                    self.device_name,
                    address=definition.address,
                    register_kind=str(definition.register_kind),
                )
        except (TransportError, asyncio.TimeoutError, OSError) as e:
            self._on_failure(poll_state, e)
            return PollStateEnum.FAILED

        observed_at = datetime.now().astimezone()
        poll_state.next_due = self._clock() + definition.interval
        if poll_state.consecutive_failures:
            logger.info(
                f"[{self.device_name}] {definition.label} recovered after {poll_state.consecutive_failures} failure(s)"
            )
        poll_state.mark_success(observed_at)

        if not poll_state.has_changed(words):
            poll_state.state = PollStateEnum.UNCHANGED
            poll_state.state = PollStateEnum.IDLE
            return PollStateEnum.UNCHANGED

        poll_state.state = PollStateEnum.CHANGED
        poll_state.last_raw_words = list(words)

        # DecodingError here is a bug in validation, let it surface
        typed_value: TypedValue = decode_value(words, definition.value_type, definition.float_interpretation)
        change: ValueChange = self._build_change(poll_state, words, typed_value, observed_at)

        poll_state.state = PollStateEnum.EMITTING
        await self.pubsub.publish(PubSubTopic.VALUE_CHANGED, change)
        poll_state.state = PollStateEnum.IDLE

        logger.debug(f"[{self.device_name}] {definition.label} changed: {[f'{w:04x}' for w in words]} -> {typed_value}")
        return PollStateEnum.CHANGED

    # ------------------------------------------------------------------

    def _build_change(
        self, poll_state: PollState, words: list[int], typed_value: TypedValue, observed_at: datetime
    ) -> ValueChange:
        definition = poll_state.definition

        label: str | None = None
        bit_changes: list[BitFieldChange] = []

        if typed_value.is_integer:
            label = lookup_mapped_label(int(typed_value.value), definition.value_map)

            for bit_range, bit_field in sorted(definition.bits.items()):
                field_value = extract_bit_field(int(typed_value.value), bit_range)
                previous = poll_state.last_bit_values.get(bit_range)
                poll_state.last_bit_values[bit_range] = field_value

                if self.bit_field_emit_policy == BitFieldEmitPolicy.ON_PARENT_CHANGE or previous != field_value:
                    bit_changes.append(BitFieldChange(bit_field=bit_field, value=field_value))

        return ValueChange(
            device=self.device_name,
            definition=definition,
            words=tuple(words),
            value=ModbusValue(
                address=definition.address,
                value=typed_value,
                label=label,
                title=definition.title,
                observed_at=observed_at,
            ),
            bit_changes=tuple(bit_changes),
            observed_at=observed_at,
        )

    def _on_failure(self, poll_state: PollState, error: BaseException) -> None:
        definition = poll_state.definition
        reason: str = str(error) or error.__class__.__name__
        poll_state.mark_failure(reason)

        # Skip backoff_skip_intervals normal intervals, then retry
        backoff: float = definition.interval * (1 + self.backoff_skip_intervals)
        poll_state.next_due = self._clock() + backoff
        poll_state.state = PollStateEnum.BACKOFF

        if poll_state.consecutive_failures == 1:
            logger.warning(f"[{self.device_name}] {definition.label} read failed: {reason}; retry in {backoff:.1f}s")
        else:
            logger.debug(
                f"[{self.device_name}] {definition.label} read failed "
                f"({poll_state.consecutive_failures}x): {reason}"
            )

    async def _wait_for_stop(self, delay: float) -> bool:
        """Idle wait; True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False
