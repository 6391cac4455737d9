import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from modbus2mqtt.device_poller import AsyncDevicePoller
from modbus2mqtt.exception import DecodingError
from modbus2mqtt.model.bit_range import BitRange
from modbus2mqtt.model.enum.definition_enum import BitFieldEmitPolicy
from modbus2mqtt.model.enum.poll_state_enum import PollStateEnum
from modbus2mqtt.model.enum.value_type_enum import ValueType
from modbus2mqtt.model.value_change import ValueChange
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic

BITS = {
    "0-1": {"name": "foo", "mqttPath": "foo"},
    "2-5": {"name": "bar", "mqttPath": "bar"},
    "6": {"name": "baz", "mqttPath": "baz"},
}


@pytest.fixture
def pubsub():
    pubsub = Mock()
    pubsub.publish = AsyncMock()
    return pubsub


def _published_changes(pubsub) -> list[ValueChange]:
    changes = []
    for call in pubsub.publish.await_args_list:
        topic, change = call.args
        assert topic == PubSubTopic.VALUE_CHANGED
        changes.append(change)
    return changes


def _make_poller(definitions, transport, pubsub, clock, **kwargs) -> AsyncDevicePoller:
    return AsyncDevicePoller("default", transport, definitions, pubsub, clock=clock, **kwargs)


class TestChangeDetection:
    @pytest.mark.asyncio
    async def test_when_first_read_then_always_emits(self, make_definition, transport, pubsub, fake_clock):
        """An empty history differs from any read, all-zero included"""
        definition = make_definition()
        transport.script(1, [0])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        outcome = await poller.tick()

        assert outcome == PollStateEnum.CHANGED
        [change] = _published_changes(pubsub)
        assert change.definition is definition
        assert change.words == (0,)
        assert change.value.value.value == 0
        assert poller.state_for(definition).state == PollStateEnum.IDLE

    @pytest.mark.asyncio
    async def test_when_words_unchanged_then_no_emission(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition()
        transport.script(1, [42], [42])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        await poller.tick()
        fake_clock.advance(definition.interval)
        outcome = await poller.tick()

        assert outcome == PollStateEnum.UNCHANGED
        assert pubsub.publish.await_count == 1

    @pytest.mark.asyncio
    async def test_when_words_change_then_emits_new_value(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition()
        transport.script(1, [1], [1], [2])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        for _ in range(3):
            await poller.tick()
            fake_clock.advance(definition.interval)

        values = [change.value.value.value for change in _published_changes(pubsub)]
        assert values == [1, 2]
        assert poller.state_for(definition).last_raw_words == [2]

    @pytest.mark.asyncio
    async def test_multi_word_value_compared_word_by_word(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition(valuetype="uint64")
        transport.script(1, [0, 0, 0, 0], [0, 0, 0, 0], [0, 0, 0, 1], [0, 0, 0, 1], [1, 0, 0, 1])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        outcomes = []
        for _ in range(5):
            outcomes.append(await poller.tick())
            fake_clock.advance(definition.interval)

        assert outcomes == [
            PollStateEnum.CHANGED,
            PollStateEnum.UNCHANGED,
            PollStateEnum.CHANGED,
            PollStateEnum.UNCHANGED,
            PollStateEnum.CHANGED,
        ]
        values = [change.value.value.value for change in _published_changes(pubsub)]
        assert values == [0, 1, (1 << 48) + 1]
        assert transport.calls[0] == (1, 4, definition.register_kind)

    @pytest.mark.asyncio
    async def test_when_sixteen_zero_words_stored_then_one_nonzero_word_is_a_change(
        self, make_definition, transport, pubsub, fake_clock
    ):
        definition = make_definition(valuetype="uint64")
        poller = _make_poller([definition], transport, pubsub, fake_clock)
        poll_state = poller.state_for(definition)
        poll_state.last_raw_words = [0] * 16

        assert poll_state.has_changed([0] * 16) is False
        for index in range(16):
            words = [0] * 16
            words[index] = 1
            assert poll_state.has_changed(words) is True

    @pytest.mark.asyncio
    async def test_float_interpretation_emits_float(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition(address=200, valuetype="uint32", floatInterpretation=True)
        transport.script(200, [0x4228, 0x0000])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        await poller.tick()

        [change] = _published_changes(pubsub)
        assert change.value.value.kind == ValueType.FLOAT32
        assert change.value.value.value == pytest.approx(42.0)
        assert transport.calls == [(200, 2, definition.register_kind)]

    @pytest.mark.asyncio
    async def test_mapped_label_and_title_in_value(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition(valuetype="uint32", map={"0": "bla", "127": "foo"})
        transport.script(1, [0x0000, 0x007F])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        await poller.tick()

        [change] = _published_changes(pubsub)
        assert change.value.label == "foo"
        assert change.value.title == "Ambient Error Number"
        assert change.value.observed_at is not None

    @pytest.mark.asyncio
    async def test_hidden_definition_is_still_polled_and_forwarded(
        self, make_definition, transport, pubsub, fake_clock
    ):
        definition = make_definition(mqtt="hidden", bits=BITS)
        transport.script(1, [0b1000001])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        await poller.tick()

        [change] = _published_changes(pubsub)
        assert {c.bit_field.name: c.value for c in change.bit_changes} == {"foo": 1, "bar": 0, "baz": 1}

    @pytest.mark.asyncio
    async def test_decoding_error_is_not_swallowed(self, make_definition, transport, pubsub, fake_clock, monkeypatch):
        definition = make_definition()
        transport.script(1, [1])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        def broken_decode(*args, **kwargs):
            raise DecodingError("bad")

        monkeypatch.setattr("modbus2mqtt.device_poller.decode_value", broken_decode)

        with pytest.raises(DecodingError):
            await poller.tick()


class TestBitFieldEmitPolicy:
    @pytest.mark.asyncio
    async def test_on_field_change_reports_only_changed_fields(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition(bits=BITS)
        # bit 7 flips (no field), then bit 0 flips (foo)
        transport.script(1, [0b1000001], [0b11000001], [0b11000000])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        for _ in range(3):
            await poller.tick()
            fake_clock.advance(definition.interval)

        first, second, third = _published_changes(pubsub)
        assert len(first.bit_changes) == 3
        assert second.bit_changes == ()
        assert [(c.bit_field.name, c.value) for c in third.bit_changes] == [("foo", 0)]
        assert poller.state_for(definition).last_bit_values[BitRange(0, 1)] == 0

    @pytest.mark.asyncio
    async def test_on_parent_change_reports_all_fields(self, make_definition, transport, pubsub, fake_clock):
        definition = make_definition(bits=BITS)
        transport.script(1, [0b1000001], [0b11000001])
        poller = _make_poller(
            [definition], transport, pubsub, fake_clock, bit_field_emit_policy=BitFieldEmitPolicy.ON_PARENT_CHANGE
        )

        for _ in range(2):
            await poller.tick()
            fake_clock.advance(definition.interval)

        first, second = _published_changes(pubsub)
        assert len(first.bit_changes) == 3
        assert len(second.bit_changes) == 3


class TestFailureAndBackoff:
    @pytest.mark.asyncio
    async def test_when_read_fails_then_backoff_and_no_emission(
        self, make_definition, transport, pubsub, fake_clock, transport_error
    ):
        definition = make_definition(interval=10)
        transport.script(1, transport_error())
        poller = _make_poller([definition], transport, pubsub, fake_clock, backoff_skip_intervals=1)

        outcome = await poller.tick()

        state = poller.state_for(definition)
        assert outcome == PollStateEnum.FAILED
        assert state.state == PollStateEnum.BACKOFF
        assert state.consecutive_failures == 1
        assert state.next_due == pytest.approx(fake_clock.now + 20)
        assert state.last_raw_words == []
        pubsub.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_definition_does_not_block_others(
        self, make_definition, transport, pubsub, fake_clock, transport_error
    ):
        failing = make_definition(address=1, interval=10, topic="a")
        healthy = make_definition(address=2, interval=5, topic="b")
        transport.script(1, transport_error())
        transport.script(2, [7], [8])
        poller = _make_poller([failing, healthy], transport, pubsub, fake_clock)

        assert await poller.tick() == PollStateEnum.FAILED
        assert await poller.tick() == PollStateEnum.CHANGED

        # healthy is due at +5, failing only at +20
        fake_clock.advance(5)
        assert await poller.tick() == PollStateEnum.CHANGED

        assert [call[0] for call in transport.calls] == [1, 2, 2]
        assert [change.definition.address for change in _published_changes(pubsub)] == [2, 2]

    @pytest.mark.asyncio
    async def test_when_read_exceeds_timeout_then_failed(self, make_definition, pubsub, fake_clock):
        definition = make_definition()

        async def hanging_read(address, count, register_kind):
            await asyncio.sleep(1)
            return [0]

        transport = Mock()
        transport.read_registers = hanging_read
        poller = _make_poller([definition], transport, pubsub, fake_clock, transaction_timeout=0.01)

        outcome = await poller.tick()

        assert outcome == PollStateEnum.FAILED
        assert poller.state_for(definition).last_error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_when_read_recovers_then_failures_reset_and_value_emitted(
        self, make_definition, transport, pubsub, fake_clock, transport_error
    ):
        definition = make_definition(interval=10)
        transport.script(1, transport_error(), transport_error(), [5])
        poller = _make_poller([definition], transport, pubsub, fake_clock)

        await poller.tick()
        fake_clock.advance(20)
        await poller.tick()
        assert poller.state_for(definition).consecutive_failures == 2

        fake_clock.advance(20)
        assert await poller.tick() == PollStateEnum.CHANGED

        state = poller.state_for(definition)
        assert state.consecutive_failures == 0
        assert state.last_error is None
        assert state.next_due == pytest.approx(fake_clock.now + 10)


class TestScheduling:
    @pytest.mark.asyncio
    async def test_write_only_definitions_are_not_polled(self, make_definition, transport, pubsub, fake_clock):
        readable = make_definition(address=1)
        write_only = make_definition(address=2, modbusaccess="write", topic="x/setpoint")
        poller = _make_poller([readable, write_only], transport, pubsub, fake_clock)

        assert [state.definition for state in poller.states()] == [readable]
        with pytest.raises(KeyError):
            poller.state_for(write_only)

    @pytest.mark.asyncio
    async def test_definitions_read_in_due_order(self, make_definition, transport, pubsub, fake_clock):
        fast = make_definition(address=1, interval=1, topic="fast")
        slow = make_definition(address=2, interval=3, topic="slow")
        poller = _make_poller([slow, fast], transport, pubsub, fake_clock)

        for _ in range(6):
            await poller.tick()
            fake_clock.advance(1)

        # slow at t=100 and t=103, fast at t=101, 102, 104, 105
        assert [call[0] for call in transport.calls] == [2, 1, 1, 2, 1, 1]

    @pytest.mark.asyncio
    async def test_definition_of_other_device_is_rejected(self, make_definition, transport, pubsub, fake_clock):
        with pytest.raises(ValueError):
            _make_poller([make_definition(device="inverter")], transport, pubsub, fake_clock)


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_interrupts_idle_wait(self, make_definition, transport, pubsub):
        definition = make_definition(interval=60)
        poller = AsyncDevicePoller("default", transport, [definition], pubsub)

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.05)
        assert len(transport.calls) == 1

        poller.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert poller.is_stopping
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_read_finish(self, make_definition, pubsub):
        definition = make_definition(interval=60)
        read_started = asyncio.Event()

        async def slow_read(address, count, register_kind):
            read_started.set()
            await asyncio.sleep(0.05)
            return [9]

        transport = Mock()
        transport.read_registers = slow_read
        poller = AsyncDevicePoller("default", transport, [definition], pubsub)

        task = asyncio.create_task(poller.run())
        await read_started.wait()
        poller.stop()
        await asyncio.wait_for(task, timeout=1.0)

        [change] = _published_changes(pubsub)
        assert change.words == (9,)

    @pytest.mark.asyncio
    async def test_tick_after_stop_reads_nothing(self, make_definition, transport, pubsub, fake_clock):
        poller = _make_poller([make_definition()], transport, pubsub, fake_clock)
        poller.stop()

        assert await poller.tick() is None
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_run_without_readable_definitions_waits_for_stop(self, make_definition, transport, pubsub):
        poller = AsyncDevicePoller("default", transport, [make_definition(modbusaccess="write")], pubsub)

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.01)
        assert not task.done()

        poller.stop()
        await asyncio.wait_for(task, timeout=1.0)
