"""
Unit tests for agent.lifecycle module.

Schedules run against a simulated clock so cadence and cancellation can
be checked deterministically.
"""
import asyncio
import random
import signal

import pytest

from agent.lifecycle import AgentLifecycle, LifecycleState, PeriodicSchedule
from agent.sampler import POLL_COUNT, RANDOM_VALUE, RANDOM_VALUE_LIMIT, RuntimeSampler
from agent.runtime_stats import RuntimeStatsError


@pytest.fixture
def sampler(store, fake_reader):
    return RuntimeSampler(store, reader=fake_reader, rng=random.Random(1))


@pytest.fixture
def agent(store, sampler, recording_transmitter, fake_clock):
    return AgentLifecycle(store, sampler, recording_transmitter,
                          poll_interval=2, report_interval=10, clock=fake_clock,
                          shutdown_timeout=1.0)


async def cancel_and_wait(task):
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def stop_and_wait(agent, task):
    agent.stop("test")
    await asyncio.wait_for(task, timeout=2)


class TestPeriodicSchedule:
    """Test cases for PeriodicSchedule."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ticks_once_per_interval(self, fake_clock):
        calls = []
        schedule = PeriodicSchedule("test", 3, lambda: calls.append(fake_clock.now), fake_clock)
        task = asyncio.create_task(schedule.run())

        await fake_clock.advance(10)
        await cancel_and_wait(task)

        assert calls == [3, 6, 9]
        assert schedule.ticks == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_async_action_awaited(self, fake_clock):
        calls = []

        async def action():
            calls.append(fake_clock.now)

        schedule = PeriodicSchedule("test", 1, action, fake_clock)
        task = asyncio.create_task(schedule.run())
        await fake_clock.advance(2)
        await cancel_and_wait(task)

        assert calls == [1, 2]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_action_does_not_stop_schedule(self, fake_clock, log_messages):
        def action():
            raise ValueError("boom")

        schedule = PeriodicSchedule("test", 1, action, fake_clock)
        task = asyncio.create_task(schedule.run())
        await fake_clock.advance(3)
        await cancel_and_wait(task)

        assert schedule.ticks == 3
        assert schedule.failed_ticks == 3
        assert any(level == "ERROR" and "boom" in message for level, message in log_messages)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overrunning_action_skips_missed_ticks(self, fake_clock):
        calls = []

        async def slow_action():
            calls.append(fake_clock.now)
            if len(calls) == 1:
                await fake_clock.sleep(5)

        schedule = PeriodicSchedule("test", 2, slow_action, fake_clock)
        task = asyncio.create_task(schedule.run())
        await fake_clock.advance(12)
        await cancel_and_wait(task)

        # The first tick at t=2 runs until t=7, so the ticks at 4 and 6 are skipped.
        assert calls == [2, 8, 10, 12]
        assert schedule.skipped_ticks == 2

    @pytest.mark.unit
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PeriodicSchedule("test", 0, lambda: None)


class TestAgentLifecycle:
    """Test cases for AgentLifecycle."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_report_and_five_samples_after_ten_units(self, agent, store,
                                                               recording_transmitter, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(0)
        assert agent.state is LifecycleState.RUNNING
        assert recording_transmitter.started

        await fake_clock.advance(10)

        assert agent.reporting.ticks == 1
        assert agent.sampling.ticks == 5
        assert store.get(POLL_COUNT).value == 5
        assert len(recording_transmitter.snapshots) == 1

        await stop_and_wait(agent, task)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_poll_count_tracks_sampling_ticks(self, agent, store, fake_clock):
        task = asyncio.create_task(agent.run())

        for _ in range(7):
            await fake_clock.advance(2)
            assert store.get(POLL_COUNT).value == agent.sampling.ticks
            assert 0 <= store.get(RANDOM_VALUE).value < RANDOM_VALUE_LIMIT

        await stop_and_wait(agent, task)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reports_observe_consistent_snapshots(self, agent, recording_transmitter, fake_clock):
        task = asyncio.create_task(agent.run())

        await fake_clock.advance(50)

        assert agent.reporting.ticks == 5
        poll_counts = []
        for snapshot in recording_transmitter.snapshots:
            assert not set(snapshot.gauges) & set(snapshot.counters)
            assert len(snapshot.gauges) == 28
            poll_counts.append(snapshot.counters[POLL_COUNT])
        assert poll_counts == sorted(poll_counts)
        assert poll_counts[-1] in (24, 25)

        await stop_and_wait(agent, task)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_halts_both_schedules(self, agent, recording_transmitter, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(12)
        samples, reports = agent.sampling.ticks, agent.reporting.ticks

        await stop_and_wait(agent, task)

        assert agent.state is LifecycleState.STOPPED
        assert agent.stop_reason == "test"
        assert recording_transmitter.closed

        await fake_clock.advance(100)

        assert agent.sampling.ticks == samples
        assert agent.reporting.ticks == reports
        assert len(recording_transmitter.snapshots) == reports
        assert fake_clock.pending_sleepers == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, agent, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(0)

        agent.stop("first")
        agent.stop("second")
        await asyncio.wait_for(task, timeout=2)

        assert agent.stop_reason == "first"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_outer_cancellation_still_shuts_down(self, agent, recording_transmitter, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(4)

        await cancel_and_wait(task)
        with pytest.raises(asyncio.CancelledError):
            await task

        assert agent.state is LifecycleState.STOPPED
        assert recording_transmitter.closed

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_only_once(self, agent, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(0)
        await stop_and_wait(agent, task)

        with pytest.raises(RuntimeError):
            await agent.run()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreadable_stats_at_startup_is_fatal(self, agent, fake_reader, recording_transmitter):
        fake_reader.fail = True

        with pytest.raises(RuntimeStatsError):
            await agent.run()

        assert recording_transmitter.started is False
        assert agent.state is LifecycleState.CREATED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_sample_does_not_stop_agent(self, agent, store, fake_reader, fake_clock):
        task = asyncio.create_task(agent.run())
        await fake_clock.advance(4)
        fake_reader.fail = True
        await fake_clock.advance(4)
        fake_reader.fail = False
        await fake_clock.advance(2)

        assert agent.state is LifecycleState.RUNNING
        assert agent.sampling.ticks == 5
        assert store.get(POLL_COUNT).value == 3

        await stop_and_wait(agent, task)

    @pytest.mark.unit
    @pytest.mark.parametrize("poll,report", [(0, 10), (2, -1), (5, 2)])
    def test_invalid_intervals_rejected(self, store, sampler, recording_transmitter, poll, report):
        with pytest.raises(ValueError):
            AgentLifecycle(store, sampler, recording_transmitter, poll_interval=poll, report_interval=report)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_signal_handlers_stop_agent(self, agent):
        installed = {}

        class RecordingLoop:
            def add_signal_handler(self, sig, callback, *args):
                installed[sig] = (callback, args)

        agent.install_signal_handlers(loop=RecordingLoop())

        assert signal.SIGINT in installed
        assert signal.SIGTERM in installed
        callback, args = installed[signal.SIGTERM]
        callback(*args)
        assert agent.stop_reason == "SIGTERM"
