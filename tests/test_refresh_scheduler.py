"""Tests for adaptive refresh scheduling."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from stack_mcp.core.refresh_scheduler import DEFAULT_VIEW, AdaptiveRefreshScheduler, ViewTimers


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reload():
    return AsyncMock()


@pytest.fixture
def probe():
    return AsyncMock()


@pytest.fixture
async def scheduler(reload, probe, refresh_settings, clock):
    scheduler = AdaptiveRefreshScheduler(reload, probe, refresh_settings, clock=clock)
    yield scheduler
    await scheduler.shutdown()


@pytest.mark.asyncio
class TestAdaptiveRefreshScheduler:
    """Idle backoff, activity reset and visibility pausing."""

    async def test_start_schedules_both_polls(self, scheduler):
        scheduler.start()
        snapshot = scheduler.snapshot()

        assert snapshot["running"]
        assert snapshot["reload_pending"]
        assert snapshot["service_probe_pending"]
        assert snapshot["current_interval"] == 60
        assert snapshot["active_view"] == DEFAULT_VIEW

    async def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        handle = scheduler.state.reload_handle
        scheduler.start()
        assert scheduler.state.reload_handle is handle

    async def test_interval_backs_off_while_idle(self, scheduler, clock):
        """The interval grows monotonically and never exceeds the maximum."""
        scheduler.start()
        clock.advance(200)

        intervals = []
        for _ in range(6):
            scheduler._on_reload_timer()
            intervals.append(scheduler.state.current_interval)

        assert intervals == [90, 135, 202.5, 300, 300, 300]
        assert intervals == sorted(intervals)

    async def test_interval_stays_at_base_when_active(self, scheduler, clock):
        scheduler.start()
        clock.advance(30)

        scheduler._on_reload_timer()

        assert scheduler.state.current_interval == 60

    async def test_activity_resets_backoff(self, scheduler, clock):
        """Activity after idling snaps the interval back and reschedules."""
        scheduler.start()
        clock.advance(500)
        scheduler._on_reload_timer()
        scheduler._on_reload_timer()
        stale_handle = scheduler.state.reload_handle

        scheduler.record_activity()

        assert scheduler.state.current_interval == 60
        assert not scheduler.is_idle()
        assert scheduler.state.reload_handle is not stale_handle
        assert stale_handle.cancelled()

    async def test_reload_targets_active_view(self, scheduler, reload):
        scheduler.start()
        scheduler.set_active_view("stack:web")

        scheduler._on_reload_timer()
        await asyncio.sleep(0)

        reload.assert_awaited_once_with("stack:web")

    async def test_hidden_pauses_polling(self, scheduler, reload, probe):
        """While hidden no timer is pending and timer callbacks do nothing."""
        scheduler.start()
        scheduler.set_hidden(True)

        assert scheduler.state.reload_handle is None
        assert scheduler.state.service_handle is None

        scheduler._on_reload_timer()
        scheduler._on_service_timer()
        await asyncio.sleep(0)

        reload.assert_not_awaited()
        probe.assert_not_awaited()

    async def test_visible_again_reloads_once(self, scheduler, reload, clock):
        """Regaining visibility resets the interval and reloads immediately."""
        scheduler.start()
        scheduler.set_hidden(True)
        clock.advance(1000)

        scheduler.set_hidden(False)
        await asyncio.sleep(0)

        reload.assert_awaited_once_with(DEFAULT_VIEW)
        assert scheduler.state.current_interval == 60
        assert scheduler.snapshot()["reload_pending"]

    async def test_overlapping_reload_skipped(self, reload, probe, refresh_settings, clock):
        """A reload still in flight is not started a second time."""
        gate = asyncio.Event()

        async def _slow(view):
            await reload(view)
            await gate.wait()

        scheduler = AdaptiveRefreshScheduler(_slow, probe, refresh_settings, clock=clock)
        scheduler.start()
        scheduler._on_reload_timer()
        await asyncio.sleep(0)
        scheduler._on_reload_timer()
        await asyncio.sleep(0)

        assert reload.await_count == 1
        gate.set()
        await scheduler.shutdown()

    async def test_failed_reload_keeps_scheduler_alive(self, probe, refresh_settings, clock):
        scheduler = AdaptiveRefreshScheduler(
            AsyncMock(side_effect=RuntimeError("docker down")), probe, refresh_settings, clock=clock
        )
        scheduler.start()
        scheduler._on_reload_timer()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert scheduler.running
        assert scheduler.snapshot()["reload_pending"]
        await scheduler.shutdown()

    async def test_service_probe_runs_on_its_own_timer(self, scheduler, probe):
        scheduler.start()
        scheduler._on_service_timer()
        await asyncio.sleep(0)

        probe.assert_awaited_once()
        assert scheduler.state.service_handle is not None

    async def test_stop_cancels_timers(self, scheduler):
        scheduler.start()
        scheduler.stop()

        snapshot = scheduler.snapshot()
        assert not snapshot["running"]
        assert not snapshot["reload_pending"]
        assert not snapshot["service_probe_pending"]


@pytest.mark.asyncio
class TestViewTimers:
    """Detail view refresh loops."""

    async def test_runs_immediately_and_repeats(self):
        calls = 0

        async def _tick():
            nonlocal calls
            calls += 1

        timers = ViewTimers()
        timers.start("stats", 0.01, _tick)
        await asyncio.sleep(0.05)

        assert calls >= 2
        assert timers.active == ["stats"]
        timers.clear()
        await asyncio.sleep(0)
        assert timers.active == []

    async def test_failures_do_not_stop_loop(self):
        calls = 0

        async def _broken():
            nonlocal calls
            calls += 1
            raise RuntimeError("container gone")

        timers = ViewTimers()
        timers.start("logs", 0.01, _broken)
        await asyncio.sleep(0.05)
        timers.clear()

        assert calls >= 2

    async def test_restart_replaces_loop(self):
        """Starting a timer under an existing name replaces the old loop."""
        first = AsyncMock()
        second = AsyncMock()

        timers = ViewTimers()
        timers.start("stats", 10, first)
        await asyncio.sleep(0)
        timers.start("stats", 10, second)
        await asyncio.sleep(0)
        timers.clear()

        first.assert_awaited_once()
        second.assert_awaited_once()
