"""Adaptive polling of stack state.

Two independent polls run on the event loop: a fixed-interval docker service
probe and a variable-interval reload of the active view. The reload interval
grows while the user is idle, snaps back to base on activity, and both polls
stop entirely while the view is hidden.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from .settings import RefreshSettings

logger = structlog.get_logger()

DEFAULT_VIEW = "stacks"


@dataclass
class RefreshState:
    """Mutable scheduler state, owned by one scheduler instance."""

    last_activity: float
    current_interval: float
    is_hidden: bool = False
    reload_handle: asyncio.TimerHandle | None = None
    service_handle: asyncio.TimerHandle | None = None


class AdaptiveRefreshScheduler:
    """Drives periodic reloads with idle backoff and visibility pausing."""

    def __init__(
        self,
        reload: Callable[[str], Awaitable[Any]],
        probe: Callable[[], Awaitable[Any]],
        settings: RefreshSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        active_view: str = DEFAULT_VIEW,
    ):
        """
        Args:
            reload: Coroutine reloading the named view
            probe: Coroutine running the lightweight service status probe
            settings: Interval configuration
            clock: Monotonic time source in seconds
            active_view: View reloaded by the variable-interval poll
        """
        self.settings = settings or RefreshSettings()
        self.active_view = active_view
        self._reload = reload
        self._probe = probe
        self._clock = clock
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._reload_task: asyncio.Task | None = None
        self.state = RefreshState(
            last_activity=clock(), current_interval=self.settings.base_interval
        )

    @property
    def running(self) -> bool:
        return self._running

    def is_idle(self) -> bool:
        return self._clock() - self.state.last_activity > self.settings.idle_threshold

    def start(self) -> None:
        """Start both polls. Calling start on a running scheduler is a no-op."""
        if self._running:
            return
        self._running = True
        self.reset()
        if not self.state.is_hidden:
            self._schedule_reload()
            self._schedule_service()
        logger.info(
            "Refresh scheduler started",
            base_interval=self.settings.base_interval,
            service_interval=self.settings.service_interval,
        )

    def stop(self) -> None:
        """Cancel pending timers. In-flight reloads are left to finish."""
        self._running = False
        self._cancel_timers()
        logger.info("Refresh scheduler stopped")

    async def shutdown(self) -> None:
        """Stop and cancel any reload or probe still in flight."""
        self.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def reset(self) -> None:
        """Reset the idle clock and the variable interval to base."""
        self.state.last_activity = self._clock()
        self.state.current_interval = self.settings.base_interval

    def record_activity(self) -> None:
        """Register user activity.

        If the interval had backed off it returns to base and the pending reload
        timer is replaced instead of waiting out the longer interval.
        """
        self.state.last_activity = self._clock()
        if self.state.current_interval > self.settings.base_interval:
            logger.debug(
                "Activity after idle, resetting refresh interval",
                previous_interval=self.state.current_interval,
            )
            self.state.current_interval = self.settings.base_interval
            if self._running and not self.state.is_hidden:
                self._schedule_reload()

    def set_hidden(self, hidden: bool) -> None:
        """Pause polling while hidden; on regaining visibility restart and reload once."""
        if hidden:
            if not self.state.is_hidden:
                self.state.is_hidden = True
                self._cancel_timers()
                logger.debug("View hidden, polling paused")
            return

        if not self.state.is_hidden:
            return

        self.state.is_hidden = False
        self.reset()
        if self._running:
            self._schedule_reload()
            self._schedule_service()
            self._start_reload()
        logger.debug("View visible, polling resumed")

    def set_active_view(self, view: str) -> None:
        """Change the reload target without touching any timer."""
        self.active_view = view

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "hidden": self.state.is_hidden,
            "active_view": self.active_view,
            "current_interval": self.state.current_interval,
            "idle": self.is_idle(),
            "seconds_since_activity": round(self._clock() - self.state.last_activity, 1),
            "reload_pending": self.state.reload_handle is not None,
            "service_probe_pending": self.state.service_handle is not None,
        }

    def _schedule_reload(self) -> None:
        if self.state.reload_handle is not None:
            self.state.reload_handle.cancel()
        loop = asyncio.get_running_loop()
        self.state.reload_handle = loop.call_later(self.state.current_interval, self._on_reload_timer)

    def _schedule_service(self) -> None:
        if self.state.service_handle is not None:
            self.state.service_handle.cancel()
        loop = asyncio.get_running_loop()
        self.state.service_handle = loop.call_later(self.settings.service_interval, self._on_service_timer)

    def _cancel_timers(self) -> None:
        for handle in (self.state.reload_handle, self.state.service_handle):
            if handle is not None:
                handle.cancel()
        self.state.reload_handle = None
        self.state.service_handle = None

    def _on_reload_timer(self) -> None:
        self.state.reload_handle = None
        if not self._running or self.state.is_hidden:
            return

        self._start_reload()

        if self.is_idle():
            self.state.current_interval = min(
                self.state.current_interval * self.settings.backoff_multiplier,
                self.settings.max_interval,
            )
        else:
            self.state.current_interval = self.settings.base_interval

        self._schedule_reload()

    def _on_service_timer(self) -> None:
        self.state.service_handle = None
        if not self._running or self.state.is_hidden:
            return
        self._spawn(self._probe(), "service_probe")
        self._schedule_service()

    def _start_reload(self) -> None:
        if self._reload_task is not None and not self._reload_task.done():
            logger.debug("Previous reload still running, skipping", view=self.active_view)
            return
        self._reload_task = self._spawn(self._reload(self.active_view), "reload")

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            if (error := finished.exception()) is not None:
                logger.error("Scheduled refresh failed", poll=name, error=str(error))

        task.add_done_callback(_done)
        return task


class ViewTimers:
    """Periodic refresh loops owned by a single detail view.

    Unlike the scheduler these are cleared as soon as the owning view closes.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def start(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]]) -> None:
        """Run ``callback`` now and then every ``interval`` seconds, replacing any loop named ``name``."""
        self.cancel(name)
        self._tasks[name] = asyncio.create_task(self._run(name, interval, callback))

    def cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def clear(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    async def _run(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]]) -> None:
        while True:
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("View refresh failed", timer=name, error=str(e))
            await asyncio.sleep(interval)
