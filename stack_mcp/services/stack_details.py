"""Per-stack detail view: container stats and recent logs."""

import json
import shlex
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from ..core.batch import BatchError, parallel
from ..core.exceptions import StackValidationError
from ..core.refresh_scheduler import ViewTimers
from ..core.settings import EngineSettings
from ..core.subprocess_manager import SubprocessManager
from .stack_registry import StackRegistry

STATS_FIELDS = ("CPUPerc", "MemUsage", "MemPerc", "NetIO", "BlockIO", "PIDs")


def parse_stats_line(container: str, output: str) -> dict[str, Any]:
    """One ``docker stats --format {{json .}}`` line as a flat dict."""
    line = next((line for line in output.splitlines() if line.strip()), "")
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return {"container": container, "error": "Unparseable stats output"}
    stats = {"container": container}
    stats.update({name: raw.get(name, "") for name in STATS_FIELDS})
    return stats


def filter_log_lines(output: str, search: str | None) -> list[str]:
    lines = [line for line in output.splitlines() if line.strip()]
    if not search:
        return lines
    needle = search.lower()
    return [line for line in lines if needle in line.lower()]


@dataclass
class DetailView:
    """State of the single open detail view."""

    stack_name: str
    search: str | None = None
    stats: list[dict[str, Any]] = field(default_factory=list)
    logs: dict[str, list[str]] = field(default_factory=dict)
    stats_updated: datetime | None = None
    logs_updated: datetime | None = None


class StackDetails:
    """Fetches stats and logs; keeps at most one live view refreshing."""

    def __init__(self, runner: SubprocessManager, registry: StackRegistry, settings: EngineSettings):
        self.runner = runner
        self.registry = registry
        self.settings = settings
        self.view: DetailView | None = None
        self._timers = ViewTimers()
        self.logger = structlog.get_logger()

    def _container_names(self, stack_name: str) -> list[str]:
        stack = self.registry.get(stack_name)
        if stack is None:
            raise StackValidationError(f"Stack '{stack_name}' not found")
        return [c.name for c in stack.containers or []]

    async def stats(self, stack_name: str) -> list[dict[str, Any]]:
        """Point-in-time stats for every container, sampled in parallel."""
        containers = self._container_names(stack_name)

        async def _sample(container: str) -> dict[str, Any]:
            result = await self.runner.run_command(
                ["docker", "stats", "--no-stream", "--format", "{{json .}}", container],
                suppress_error=True,
            )
            if not result.success:
                return {"container": container, "error": result.summary}
            return parse_stats_line(container, result.data)

        results = await parallel(containers, _sample, self.settings.stats_concurrency)
        return [
            {"container": name, "error": str(result.error)} if isinstance(result, BatchError) else result
            for name, result in zip(containers, results, strict=True)
        ]

    async def logs(
        self, stack_name: str, search: str | None = None, tail: int | None = None
    ) -> dict[str, list[str]]:
        """Recent log lines per container, optionally filtered by a case-insensitive substring."""
        lines = tail or self.settings.log_tail_lines
        logs: dict[str, list[str]] = {}
        for container in self._container_names(stack_name):
            command = f"docker logs --tail {int(lines)} --timestamps {shlex.quote(container)} 2>&1"
            result = await self.runner.run_command(["sh", "-c", command], suppress_error=True)
            if not result.success:
                logs[container] = [f"Failed to fetch logs: {result.summary}"]
                continue
            logs[container] = filter_log_lines(result.data, search)
        return logs

    def open(self, stack_name: str, search: str | None = None) -> DetailView:
        """Open a live view for one stack, closing whichever view was open."""
        self._container_names(stack_name)
        self.close()
        view = DetailView(stack_name=stack_name, search=search)
        self.view = view

        async def _refresh_stats() -> None:
            view.stats = await self.stats(stack_name)
            view.stats_updated = datetime.now(UTC)

        async def _refresh_logs() -> None:
            view.logs = await self.logs(stack_name, view.search)
            view.logs_updated = datetime.now(UTC)

        self._timers.start("stats", self.settings.stats_refresh_interval, _refresh_stats)
        self._timers.start("logs", self.settings.logs_refresh_interval, _refresh_logs)
        self.logger.info("Detail view opened", stack_name=stack_name)
        return view

    def close(self) -> str | None:
        """Stop the view's timers. Returns the stack that was shown, if any."""
        self._timers.clear()
        if self.view is None:
            return None
        closed, self.view = self.view.stack_name, None
        self.logger.info("Detail view closed", stack_name=closed)
        return closed

    def snapshot(self) -> dict[str, Any] | None:
        if self.view is None:
            return None
        return {
            "stack_name": self.view.stack_name,
            "search": self.view.search,
            "stats": self.view.stats,
            "logs": self.view.logs,
            "stats_updated": self.view.stats_updated.isoformat() if self.view.stats_updated else None,
            "logs_updated": self.view.logs_updated.isoformat() if self.view.logs_updated else None,
            "timers": self._timers.active,
        }
