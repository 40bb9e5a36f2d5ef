"""Shared pytest fixtures for Stack MCP tests."""

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest

from stack_mcp.core.config_loader import StackMCPConfig
from stack_mcp.core.settings import EngineSettings, RefreshSettings
from stack_mcp.core.subprocess_manager import CommandFailure, CommandResult, CommandSuccess
from stack_mcp.middleware import ActivityMiddleware, ErrorHandlingMiddleware, LoggingMiddleware
from stack_mcp.models.enums import ErrorKind

COMPOSE_WEB = """services:
  web:
    image: nginx:alpine
    ports:
      - "8080:80"
  cache:
    image: redis:7
"""


class ScriptedRunner:
    """Stand-in for SubprocessManager answering from scripted results.

    Commands are matched by prefix, compose invocations by their argument
    tuple. Streaming compose calls replay the scripted lines through
    ``on_line`` before returning.
    """

    def __init__(self):
        self.commands: list[list[str]] = []
        self.compose_calls: list[tuple[str, tuple[str, ...], bool]] = []
        self._command_rules: list[tuple[tuple[str, ...], Any]] = []
        self._compose_rules: dict[tuple[str, ...], tuple[Sequence[str], CommandResult]] = {}

    def on_command(self, prefix: Sequence[str], result: CommandResult | Callable[[list[str]], Any]) -> None:
        self._command_rules.insert(0, (tuple(prefix), result))

    def on_compose(self, args: Sequence[str], result: CommandResult, lines: Sequence[str] = ()) -> None:
        self._compose_rules[tuple(args)] = (lines, result)

    async def run_command(self, cmd: list[str], **kwargs) -> CommandResult:
        self.commands.append(list(cmd))
        for prefix, result in self._command_rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                return result(cmd) if callable(result) else result
        return CommandFailure(kind=ErrorKind.EXIT_STATUS, message="not scripted", returncode=1)

    async def run_compose(
        self,
        stack_dir: str,
        args: Sequence[str],
        *,
        streaming: bool = False,
        on_line: Callable[[str], Any] | None = None,
        suppress_error: bool = False,
    ) -> CommandResult:
        self.compose_calls.append((stack_dir, tuple(args), streaming))
        lines, result = self._compose_rules.get(tuple(args), ((), CommandSuccess()))
        for line in lines:
            if on_line is not None:
                on_line(line)
        return result

    def compose_args(self) -> list[tuple[str, ...]]:
        return [args for _, args, _ in self.compose_calls]

    async def cleanup_all(self) -> None:
        return None


def ps_line(name: str, state: str = "running", status: str = "Up 2 hours") -> str:
    return f"{name}\t{state}\t{status}"


def write_stack(root: Path, name: str, content: str = COMPOSE_WEB, variant: str = "docker-compose.yml") -> Path:
    stack_dir = root / name
    stack_dir.mkdir(parents=True, exist_ok=True)
    (stack_dir / variant).write_text(content)
    return stack_dir


@pytest.fixture
def stacks_root(tmp_path: Path) -> Path:
    root = tmp_path / "stacks"
    root.mkdir()
    return root


@pytest.fixture
def config(tmp_path: Path, stacks_root: Path) -> StackMCPConfig:
    """Configuration pointing every path into tmp_path."""
    return StackMCPConfig(
        stacks_path=str(stacks_root),
        config_file=str(tmp_path / "config.json"),
        update_file=str(tmp_path / "updates.json"),
    )


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings with every delay removed."""
    return EngineSettings(
        update_step_delay=0,
        update_all_delay=0,
        auto_update_check_delay=0,
        start_reload_delay=0,
        restart_reload_delay=0,
        stop_reload_delay=0,
        update_reload_delay=0,
        create_reload_delay=0,
        remove_reload_delay=0,
        stats_refresh_interval=0.01,
        logs_refresh_interval=0.01,
    )


@pytest.fixture
def refresh_settings() -> RefreshSettings:
    return RefreshSettings(
        base_interval=60,
        service_interval=30,
        max_interval=300,
        backoff_multiplier=1.5,
        idle_threshold=120,
    )


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


class MockCall:
    """Mock call_next function for middleware testing."""

    def __init__(self, return_value=None, exception=None, delay=0):
        self.return_value = return_value or {"status": "success"}
        self.exception = exception
        self.delay = delay
        self.call_count = 0

    async def __call__(self, context):
        self.call_count += 1

        if self.delay > 0:
            await asyncio.sleep(self.delay)

        if self.exception:
            raise self.exception

        return self.return_value


@pytest.fixture
def mock_context():
    """Create mock MiddlewareContext for a docker_stacks tool call."""
    context = MagicMock()
    context.method = "tools/call"
    context.source = "client"
    context.type = "request"
    context.message = SimpleNamespace(
        name="docker_stacks",
        arguments={"action": "list", "stack_name": ""},
    )
    return context


@pytest.fixture
def logging_middleware():
    return LoggingMiddleware(include_payloads=True, max_payload_length=1000)


@pytest.fixture
def error_handling_middleware():
    return ErrorHandlingMiddleware(include_traceback=False, track_error_stats=True)


@pytest.fixture
def activity_middleware():
    scheduler = MagicMock()
    return ActivityMiddleware(scheduler)
