"""Tests for subprocess execution and streaming."""

from unittest.mock import AsyncMock

import pytest

from stack_mcp.core.exceptions import ComposeCommandError
from stack_mcp.core.subprocess_manager import (
    CommandFailure,
    CommandSuccess,
    StreamExit,
    StreamLine,
    SubprocessManager,
    build_compose_shell,
    extract_failure_message,
)
from stack_mcp.models.enums import ErrorKind


@pytest.fixture
async def subprocess_manager():
    """Create a subprocess manager for testing."""
    manager = SubprocessManager()
    yield manager
    await manager.cleanup_all()


@pytest.mark.asyncio
class TestRunCommand:
    """One-shot command execution."""

    async def test_run_simple_command(self, subprocess_manager):
        """A zero exit status yields CommandSuccess with stdout."""
        result = await subprocess_manager.run_command(["echo", "hello"])
        assert isinstance(result, CommandSuccess)
        assert result.success
        assert result.data.strip() == "hello"

    async def test_non_zero_exit_is_classified(self, subprocess_manager):
        """stderr is inspected and the failure classified."""
        result = await subprocess_manager.run_command(
            ["sh", "-c", "echo 'yaml: line 3: mapping values are not allowed' >&2; exit 1"],
            suppress_error=True,
        )
        assert isinstance(result, CommandFailure)
        assert not result.success
        assert result.returncode == 1
        assert result.kind is ErrorKind.CONFIGURATION
        assert "yaml: line 3" in result.message
        assert result.summary.startswith("yaml: line 3")

    async def test_missing_binary_is_transport_failure(self, subprocess_manager):
        """A command that cannot be spawned never raises."""
        result = await subprocess_manager.run_command(["definitely-not-a-real-binary-xyz"], suppress_error=True)
        assert not result.success
        assert result.kind is ErrorKind.TRANSPORT

    async def test_stdin_is_passed(self, subprocess_manager):
        result = await subprocess_manager.run_command(["cat"], stdin="piped input")
        assert result.data == "piped input"

    async def test_error_reporter_called_unless_suppressed(self):
        """Failures reach the reporter only when not suppressed."""
        reported: list[str] = []
        manager = SubprocessManager(error_reporter=reported.append)

        await manager.run_command(["sh", "-c", "echo 'no space left on device' >&2; exit 1"])
        await manager.run_command(["sh", "-c", "exit 1"], suppress_error=True)

        assert reported == ["No disk space available"]

    async def test_raise_error(self, subprocess_manager):
        result = await subprocess_manager.run_command(["sh", "-c", "exit 3"], suppress_error=True)
        with pytest.raises(ComposeCommandError):
            result.raise_error()


@pytest.mark.asyncio
class TestStreaming:
    """Line-by-line streaming of long-running commands."""

    async def test_stream_yields_lines_then_exit(self, subprocess_manager):
        """Blank lines are skipped; the stream ends with one StreamExit."""
        events = [
            event
            async for event in subprocess_manager.stream_command(
                ["sh", "-c", "echo first; echo; echo second >&2"]
            )
        ]

        assert events[:-1] == [StreamLine("first"), StreamLine("second")]
        assert isinstance(events[-1], StreamExit)
        assert events[-1].success
        assert events[-1].output == "first\nsecond"

    async def test_run_streaming_hands_lines_to_callback(self, subprocess_manager):
        """on_line sees every line in order before the result is returned."""
        seen: list[str] = []
        result = await subprocess_manager.run_streaming(
            ["sh", "-c", "echo 'Pulling web'; echo 'Started web'"], on_line=seen.append
        )
        assert result.success
        assert seen == ["Pulling web", "Started web"]

    async def test_run_streaming_failure_keeps_output(self, subprocess_manager):
        """A non-zero exit returns a failure carrying the streamed output."""
        result = await subprocess_manager.run_streaming(
            ["sh", "-c", "echo 'Creating web'; echo 'ERROR: port is already allocated'; exit 1"],
            suppress_error=True,
        )
        assert not result.success
        assert result.returncode == 1
        assert "Creating web" in result.data
        assert result.kind is ErrorKind.RUNTIME_STATE

    async def test_stream_missing_binary(self, subprocess_manager):
        """Spawn failures surface as a transport failure, not an exception."""
        result = await subprocess_manager.run_streaming(["definitely-not-a-real-binary-xyz"], suppress_error=True)
        assert not result.success
        assert result.kind is ErrorKind.TRANSPORT


@pytest.mark.asyncio
class TestComposeResolution:
    """Compose binary detection."""

    async def test_falls_back_to_compose_plugin(self):
        """docker compose is used when the standalone binary is missing, and cached."""
        manager = SubprocessManager()
        manager.run_command = AsyncMock(
            side_effect=[
                CommandFailure(kind=ErrorKind.TRANSPORT, message="not found"),
                CommandSuccess(data="Docker Compose version v2.27.0"),
            ]
        )

        assert await manager.compose_command() == ("docker", "compose")
        assert await manager.compose_command() == ("docker", "compose")
        assert manager.run_command.await_count == 2

    async def test_prefers_standalone_binary(self):
        manager = SubprocessManager()
        manager.run_command = AsyncMock(return_value=CommandSuccess(data="docker-compose version 1.29.2"))

        assert await manager.compose_command() == ("docker-compose",)
        manager.run_command.assert_awaited_once()

    async def test_defaults_to_plugin_when_nothing_answers(self):
        manager = SubprocessManager()
        manager.run_command = AsyncMock(return_value=CommandFailure(kind=ErrorKind.TRANSPORT, message="nope"))

        assert await manager.compose_command() == ("docker", "compose")


class TestHelpers:
    def test_build_compose_shell_quotes_directory(self):
        """The stack directory and arguments are shell-quoted."""
        cmd = build_compose_shell("/opt/stacks/my app", ("docker", "compose"), ("up", "-d"))
        assert cmd[:2] == ["sh", "-c"]
        assert cmd[2] == "cd '/opt/stacks/my app' && docker compose up -d 2>&1"

    def test_extract_failure_message_prefers_multiline_yaml(self):
        """A wrapped YAML error is joined back into one message."""
        output = "yaml: line 5: did not find\n  expected key\n   ^\nother noise"
        assert extract_failure_message(output) == "yaml: line 5: did not find expected key other noise"

    def test_extract_failure_message_hint_line(self):
        output = "Pulling web\nError: image not found\n"
        assert extract_failure_message(output) == "Error: image not found"

    def test_extract_failure_message_empty(self):
        assert extract_failure_message("") == "non-zero exit status"

