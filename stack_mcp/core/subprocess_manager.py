"""Centralized subprocess management with proper resource handling.

Every docker and compose call goes through :class:`SubprocessManager`. One-shot
commands return a tagged :data:`CommandResult`; long-running compose commands
are exposed as an async stream of :class:`StreamLine` events terminated by a
single :class:`StreamExit` or :class:`StreamError`.
"""

import asyncio
import os
import re
import shlex
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, NoReturn

import structlog

from ..models.enums import ErrorKind
from .batch import first_success
from .error_classifier import classify_error, describe_error
from .exceptions import ComposeCommandError

logger = structlog.get_logger()

KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL
STREAM_LINE_LIMIT = 1024 * 1024  # Compose can print very long single lines

# Probed in order; the v1 standalone binary wins when present
COMPOSE_CANDIDATES: tuple[tuple[str, ...], ...] = (
    ("docker-compose",),
    ("docker", "compose"),
)

_FAILURE_HINTS = (
    "yaml:",
    "error:",
    "Error:",
    "mapping values",
    "failed",
    "cannot",
    "ERROR",
    "Invalid",
    "Unknown",
)
_CARET_LINE = re.compile(r"^\s*\^")


@dataclass(frozen=True)
class CommandSuccess:
    """Command exited with status 0."""

    data: str = ""

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class CommandFailure:
    """Command could not run or exited non-zero."""

    kind: ErrorKind
    message: str
    data: str = ""
    returncode: int | None = None

    @property
    def success(self) -> bool:
        return False

    @property
    def summary(self) -> str:
        """Short classified description suitable for a user notice."""
        return describe_error(self.message)

    def raise_error(self) -> NoReturn:
        raise ComposeCommandError(self.message)


CommandResult = CommandSuccess | CommandFailure


@dataclass(frozen=True)
class StreamLine:
    text: str


@dataclass(frozen=True)
class StreamExit:
    returncode: int
    output: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class StreamError:
    """The process could not be spawned or its pipe broke."""

    message: str


StreamEvent = StreamLine | StreamExit | StreamError


def extract_failure_message(output: str) -> str:
    """Pick the most useful diagnostic from captured command output.

    A multi-line YAML error wins, then the first line carrying an error hint,
    then the raw output. Only an empty output yields the generic exit message.
    """
    lines = [line for line in output.splitlines() if line.strip()]

    yaml_error: str | None = None
    for line in lines:
        if "yaml:" in line and "line" in line:
            yaml_error = line.strip()
        elif yaml_error is not None and not _CARET_LINE.match(line):
            yaml_error += " " + line.strip()

    if yaml_error:
        return yaml_error

    for line in lines:
        if any(hint in line for hint in _FAILURE_HINTS):
            return line.strip()

    return output.strip() or "non-zero exit status"


def build_compose_shell(stack_dir: str, compose: Sequence[str], args: Sequence[str]) -> list[str]:
    """Build ``sh -c 'cd <dir> && <compose> <args> 2>&1'``."""
    command = " ".join(shlex.quote(part) for part in (*compose, *args))
    return ["sh", "-c", f"cd {shlex.quote(stack_dir)} && {command} 2>&1"]


class SubprocessManager:
    """Manages subprocess execution with proper resource cleanup."""

    def __init__(self, error_reporter: Callable[[str], None] | None = None):
        """
        Args:
            error_reporter: Called with a classified message whenever a command
                fails and the caller did not pass ``suppress_error``
        """
        self._active_processes: set[asyncio.subprocess.Process] = set()
        self._cleanup_lock = asyncio.Lock()
        self._error_reporter = error_reporter
        self._compose_command: tuple[str, ...] | None = None
        self._compose_lock = asyncio.Lock()

    async def run_command(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        stdin: str | None = None,
        suppress_error: bool = False,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            cmd: Command and arguments as a list
            cwd: Working directory for the command
            env: Environment variables
            stdin: Input to provide to the command
            suppress_error: Expected-to-fail probe; skip user-facing reporting

        Returns:
            CommandSuccess with stdout, or CommandFailure with a classified kind
        """
        logger.debug("Executing command", command=" ".join(cmd), cwd=cwd)

        kwargs: dict[str, Any] = {
            "cwd": cwd,
            "env": env or os.environ.copy(),
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if stdin is not None:
            kwargs["stdin"] = asyncio.subprocess.PIPE

        try:
            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except OSError as e:
            return self._failure(
                cmd, ErrorKind.TRANSPORT, f"Failed to execute {cmd[0]}: {e}", suppress_error=suppress_error
            )

        await self._track(process)
        try:
            stdout_bytes, stderr_bytes = await process.communicate(
                input=stdin.encode() if stdin is not None else None
            )
        finally:
            await self._release(process)

        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""

        if process.returncode == 0:
            return CommandSuccess(data=stdout)

        output = "\n".join(part for part in (stdout.strip(), stderr.strip()) if part)
        return self._failure(
            cmd,
            None,
            extract_failure_message(output),
            data=output,
            returncode=process.returncode,
            suppress_error=suppress_error,
        )

    async def stream_command(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Run a command and yield its output line by line as it arrives.

        stderr is merged into stdout. The stream always ends with exactly one
        StreamExit or StreamError.
        """
        logger.debug("Streaming command", command=" ".join(cmd), cwd=cwd)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                env=env or os.environ.copy(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LINE_LIMIT,
            )
        except OSError as e:
            yield StreamError(f"Failed to execute {cmd[0]}: {e}")
            return

        await self._track(process)
        lines: list[str] = []
        try:
            if process.stdout is None:
                raise RuntimeError("stdout pipe unavailable")
            try:
                async for raw in process.stdout:
                    text = raw.decode(errors="replace").rstrip("\r\n")
                    if not text.strip():
                        continue
                    lines.append(text)
                    yield StreamLine(text)
            except (ValueError, asyncio.LimitOverrunError) as e:
                yield StreamError(f"Failed to read output of {cmd[0]}: {e}")
                return

            returncode = await process.wait()
            yield StreamExit(returncode=returncode, output="\n".join(lines))
        finally:
            await self._release(process)

    async def run_streaming(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_line: Callable[[str], None] | None = None,
        suppress_error: bool = False,
    ) -> CommandResult:
        """Consume :meth:`stream_command`, handing each line to ``on_line``."""
        async with aclosing(self.stream_command(cmd, cwd=cwd, env=env)) as events:
            async for event in events:
                if isinstance(event, StreamLine):
                    if on_line is not None:
                        on_line(event.text)
                elif isinstance(event, StreamError):
                    return self._failure(
                        cmd, ErrorKind.TRANSPORT, event.message, suppress_error=suppress_error
                    )
                elif event.success:
                    return CommandSuccess(data=event.output)
                else:
                    return self._failure(
                        cmd,
                        None,
                        extract_failure_message(event.output),
                        data=event.output,
                        returncode=event.returncode,
                        suppress_error=suppress_error,
                    )

        return self._failure(cmd, ErrorKind.TRANSPORT, "Command stream ended without exit status")

    async def compose_command(self) -> tuple[str, ...]:
        """Resolve the compose binary once and cache it for this manager."""
        if self._compose_command is not None:
            return self._compose_command

        async with self._compose_lock:
            if self._compose_command is None:
                hit = await first_success(
                    COMPOSE_CANDIDATES,
                    lambda candidate: self.run_command([*candidate, "version"], suppress_error=True),
                    lambda result: result.success,
                )
                # docker compose v2 is the default when neither probe answers
                self._compose_command = hit[0] if hit else COMPOSE_CANDIDATES[-1]
                logger.info("Resolved compose command", compose=" ".join(self._compose_command))
            return self._compose_command

    async def run_compose(
        self,
        stack_dir: str,
        args: Sequence[str],
        *,
        streaming: bool = False,
        on_line: Callable[[str], None] | None = None,
        suppress_error: bool = False,
    ) -> CommandResult:
        """Run a compose subcommand inside ``stack_dir``."""
        cmd = build_compose_shell(stack_dir, await self.compose_command(), args)
        if streaming:
            return await self.run_streaming(cmd, on_line=on_line, suppress_error=suppress_error)
        return await self.run_command(cmd, suppress_error=suppress_error)

    async def cleanup_all(self):
        """Cleanup all active processes."""
        async with self._cleanup_lock:
            processes = list(self._active_processes)

        if not processes:
            return

        logger.info("Cleaning up active processes", count=len(processes))

        for process in processes:
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass

        for process in processes:
            if process.returncode is None:
                try:
                    await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
                except TimeoutError:
                    process.kill()
                    await process.wait()
                except ProcessLookupError:
                    pass

        async with self._cleanup_lock:
            self._active_processes.clear()

    async def _track(self, process: asyncio.subprocess.Process) -> None:
        async with self._cleanup_lock:
            self._active_processes.add(process)

    async def _release(self, process: asyncio.subprocess.Process) -> None:
        async with self._cleanup_lock:
            self._active_processes.discard(process)

        # A consumer that stopped iterating early leaves the process running
        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
            except TimeoutError:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass

    def _failure(
        self,
        cmd: list[str],
        kind: ErrorKind | None,
        message: str,
        *,
        data: str = "",
        returncode: int | None = None,
        suppress_error: bool = False,
    ) -> CommandFailure:
        if kind is None:
            classified = classify_error(message)
            kind = (
                classified.kind
                if classified.kind in (ErrorKind.CONFIGURATION, ErrorKind.RUNTIME_STATE)
                else ErrorKind.EXIT_STATUS
            )

        failure = CommandFailure(kind=kind, message=message, data=data, returncode=returncode)

        if suppress_error:
            logger.debug("Command failed", command=" ".join(cmd), kind=kind.value, error=message)
        else:
            logger.warning(
                "Command failed",
                command=" ".join(cmd),
                kind=kind.value,
                returncode=returncode,
                error=message,
            )
            if self._error_reporter is not None:
                self._error_reporter(failure.summary)

        return failure
