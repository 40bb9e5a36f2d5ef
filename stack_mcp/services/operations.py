"""Operation controller: confirmation, deduplication and result handling.

Every state-changing stack action runs through :meth:`OperationController.execute`:

    Idle -> (Confirming) -> Running -> Succeeded | Failed

The dedup key is checked and claimed without any suspension point in between,
so at most one operation per ``type:target`` is in flight. The key is released
in every terminal state, including a declined confirmation.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from ..core.error_classifier import classify_error
from ..core.exceptions import OperationInProgressError
from ..core.progress_parser import parse_progress_line
from ..core.settings import EngineSettings
from ..core.subprocess_manager import CommandFailure, CommandResult
from ..models.enums import ErrorKind, NoticeLevel, OperationState, OperationType
from ..models.operation import Notice, Operation, OperationResult, ProgressEvent

ConfirmCallback = Callable[[str], Awaitable[bool]]

LOADING_LABELS = {
    OperationType.START: "Starting...",
    OperationType.STOP: "Stopping...",
    OperationType.RESTART: "Restarting...",
    OperationType.UPDATE: "Updating...",
    OperationType.REMOVE: "Removing...",
    OperationType.CREATE: "Creating...",
}

# Operation types that require an explicit confirmation
CONFIRMED_OPERATIONS = frozenset({OperationType.REMOVE, OperationType.UPDATE})

MAX_PROGRESS_EVENTS = 500


class Notifier(Protocol):
    """Receives user-facing notices; display is up to the implementation."""

    def notify(self, notice: Notice) -> None: ...


class NoticeLog:
    """Notifier keeping the most recent notices in memory."""

    def __init__(self, maxlen: int = 200):
        self._notices: deque[Notice] = deque(maxlen=maxlen)
        self.logger = structlog.get_logger()

    def notify(self, notice: Notice) -> None:
        self._notices.append(notice)
        self.logger.info(
            "Notice",
            level=notice.level.value,
            notice=notice.message,
            stack_name=notice.stack_name,
        )

    def recent(self, limit: int = 20) -> list[Notice]:
        if limit <= 0:
            return []
        return list(self._notices)[-limit:]

    def clear(self) -> None:
        self._notices.clear()


@dataclass
class ActionControl:
    """State of the control (button) that triggered an operation."""

    label: str
    css_class: str = ""
    disabled: bool = False

    def snapshot(self) -> tuple[str, str, bool]:
        return self.label, self.css_class, self.disabled

    def restore(self, saved: tuple[str, str, bool]) -> None:
        self.label, self.css_class, self.disabled = saved


@dataclass
class ProgressTracker:
    """Collects classified progress for one operation."""

    events: list[ProgressEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dropped: int = 0

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    def on_line(self, line: str) -> ProgressEvent | None:
        event = parse_progress_line(line)
        if event is None:
            return None
        if event.is_error:
            self.errors.append(event.message)
        if len(self.events) < MAX_PROGRESS_EVENTS:
            self.events.append(event)
        else:
            self.dropped += 1
        return event


OperationAction = Callable[[ProgressTracker], Awaitable[CommandResult]]


class OperationController:
    """Runs stack operations with dedup, confirmation and delayed reloads."""

    def __init__(
        self,
        notifier: Notifier,
        reload: Callable[[], Awaitable[Any]],
        settings: EngineSettings | None = None,
        confirmed_operations: frozenset[OperationType] = CONFIRMED_OPERATIONS,
    ):
        self.notifier = notifier
        self.settings = settings or EngineSettings()
        self.confirmed_operations = confirmed_operations
        self._reload = reload
        self._active: set[str] = set()
        self._controls: dict[str, ActionControl] = {}
        self._reload_tasks: set[asyncio.Task] = set()
        self.logger = structlog.get_logger()

    @property
    def active_keys(self) -> frozenset[str]:
        return frozenset(self._active)

    def is_active(self, operation_type: OperationType, target: str) -> bool:
        return Operation(type=operation_type, target=target).dedup_key in self._active

    def control_for(self, operation_type: OperationType, target: str) -> ActionControl:
        """Control bound to an operation, created with its idle label on first use."""
        key = Operation(type=operation_type, target=target).dedup_key
        if key not in self._controls:
            self._controls[key] = ActionControl(label=operation_type.value.capitalize())
        return self._controls[key]

    def claim(self, operation: Operation) -> None:
        """Claim the dedup key. Must not await between the check and the add."""
        key = operation.dedup_key
        if key in self._active:
            raise OperationInProgressError(key)
        self._active.add(key)

    def release(self, operation: Operation) -> None:
        self._active.discard(operation.dedup_key)

    async def execute(
        self,
        operation: Operation,
        action: OperationAction,
        *,
        confirm: ConfirmCallback | None = None,
        prompt: str | None = None,
        control: ActionControl | None = None,
        success_message: str | None = None,
        after_success: Callable[[], Awaitable[Any]] | None = None,
    ) -> OperationResult:
        """Run ``action`` as ``operation``.

        Args:
            operation: The operation being requested
            action: Coroutine performing the work; feed streamed lines to the tracker
            confirm: Asked with ``prompt`` for confirmed operation types
            prompt: Confirmation question
            control: UI control switched to a loading state while running
            success_message: Notice text on success
            after_success: Awaited once the operation has succeeded

        Returns:
            OperationResult describing the terminal state
        """
        try:
            self.claim(operation)
        except OperationInProgressError:
            message = f"{operation.type.value.capitalize()} of '{operation.target}' is already in progress"
            self._notify(NoticeLevel.WARNING, message, operation.target)
            return OperationResult(
                operation=operation.type,
                stack_name=operation.target,
                state=OperationState.IDLE,
                message=message,
                error_kind=ErrorKind.APPLICATION,
            )

        try:
            if operation.type in self.confirmed_operations:
                operation.state = OperationState.CONFIRMING
                question = prompt or f"{operation.type.value.capitalize()} stack '{operation.target}'?"
                accepted = await confirm(question) if confirm is not None else False
                if not accepted:
                    operation.state = OperationState.IDLE
                    self.logger.info("Operation declined", dedup_key=operation.dedup_key)
                    return OperationResult(
                        operation=operation.type,
                        stack_name=operation.target,
                        state=OperationState.IDLE,
                        message="Operation cancelled: confirmation required",
                    )

            return await self._run(operation, action, control, success_message, after_success)
        finally:
            self.release(operation)

    async def _run(
        self,
        operation: Operation,
        action: OperationAction,
        control: ActionControl | None,
        success_message: str | None,
        after_success: Callable[[], Awaitable[Any]] | None,
    ) -> OperationResult:
        operation.state = OperationState.RUNNING
        tracker = ProgressTracker()
        saved = control.snapshot() if control is not None else None
        if control is not None:
            control.label = LOADING_LABELS[operation.type]
            control.css_class = "loading"
            control.disabled = True

        self.logger.info(
            "Operation started",
            dedup_key=operation.dedup_key,
            streaming=operation.streaming,
        )

        try:
            result = await action(tracker)
        except Exception as e:
            self.logger.error("Operation raised", dedup_key=operation.dedup_key, error=str(e))
            result = CommandFailure(kind=ErrorKind.APPLICATION, message=str(e))
        finally:
            if control is not None and saved is not None:
                control.restore(saved)

        if result.success and not tracker.has_error:
            return await self._succeed(operation, tracker, result.data, success_message, after_success)
        return self._fail(operation, tracker, result)

    async def _succeed(
        self,
        operation: Operation,
        tracker: ProgressTracker,
        output: str,
        success_message: str | None,
        after_success: Callable[[], Awaitable[Any]] | None,
    ) -> OperationResult:
        operation.state = OperationState.SUCCEEDED
        message = success_message or f"Stack '{operation.target}' {operation.type.value} completed"
        self._notify(NoticeLevel.SUCCESS, message, operation.target)

        if after_success is not None:
            try:
                await after_success()
            except Exception as e:
                self.logger.warning("Post-success step failed", dedup_key=operation.dedup_key, error=str(e))

        delay = self.settings.reload_delay(operation.type)
        self.schedule_reload(delay)
        self.logger.info("Operation succeeded", dedup_key=operation.dedup_key, reload_delay=delay)

        return OperationResult(
            operation=operation.type,
            stack_name=operation.target,
            state=OperationState.SUCCEEDED,
            message=message,
            progress=tracker.events,
            output=output or None,
            reload_scheduled=True,
        )

    def _fail(self, operation: Operation, tracker: ProgressTracker, result: CommandResult) -> OperationResult:
        operation.state = OperationState.FAILED

        if tracker.has_error:
            # Compose may exit 0 after printing a fatal configuration error
            classified = classify_error("\n".join(tracker.errors))
            kind = ErrorKind.CONFIGURATION if result.success else result.kind
        else:
            classified = classify_error(result.message)
            kind = result.kind

        message = f"Failed to {operation.type.value} stack '{operation.target}': {classified.message}"
        self._notify(NoticeLevel.ERROR, message, operation.target)
        self.logger.warning(
            "Operation failed",
            dedup_key=operation.dedup_key,
            kind=kind.value,
            error=classified.message,
            forced=result.success,
        )

        return OperationResult(
            operation=operation.type,
            stack_name=operation.target,
            state=OperationState.FAILED,
            message=message,
            error_kind=kind,
            progress=tracker.events,
            output=result.data or None,
        )

    def schedule_reload(self, delay: float) -> asyncio.Task:
        """Reload the registry after ``delay`` seconds, letting runtime state settle."""
        task = asyncio.create_task(self._delayed_reload(delay))
        self._reload_tasks.add(task)
        task.add_done_callback(self._reload_tasks.discard)
        return task

    async def _delayed_reload(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await self._reload()
        except Exception as e:
            self.logger.error("Post-operation reload failed", error=str(e))

    async def cancel_pending_reloads(self) -> None:
        tasks = list(self._reload_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _notify(self, level: NoticeLevel, message: str, stack_name: str | None = None) -> None:
        self.notifier.notify(Notice(level=level, message=message, stack_name=stack_name))
