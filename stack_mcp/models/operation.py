"""Operation, progress and notice models."""

from datetime import UTC, datetime

from pydantic import Field, computed_field

from .enums import ErrorKind, NoticeLevel, OperationState, OperationType, ProgressKind
from .stack import MCPModel


class ProgressEvent(MCPModel):
    """One classified line of streamed compose output."""

    kind: ProgressKind
    message: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_error(self) -> bool:
        return self.kind is ProgressKind.ERROR


class Notice(MCPModel):
    """User-facing message emitted by the engine."""

    level: NoticeLevel
    message: str
    stack_name: str | None = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Notice timestamp in ISO 8601 format",
    )


def dedup_key_for(operation_type: OperationType, target: str) -> str:
    return f"{operation_type.value}:{target}"


class Operation(MCPModel):
    """A requested state change against one stack."""

    type: OperationType
    target: str
    streaming: bool = False
    state: OperationState = OperationState.IDLE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def dedup_key(self) -> str:
        return dedup_key_for(self.type, self.target)


class OperationResult(MCPModel):
    """Terminal outcome of an operation invocation."""

    operation: OperationType
    stack_name: str
    state: OperationState
    message: str
    error_kind: ErrorKind | None = None
    progress: list[ProgressEvent] = Field(default_factory=list)
    output: str | None = None
    reload_scheduled: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.state is OperationState.SUCCEEDED
