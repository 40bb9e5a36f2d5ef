"""Data models for Stack MCP."""

from .operation import Notice, Operation, OperationResult, ProgressEvent  # noqa: F401
from .params import (  # noqa: F401
    DockerServiceParams,
    DockerStacksParams,
    StackRefreshParams,
    StackSettingsParams,
)
from .stack import ContainerSnapshot, MCPModel, PortMapping, Stack  # noqa: F401
from .update import ImageDigests, StackUpdateState, UpdateCheckRecord  # noqa: F401

__all__ = [
    # Stack models
    "MCPModel",
    "ContainerSnapshot",
    "PortMapping",
    "Stack",
    # Operation models
    "Notice",
    "Operation",
    "OperationResult",
    "ProgressEvent",
    # Update models
    "ImageDigests",
    "StackUpdateState",
    "UpdateCheckRecord",
    # Parameter models
    "DockerServiceParams",
    "DockerStacksParams",
    "StackRefreshParams",
    "StackSettingsParams",
]
