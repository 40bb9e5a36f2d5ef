"""
Stack MCP Services

Service layer for stack discovery, operations, update checks and detail views.
"""

from .lifecycle import StackLifecycle  # noqa: F401
from .operations import NoticeLog, OperationController  # noqa: F401
from .runtime_status import RuntimeStatusService  # noqa: F401
from .stack_details import StackDetails  # noqa: F401
from .stack_registry import StackRegistry  # noqa: F401
from .stack_service import StackService  # noqa: F401
from .update_checker import UpdateChecker  # noqa: F401

__all__ = [
    "StackService",
    "StackRegistry",
    "StackLifecycle",
    "OperationController",
    "NoticeLog",
    "UpdateChecker",
    "StackDetails",
    "RuntimeStatusService",
]
