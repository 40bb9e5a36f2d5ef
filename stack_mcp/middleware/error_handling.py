"""Error handling middleware for Stack MCP server."""

from collections import defaultdict
from typing import Any

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..core.exceptions import OperationInProgressError, StackValidationError
from ..core.logging_config import get_middleware_logger

# Raised on bad input or a busy stack; nothing is wrong with the server
WARNING_ERROR_TYPES = (
    StackValidationError,
    OperationInProgressError,
    TimeoutError,
    ConnectionError,
    FileNotFoundError,
    PermissionError,
)
CRITICAL_ERROR_TYPES = (SystemError, MemoryError, RecursionError)


class ErrorHandlingMiddleware(Middleware):
    """Logs and counts errors per method, then re-raises them.

    Tool handlers turn expected failures into ``{"success": False}`` results,
    so anything reaching this middleware escaped a handler.
    """

    def __init__(self, include_traceback: bool = True, track_error_stats: bool = True):
        self.logger = get_middleware_logger()
        self.include_traceback = include_traceback
        self.track_error_stats = track_error_stats
        self.error_stats: dict[str, int] = defaultdict(int)
        self.method_errors: dict[str, int] = defaultdict(int)

    async def on_message(self, context: MiddlewareContext, call_next):
        try:
            return await call_next(context)
        except Exception as e:
            self._handle_error(e, context)
            raise  # FastMCP turns the exception into an MCP error response

    def _handle_error(self, error: Exception, context: MiddlewareContext) -> None:
        error_type = type(error).__name__
        method = context.method or "unknown"

        if self.track_error_stats:
            self.error_stats[f"{error_type}:{method}"] += 1
            self.method_errors[method] += 1

        error_data: dict[str, Any] = {
            "error_type": error_type,
            "error_message": str(error),
            "method": method,
            "source": context.source,
            "message_type": context.type,
        }
        tool_name = getattr(context.message, "name", None)
        if tool_name:
            error_data["tool"] = tool_name
        if self.track_error_stats:
            error_data["error_occurrence_count"] = self.error_stats[f"{error_type}:{method}"]
            error_data["method_error_count"] = self.method_errors[method]

        if isinstance(error, CRITICAL_ERROR_TYPES):
            self.logger.critical("Critical error in MCP request", **error_data, exc_info=self.include_traceback)
        elif isinstance(error, WARNING_ERROR_TYPES):
            self.logger.warning("Warning-level error in MCP request", **error_data)
        else:
            self.logger.error("Error in MCP request", **error_data, exc_info=self.include_traceback)

    def get_error_statistics(self) -> dict[str, Any]:
        if not self.track_error_stats:
            return {"error_tracking": "disabled"}

        top_errors = sorted(self.error_stats.items(), key=lambda item: item[1], reverse=True)[:10]
        return {
            "total_errors": sum(self.error_stats.values()),
            "unique_error_types": len(self.error_stats),
            "top_errors": top_errors,
            "error_distribution": dict(self.error_stats),
            "method_errors": dict(self.method_errors),
        }

    def reset_statistics(self) -> None:
        self.error_stats.clear()
        self.method_errors.clear()
        self.logger.info("Error statistics reset")
