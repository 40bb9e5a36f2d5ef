"""FastMCP middleware for Stack MCP server.

- LoggingMiddleware: Structured request/response logging with redaction
- ErrorHandlingMiddleware: Error tracking per method, always re-raising
- ActivityMiddleware: Tool calls reset the adaptive refresh interval
"""

from .activity import ActivityMiddleware
from .error_handling import ErrorHandlingMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "ActivityMiddleware",
    "ErrorHandlingMiddleware",
    "LoggingMiddleware",
]
