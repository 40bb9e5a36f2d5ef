"""Logging middleware for Stack MCP server using FastMCP Middleware base class."""

import time
from typing import Any

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..core.logging_config import get_middleware_logger

# Argument names whose values are never written to the log
SENSITIVE_KEYWORDS = (
    "password",
    "passwd",
    "token",
    "secret",
    "credential",
    "authorization",
    "api_key",
    "private_key",
    "env_content",
)


class LoggingMiddleware(Middleware):
    """FastMCP middleware for request/response logging.

    Tool arguments are logged with long values truncated; ``.env`` content and
    anything that looks like a credential is redacted.
    """

    def __init__(self, include_payloads: bool = True, max_payload_length: int = 1000):
        """
        Args:
            include_payloads: Whether to include request payloads in logs
            max_payload_length: Maximum length for payload strings before truncation
        """
        self.logger = get_middleware_logger()
        self.include_payloads = include_payloads
        self.max_payload_length = max_payload_length

    async def on_message(self, context: MiddlewareContext, call_next):
        start_time = time.time()

        log_data: dict[str, Any] = {
            "method": context.method,
            "source": context.source,
            "message_type": context.type,
        }
        tool_name = getattr(context.message, "name", None)
        if tool_name:
            log_data["tool"] = tool_name
        if self.include_payloads:
            arguments = getattr(context.message, "arguments", None)
            if isinstance(arguments, dict):
                log_data["arguments"] = self._sanitize(arguments)

        self.logger.info("MCP request started", **log_data)

        try:
            result = await call_next(context)
        except Exception as e:
            self.logger.error(
                "MCP request failed",
                method=context.method,
                tool=tool_name,
                success=False,
                duration_ms=round((time.time() - start_time) * 1000, 2),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise

        self.logger.info(
            "MCP request completed",
            method=context.method,
            tool=tool_name,
            success=True,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return result

    def _sanitize(self, payload: dict[str, Any]) -> dict[str, Any]:
        sanitized: dict[str, Any] = {}
        for key, value in payload.items():
            if self._is_sensitive_field(key):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize(value)
            elif isinstance(value, str):
                sanitized[key] = self._truncate(value)
            elif isinstance(value, list):
                sanitized[key] = self._truncate(str(value)) if len(str(value)) > self.max_payload_length else value
            else:
                sanitized[key] = value
        return sanitized

    def _truncate(self, value: str) -> str:
        if len(value) > self.max_payload_length:
            return value[: self.max_payload_length] + "... [TRUNCATED]"
        return value

    @staticmethod
    def _is_sensitive_field(field_name: str) -> bool:
        lowered = field_name.lower()
        return any(keyword in lowered for keyword in SENSITIVE_KEYWORDS)
