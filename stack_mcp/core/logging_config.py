"""Structured logging for the Stack MCP server.

Events go to the console and to size-capped JSON files: ``stack_mcp.log`` for
the server and engine modules, ``middleware.log`` for request tracking.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

SERVER_LOG = "stack_mcp.log"
MIDDLEWARE_LOG = "middleware.log"

# stdlib logger name -> file its events are written to. Module loggers created
# with structlog.get_logger() are named after their module, hence "stack_mcp".
LOG_CHANNELS: dict[str, str] = {
    "server": SERVER_LOG,
    "stack_mcp": SERVER_LOG,
    "middleware": MIDDLEWARE_LOG,
}


def setup_logging(
    log_dir: Path | str = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> dict[str, Path]:
    """Route structlog events to the console and the per-channel log files.

    Calling it again replaces the handlers instead of stacking duplicates.

    Args:
        log_dir: Directory for log files
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Size at which a file is truncated; no backups are kept

    Returns:
        Log file path per channel name
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level_name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(_console_handler(level))

    json_formatter = ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    file_handlers: dict[str, RotatingFileHandler] = {}
    for filename in dict.fromkeys(LOG_CHANNELS.values()):
        handler = RotatingFileHandler(
            log_dir / filename,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=0,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(json_formatter)
        file_handlers[filename] = handler

    for name, filename in LOG_CHANNELS.items():
        channel = logging.getLogger(name)
        channel.handlers.clear()
        channel.addHandler(file_handlers[filename])
        channel.propagate = True  # console output comes from the root handler

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    files = {name: log_dir / filename for name, filename in LOG_CHANNELS.items()}
    get_server_logger().info(
        "Logging system initialized",
        log_dir=str(log_dir.absolute()),
        log_level=level_name,
        max_file_size_mb=max_file_size_mb,
        files=sorted({str(path) for path in files.values()}),
    )
    return files


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stdout.isatty()
        else structlog.processors.JSONRenderer()
    )
    handler.setFormatter(ProcessorFormatter(processor=renderer))
    return handler


def get_server_logger() -> Any:
    """Logger for server operations (stack_mcp.log)."""
    return structlog.get_logger("server")


def get_middleware_logger() -> Any:
    """Logger for middleware request tracking (middleware.log)."""
    return structlog.get_logger("middleware")
