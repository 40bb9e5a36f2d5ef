"""
FastMCP Stack Manager Server

An MCP server for managing Docker Compose stacks that live as directories
under a single stacks root on the local host.
"""

import argparse
import os
import sys
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.tools.tool import ToolResult
from pydantic import Field

from stack_mcp.core.config_loader import StackMCPConfig, load_config, validate_stacks_path
from stack_mcp.core.exceptions import ConfigurationError
from stack_mcp.core.logging_config import get_server_logger, setup_logging
from stack_mcp.core.settings import EngineSettings, RefreshSettings
from stack_mcp.core.subprocess_manager import SubprocessManager
from stack_mcp.middleware import ActivityMiddleware, ErrorHandlingMiddleware, LoggingMiddleware
from stack_mcp.models.enums import RefreshAction, ServiceAction, SettingsAction, StackAction
from stack_mcp.models.params import (
    DockerServiceParams,
    DockerStacksParams,
    StackRefreshParams,
    StackSettingsParams,
)
from stack_mcp.services import StackService


def get_data_dir() -> Path:
    """Get a writable data directory.

    Priority order:
    1. STACK_MCP_DATA_DIR
    2. XDG_DATA_HOME/stack-mcp
    3. ~/.local/share/stack-mcp
    4. System temp fallback
    """
    candidates: list[Path | None] = [
        (Path(p) if (p := os.getenv("STACK_MCP_DATA_DIR")) else None),
        (Path(p) / "stack-mcp" if (p := os.getenv("XDG_DATA_HOME")) else None),
        Path.home() / ".local" / "share" / "stack-mcp",
    ]
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            if os.access(candidate, os.W_OK):
                return candidate
        except OSError:
            continue
    return Path(tempfile.gettempdir()) / "stack-mcp"


class StackMCPServer:
    """Stack MCP server wiring the stack service into FastMCP tools."""

    def __init__(
        self,
        config: StackMCPConfig,
        engine_settings: EngineSettings | None = None,
        refresh_settings: RefreshSettings | None = None,
        runner: SubprocessManager | None = None,
    ):
        self.config = config
        self.logger = get_server_logger()
        self.stack_service = StackService(config, engine_settings, refresh_settings, runner=runner)

        # FastMCP app is created in run() so construction has no side effects
        self.app: FastMCP | None = None

        self.logger.info(
            "Stack MCP Server initialized",
            stacks_path=config.stacks_path,
            server_config=config.server.model_dump(),
        )

    @asynccontextmanager
    async def lifespan(self, app: FastMCP) -> AsyncIterator[None]:
        """Start the engine with the server and stop it on shutdown."""
        await self.stack_service.startup()
        try:
            yield
        finally:
            await self.stack_service.shutdown()

    def _initialize_app(self) -> None:
        self.app = FastMCP("Stack Manager", lifespan=self.lifespan)
        self._configure_middleware()

        self.app.tool(
            self.docker_stacks,
            annotations={
                "title": "Docker Compose Stack Management",
                "readOnlyHint": False,
                "destructiveHint": True,  # remove deletes volumes and the stack directory
                "idempotentHint": False,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.docker_service,
            annotations={
                "title": "Docker Service Control",
                "readOnlyHint": False,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.stack_refresh,
            annotations={
                "title": "Stack Refresh Scheduler",
                "readOnlyHint": False,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.stack_settings,
            annotations={
                "title": "Stack Manager Settings",
                "readOnlyHint": False,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )

    def _configure_middleware(self) -> None:
        """Configure FastMCP middleware stack (first added = first executed)."""
        if self.app is None:
            return
        self.app.add_middleware(
            ErrorHandlingMiddleware(
                include_traceback=os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG",
                track_error_stats=True,
            )
        )
        self.app.add_middleware(ActivityMiddleware(self.stack_service.scheduler))
        self.app.add_middleware(
            LoggingMiddleware(
                include_payloads=os.getenv("LOG_INCLUDE_PAYLOADS", "true").lower() in ("1", "true", "yes", "on"),
                max_payload_length=int(os.getenv("LOG_MAX_PAYLOAD_LENGTH", "1000")),
            )
        )

    async def docker_stacks(
        self,
        action: Annotated[str | StackAction, Field(description="Action to perform")],
        stack_name: Annotated[str, Field(default="", description="Stack name")] = "",
        compose_content: Annotated[
            str, Field(default="", description="Docker Compose file content")
        ] = "",
        env_content: Annotated[str, Field(default="", description=".env file content")] = "",
        start: Annotated[bool, Field(default=False, description="Start after create")] = False,
        confirm: Annotated[
            bool, Field(default=False, description="Confirm update, update_all or remove")
        ] = False,
        search: Annotated[str, Field(default="", description="Filter log lines")] = "",
        lines: Annotated[
            int | None,
            Field(default=None, ge=1, le=10000, description="Log lines per container"),
        ] = None,
        limit: Annotated[int, Field(default=20, ge=1, le=200, description="Notices to return")] = 20,
    ) -> ToolResult | dict[str, Any]:
        """Docker Compose stack management.

        Actions:
        • list: List stacks with status, uptime, ports and update flags
        • view: Show a stack's compose file, .env and containers
          - Required: stack_name
        • create: Create a stack directory from compose content
          - Required: stack_name, compose_content
          - Optional: env_content, start
        • save: Rewrite an existing stack's compose and .env files
          - Required: stack_name, compose_content
          - Optional: env_content (empty removes .env)
        • start/stop/restart: Manage stack lifecycle
          - Required: stack_name
        • update: Back up, pull, recreate and prune a stack
          - Required: stack_name, confirm=true
        • update_all: Update every stack with available updates
          - Required: confirm=true
        • remove: Bring a stack down with its volumes and delete its directory
          - Required: stack_name, confirm=true
        • check_updates: Compare local images with their registries
        • stats: Container CPU, memory, network and block IO
          - Required: stack_name
        • logs: Recent container logs
          - Required: stack_name
          - Optional: search, lines
        • details: Open a live stats/logs view (no stack_name returns the open view)
          - Optional: stack_name, search
        • close_details: Close the live view
        • notices: Recent notices
          - Optional: limit
        """
        try:
            params = DockerStacksParams(
                action=action,
                stack_name=stack_name,
                compose_content=compose_content,
                env_content=env_content,
                start=start,
                confirm=confirm,
                search=search,
                lines=lines,
                limit=limit,
            )
        except Exception as e:
            return {
                "success": False,
                "error": f"Parameter validation failed: {str(e)}",
                "action": str(action) if action else "unknown",
            }

        return await self.stack_service.handle_action(
            params.action, **params.model_dump(exclude={"action"})
        )

    async def docker_service(
        self,
        action: Annotated[
            str | ServiceAction, Field(default="status", description="status, start, stop or restart")
        ] = "status",
    ) -> dict[str, Any]:
        """Docker daemon status and control through systemctl.

        Actions:
        • status: Docker CLI presence, version and service state
        • start/stop/restart: Control the docker service
        """
        try:
            params = DockerServiceParams(action=action)
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        return await self.stack_service.handle_service_action(params.action)

    async def stack_refresh(
        self,
        action: Annotated[
            str | RefreshAction,
            Field(default="status", description="status, pause, resume or activity"),
        ] = "status",
    ) -> dict[str, Any]:
        """Adaptive background refresh of stack state.

        Actions:
        • status: Current interval, idle state and active view
        • pause: Stop polling (view hidden)
        • resume: Resume polling and reload immediately
        • activity: Record activity, resetting a backed-off interval
        """
        try:
            params = StackRefreshParams(action=action)
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        return await self.stack_service.handle_refresh_action(params.action)

    async def stack_settings(
        self,
        action: Annotated[
            str | SettingsAction, Field(default="show", description="show or set_path")
        ] = "show",
        stacks_path: Annotated[str, Field(default="", description="New stacks directory")] = "",
        migrate: Annotated[
            bool, Field(default=False, description="Copy existing stacks to the new directory")
        ] = False,
    ) -> dict[str, Any]:
        """Stack manager settings.

        Actions:
        • show: Current stacks path and state files
        • set_path: Change the stacks directory
          - Required: stacks_path
          - Optional: migrate
        """
        try:
            params = StackSettingsParams(action=action, stacks_path=stacks_path, migrate=migrate)
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        return await self.stack_service.handle_settings_action(
            params.action, stacks_path=params.stacks_path, migrate=params.migrate
        )

    def run(self) -> None:
        """Run the FastMCP server."""
        try:
            self._initialize_app()
            self.logger.info(
                "Starting Stack MCP Server",
                host=self.config.server.host,
                port=self.config.server.port,
            )
            if self.app is None:
                raise RuntimeError("FastMCP app not initialized")
            self.app.run(
                transport="http",
                host=self.config.server.host,
                port=self.config.server.port,
            )
        except Exception as e:
            self.logger.error("Server startup failed", error=str(e))
            raise


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="FastMCP Docker Compose Stack Manager")
    parser.add_argument("--host", default=os.getenv("FASTMCP_HOST", "127.0.0.1"), help="Server host")
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("FASTMCP_PORT", "8000")), help="Server port"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("STACK_MCP_CONFIG_FILE"),
        help="Path to the JSON config file holding stacksPath",
    )
    parser.add_argument("--stacks-path", default=None, help="Override the stacks directory")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )
    return parser.parse_args()


def main() -> None:
    """Main entry point."""
    args = parse_args()

    log_dir = _setup_log_directory()
    logger = _setup_logging_system(args, log_dir)

    config = _load_and_configure(args, logger)
    if config is None:
        return

    server = StackMCPServer(config)
    _run_server(server, logger)


def _setup_log_directory() -> str | None:
    """Setup log directory with fallback options."""
    candidates = [
        os.getenv("LOG_DIR"),
        str(get_data_dir() / "logs"),
        str(Path(tempfile.gettempdir()) / "stack-mcp-logs"),
    ]
    for candidate in candidates:
        if not candidate:
            continue
        try:
            path = Path(candidate)
            path.mkdir(parents=True, exist_ok=True)
            if path.is_dir() and os.access(path, os.W_OK):
                return str(path)
        except OSError:
            continue

    print("Warning: Unable to create log directory, using console-only logging")
    return None


def _setup_logging_system(args, log_dir: str | None):
    """Setup logging system, falling back to basic console logging."""
    try:
        max_file_size_mb = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
        if max_file_size_mb < 1 or max_file_size_mb > 100:
            max_file_size_mb = 10
    except ValueError:
        max_file_size_mb = 10

    try:
        setup_logging(
            log_dir=log_dir or tempfile.gettempdir(),
            log_level=args.log_level,
            max_file_size_mb=max_file_size_mb,
        )
        logger = get_server_logger()
        logger.info(
            "Logging system initialized",
            log_dir=log_dir,
            log_level=args.log_level,
            max_file_size_mb=max_file_size_mb,
            file_logging=log_dir is not None,
        )
        return logger
    except Exception as e:
        print(f"Logging setup failed ({e}), using basic console logging")
        import logging

        logging.basicConfig(
            level=getattr(logging, args.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        return logging.getLogger("stack_mcp")


def _load_and_configure(args, logger) -> StackMCPConfig | None:
    """Load configuration and apply CLI overrides; None means validation-only mode."""
    try:
        config = load_config(args.config)
        if args.stacks_path:
            config.stacks_path = validate_stacks_path(args.stacks_path)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(2)

    config.server.host = args.host
    config.server.port = args.port
    config.server.log_level = args.log_level

    if args.validate_config:
        logger.info("Configuration validation successful", stacks_path=config.stacks_path)
        return None

    return config


def _run_server(server: StackMCPServer, logger) -> None:
    """Run server with error handling."""
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
