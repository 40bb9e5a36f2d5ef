"""Configuration management for Stack MCP server."""

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import DEFAULT_CONFIG_FILE, DEFAULT_STACKS_PATH, DEFAULT_UPDATE_FILE
from .exceptions import ConfigurationError

logger = structlog.get_logger()

STACKS_PATH_KEY = "stacksPath"


class ServerConfig(BaseModel):
    """Server configuration."""

    model_config = ConfigDict(populate_by_name=True)

    host: str = Field(default="127.0.0.1", alias="FASTMCP_HOST")  # Use 0.0.0.0 for container deployment
    port: int = Field(default=8000, alias="FASTMCP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


class StackMCPConfig(BaseSettings):
    """Main configuration for Stack MCP server."""

    stacks_path: str = Field(default=DEFAULT_STACKS_PATH, alias="STACKS_PATH")
    config_file: str = Field(default=DEFAULT_CONFIG_FILE, alias="STACK_MCP_CONFIG_FILE")
    update_file: str = Field(default=DEFAULT_UPDATE_FILE, alias="STACK_MCP_UPDATE_FILE")
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )


def validate_stacks_path(path: str) -> str:
    """Validate a stacks root directory.

    Raises:
        ConfigurationError: If the path is empty, relative, contains ``..`` or spaces
    """
    candidate = (path or "").strip()
    if not candidate:
        raise ConfigurationError("Stacks path cannot be empty")
    if not candidate.startswith("/"):
        raise ConfigurationError("Stacks path must be absolute (start with /)")
    if ".." in candidate:
        raise ConfigurationError("Stacks path cannot contain '..'")
    if " " in candidate:
        raise ConfigurationError("Stacks path cannot contain spaces")
    return candidate.rstrip("/") or "/"


def load_config(config_path: str | None = None) -> StackMCPConfig:
    """Load configuration from multiple sources (synchronous interface).

    Args:
        config_path: Optional path to the JSON config file

    Returns:
        Loaded configuration

    Note:
        For async code, use load_config_async() instead.
    """
    try:
        asyncio.get_running_loop()
        raise RuntimeError(
            "load_config() cannot be called from within an async context. "
            "Use 'await load_config_async()' instead."
        )
    except RuntimeError as e:
        if "no running event loop" in str(e).lower():
            return asyncio.run(load_config_async(config_path))
        raise


async def load_config_async(config_path: str | None = None) -> StackMCPConfig:
    """Load configuration from multiple sources (async interface).

    Order of precedence, lowest first: defaults, ``.env``, the JSON config
    document, then explicit environment variables.
    """
    load_dotenv()

    config = StackMCPConfig()

    path = Path(config_path or os.getenv("STACK_MCP_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    document = await _load_json_config(path)
    if stacks_path := document.get(STACKS_PATH_KEY):
        config.stacks_path = stacks_path

    config.config_file = str(path)

    _apply_env_overrides(config)

    config.stacks_path = validate_stacks_path(config.stacks_path)
    return config


def _apply_env_overrides(config: StackMCPConfig) -> None:
    """Apply environment variable overrides."""
    if stacks_path := os.getenv("STACKS_PATH"):
        config.stacks_path = stacks_path
    if update_file := os.getenv("STACK_MCP_UPDATE_FILE"):
        config.update_file = update_file
    if os.getenv("FASTMCP_HOST"):
        config.server.host = os.getenv("FASTMCP_HOST", config.server.host)
    if port_env := os.getenv("FASTMCP_PORT"):
        config.server.port = int(port_env)
    if os.getenv("LOG_LEVEL"):
        config.server.log_level = os.getenv("LOG_LEVEL", config.server.log_level)


async def _load_json_config(config_path: Path) -> dict[str, Any]:
    """Load the JSON config document; a missing file yields an empty dict."""
    if not config_path.exists():
        return {}

    try:
        content = await asyncio.to_thread(config_path.read_text)
        loaded = json.loads(content) if content.strip() else {}
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        return {}
    return loaded


def save_config(config: StackMCPConfig, config_path: str | None = None) -> None:
    """Save the persisted part of the configuration as ``{"stacksPath": ...}``.

    Raises:
        ConfigurationError: If unable to save configuration
    """
    path = Path(config_path or config.config_file)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({STACKS_PATH_KEY: config.stacks_path}, indent=2), encoding="utf-8")
        logger.info("Configuration saved", path=str(path), stacks_path=config.stacks_path)
    except OSError as e:
        logger.error("Failed to save configuration", path=str(path), error=str(e))
        raise ConfigurationError(f"Failed to save configuration to {path}: {e}") from e


async def change_stacks_path(
    config: StackMCPConfig, new_path: str, *, migrate: bool = False
) -> dict[str, Any]:
    """Point the server at a new stacks root, optionally copying existing stacks.

    The directory is created before the configuration is persisted.
    """
    target = validate_stacks_path(new_path)
    previous = config.stacks_path

    try:
        await asyncio.to_thread(Path(target).mkdir, parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Failed to create stacks directory {target}: {e}") from e

    migrated: list[str] = []
    if migrate and previous != target:
        migrated = await migrate_stacks(previous, target)

    config.stacks_path = target
    try:
        await asyncio.to_thread(save_config, config)
    except ConfigurationError:
        config.stacks_path = previous
        raise

    return {"previous_path": previous, "stacks_path": target, "migrated": migrated}


async def migrate_stacks(source: str, destination: str) -> list[str]:
    """Copy every stack directory under ``source`` into ``destination``."""
    source_root = Path(source)
    destination_root = Path(destination)
    if not source_root.is_dir():
        return []

    def _copy() -> list[str]:
        copied = []
        for entry in sorted(source_root.iterdir()):
            if entry.is_dir():
                shutil.copytree(entry, destination_root / entry.name, dirs_exist_ok=True)
                copied.append(entry.name)
        return copied

    try:
        copied = await asyncio.to_thread(_copy)
    except (OSError, shutil.Error) as e:
        raise ConfigurationError(f"Failed to migrate stacks to {destination}: {e}") from e

    logger.info("Stacks migrated", source=source, destination=destination, stacks=copied)
    return copied
