"""Tests for configuration management."""

import json

import pytest

from stack_mcp.core.config_loader import (
    StackMCPConfig,
    change_stacks_path,
    load_config,
    load_config_async,
    migrate_stacks,
    save_config,
    validate_stacks_path,
)
from stack_mcp.core.exceptions import ConfigurationError

from .conftest import write_stack

ENV_VARS = (
    "STACKS_PATH",
    "STACK_MCP_CONFIG_FILE",
    "STACK_MCP_UPDATE_FILE",
    "FASTMCP_HOST",
    "FASTMCP_PORT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's environment and any local .env."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_default_config():
    """Test default configuration creation."""
    config = StackMCPConfig()

    assert config.stacks_path == "/opt/stacks"
    assert config.server.host == "127.0.0.1"
    assert config.server.port == 8000
    assert config.server.log_level == "INFO"


class TestValidateStacksPath:
    @pytest.mark.parametrize(
        "path,message",
        [
            ("", "empty"),
            ("relative/stacks", "absolute"),
            ("/opt/../etc", r"\.\."),
            ("/opt/my stacks", "spaces"),
        ],
    )
    def test_rejected(self, path, message):
        with pytest.raises(ConfigurationError, match=message):
            validate_stacks_path(path)

    def test_trailing_slash_removed(self):
        assert validate_stacks_path(" /srv/stacks/ ") == "/srv/stacks"
        assert validate_stacks_path("/") == "/"


@pytest.mark.asyncio
class TestLoadConfig:
    """Config file and environment precedence."""

    async def test_missing_file_uses_defaults(self, tmp_path):
        config = await load_config_async(str(tmp_path / "missing.json"))

        assert config.stacks_path == "/opt/stacks"
        assert config.config_file == str(tmp_path / "missing.json")

    async def test_json_document(self, tmp_path):
        """The persisted stacksPath replaces the default."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"stacksPath": "/srv/stacks/"}))

        config = await load_config_async(str(path))

        assert config.stacks_path == "/srv/stacks"

    async def test_environment_wins(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"stacksPath": "/srv/stacks"}))
        monkeypatch.setenv("STACKS_PATH", "/data/stacks")
        monkeypatch.setenv("FASTMCP_PORT", "9100")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        config = await load_config_async(str(path))

        assert config.stacks_path == "/data/stacks"
        assert config.server.port == 9100
        assert config.server.log_level == "DEBUG"

    async def test_config_file_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"stacksPath": "/srv/custom"}))
        monkeypatch.setenv("STACK_MCP_CONFIG_FILE", str(path))

        config = await load_config_async()

        assert config.stacks_path == "/srv/custom"

    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")

        with pytest.raises(ConfigurationError, match="Failed to load config"):
            await load_config_async(str(path))

    async def test_invalid_stacks_path(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"stacksPath": "stacks"}))

        with pytest.raises(ConfigurationError, match="absolute"):
            await load_config_async(str(path))

    async def test_sync_loader_refuses_running_loop(self, tmp_path):
        with pytest.raises(RuntimeError, match="load_config_async"):
            load_config(str(tmp_path / "missing.json"))


def test_sync_loader(tmp_path):
    """load_config works outside an event loop."""
    assert load_config(str(tmp_path / "missing.json")).stacks_path == "/opt/stacks"


def test_save_config(config, tmp_path):
    save_config(config)

    assert json.loads((tmp_path / "config.json").read_text()) == {"stacksPath": config.stacks_path}


@pytest.mark.asyncio
class TestChangeStacksPath:
    """Moving the stacks root at runtime."""

    async def test_change_and_migrate(self, config, stacks_root, tmp_path):
        """Existing stacks are copied and the new path persisted."""
        write_stack(stacks_root, "web")
        target = tmp_path / "new-root"

        result = await change_stacks_path(config, str(target), migrate=True)

        assert result == {"previous_path": str(stacks_root), "stacks_path": str(target), "migrated": ["web"]}
        assert config.stacks_path == str(target)
        assert (target / "web" / "docker-compose.yml").exists()
        assert (stacks_root / "web").exists()
        assert json.loads((tmp_path / "config.json").read_text()) == {"stacksPath": str(target)}

    async def test_change_without_migration(self, config, stacks_root, tmp_path):
        write_stack(stacks_root, "web")
        target = tmp_path / "empty-root"

        result = await change_stacks_path(config, str(target))

        assert result["migrated"] == []
        assert target.is_dir()
        assert not (target / "web").exists()

    async def test_invalid_path_leaves_config(self, config, stacks_root):
        with pytest.raises(ConfigurationError):
            await change_stacks_path(config, "not/absolute")
        assert config.stacks_path == str(stacks_root)

    async def test_save_failure_reverts(self, config, stacks_root, tmp_path):
        """The previous path is restored when the config cannot be written."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config.config_file = str(blocker / "config.json")

        with pytest.raises(ConfigurationError, match="Failed to save"):
            await change_stacks_path(config, str(tmp_path / "other"))

        assert config.stacks_path == str(stacks_root)

    async def test_migrate_missing_source(self, tmp_path):
        assert await migrate_stacks(str(tmp_path / "nope"), str(tmp_path / "dest")) == []
