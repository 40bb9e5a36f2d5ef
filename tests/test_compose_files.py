"""Tests for compose file validation, inspection and stack directory IO."""

import json

import pytest

from stack_mcp.constants import DEFAULT_DOCKERFILE
from stack_mcp.core.exceptions import StackValidationError
from stack_mcp.services.compose_files import (
    ComposeFiles,
    extract_build_contexts,
    extract_images,
    extract_ports,
    validate_compose_content,
    validate_env_content,
    validate_stack_name,
)

from .conftest import COMPOSE_WEB, write_stack


@pytest.fixture
def files(config):
    return ComposeFiles(config)


class TestValidation:
    """Input validation before anything is written."""

    @pytest.mark.parametrize("name", ["web", "my-app", "app_2", "v1.2"])
    def test_valid_stack_names(self, name):
        assert validate_stack_name(f" {name} ") == name

    @pytest.mark.parametrize("name", ["", "   ", ".hidden", "_x", "a/b", "../etc", "with space"])
    def test_invalid_stack_names(self, name):
        with pytest.raises(StackValidationError):
            validate_stack_name(name)

    def test_compose_requires_services(self):
        with pytest.raises(StackValidationError, match="services:"):
            validate_compose_content("version: '3'\nvolumes:\n  data: {}\n")

    def test_compose_rejects_tab_indentation(self):
        """Tabs in indentation are reported with their line number."""
        with pytest.raises(StackValidationError, match="Line 3: YAML does not allow tabs"):
            validate_compose_content("services:\n  web:\n\timage: nginx\n")

    def test_compose_reports_yaml_errors(self):
        with pytest.raises(StackValidationError, match="Line"):
            validate_compose_content("services:\n  web:\n    image: nginx\n   ports: [\n")

    def test_empty_compose(self):
        with pytest.raises(StackValidationError, match="empty"):
            validate_compose_content("  \n")

    def test_valid_compose(self):
        validate_compose_content(COMPOSE_WEB)

    def test_env_content(self):
        validate_env_content("# comment\n\nPORT=8080\nEMPTY=\n")
        with pytest.raises(StackValidationError, match="Line 2"):
            validate_env_content("A=1\n=value\n")


class TestExtraction:
    def test_ports_from_yaml(self):
        """Short, long and address-bound port syntax; container-only ports are skipped."""
        content = """services:
  web:
    image: nginx
    ports:
      - "8080:80"
      - "127.0.0.1:8443:443/tcp"
      - "9000"
      - target: 53
        published: 5353
        host_ip: 0.0.0.0
"""
        ports = [f"{p.host}:{p.container}" for p in extract_ports(content)]
        assert ports == ["8080:80", "127.0.0.1:8443:443", "0.0.0.0:5353:53"]

    def test_unquoted_low_ports(self):
        """Unquoted mappings like 53:53 stay mappings instead of YAML 1.1 base-60 integers."""
        content = """services:
  dns:
    image: pihole/pihole
    ports:
      - 53:53
      - 2222:22
      - 8080:80
      - 22
"""
        ports = [f"{p.host}:{p.container}" for p in extract_ports(content)]
        assert ports == ["53:53", "2222:22", "8080:80"]

    def test_ports_from_unparsable_yaml(self):
        """Broken YAML falls back to a line scan."""
        content = 'services:\n  web:\n    image: [nginx\n    ports:\n      - "3000:3000"\n'
        assert [f"{p.host}:{p.container}" for p in extract_ports(content)] == ["3000:3000"]

    def test_interpolated_ports_skipped(self):
        content = 'services:\n  web:\n    ports:\n      - "${PORT}:80"\n'
        assert extract_ports(content) == []

    def test_images_are_distinct(self):
        content = "services:\n  a:\n    image: redis:7\n  b:\n    image: redis:7\n  c:\n    build: .\n"
        assert extract_images(content) == ["redis:7"]

    def test_build_contexts(self):
        """Only relative local contexts are returned."""
        content = """services:
  api:
    build: ./api
  worker:
    build:
      context: worker
  remote:
    build: https://github.com/example/app.git
  absolute:
    build: /srv/build
"""
        assert extract_build_contexts(content) == ["./api", "worker"]

    def test_nothing_to_extract(self):
        assert extract_ports(None) == []
        assert extract_images("") == []
        assert extract_build_contexts(None) == []


@pytest.mark.asyncio
class TestComposeFiles:
    """Stack directory reads and writes."""

    async def test_read_compose_variant_order(self, files, stacks_root):
        """docker-compose.yaml wins over the other variants."""
        stack_dir = write_stack(stacks_root, "web", content="services: {}\n", variant="compose.yml")
        (stack_dir / "docker-compose.yaml").write_text(COMPOSE_WEB)

        variant, content = await files.read_compose(stack_dir)

        assert variant == "docker-compose.yaml"
        assert content == COMPOSE_WEB

    async def test_read_compose_missing(self, files, stacks_root):
        (stacks_root / "empty").mkdir()
        assert await files.read_compose(stacks_root / "empty") is None

    async def test_write_stack_creates_files(self, files, stacks_root):
        stack_dir = files.stack_dir("web")

        target = await files.write_stack(stack_dir, COMPOSE_WEB, "PORT=8080")

        assert target.name == "docker-compose.yaml"
        assert target.read_text() == COMPOSE_WEB
        assert (stack_dir / ".env").read_text() == "PORT=8080\n"

    async def test_write_stack_keeps_existing_variant(self, files, stacks_root):
        """Saving rewrites the variant already on disk."""
        stack_dir = write_stack(stacks_root, "web", variant="compose.yml")

        target = await files.write_stack(stack_dir, COMPOSE_WEB)

        assert target.name == "compose.yml"
        assert not (stack_dir / "docker-compose.yaml").exists()

    async def test_empty_env_removes_env_file(self, files, stacks_root):
        stack_dir = write_stack(stacks_root, "web")
        (stack_dir / ".env").write_text("OLD=1\n")

        await files.write_stack(stack_dir, COMPOSE_WEB, "")

        assert not (stack_dir / ".env").exists()
        assert await files.read_env(stack_dir) == ""

    async def test_create_build_contexts(self, files, stacks_root):
        """Missing contexts get a template Dockerfile; existing ones are left alone."""
        stack_dir = write_stack(stacks_root, "app")
        (stack_dir / "worker").mkdir()
        (stack_dir / "worker" / "Dockerfile").write_text("FROM python:3.12\n")
        content = "services:\n  api:\n    build: ./api\n  worker:\n    build: worker\n  bad:\n    build: ../outside\n"

        created = await files.create_build_contexts(stack_dir, content)

        assert created == ["./api"]
        assert (stack_dir / "api" / "Dockerfile").read_text() == DEFAULT_DOCKERFILE
        assert (stack_dir / "worker" / "Dockerfile").read_text() == "FROM python:3.12\n"
        assert not (stacks_root / "outside").exists()

    async def test_backup_and_remove(self, files, stacks_root):
        stack_dir = write_stack(stacks_root, "web")

        backup = await files.write_backup(stack_dir)
        assert "timestamp" in json.loads(backup.read_text())

        await files.remove_stack_dir(stack_dir)
        assert not await files.exists(stack_dir)

    async def test_stack_dir_validates_name(self, files):
        with pytest.raises(StackValidationError):
            files.stack_dir("../etc")
