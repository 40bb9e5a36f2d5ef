"""Tests for docker detection and service control."""

import pytest

from stack_mcp.core.subprocess_manager import CommandFailure, CommandSuccess
from stack_mcp.models.enums import ErrorKind, ServiceAction
from stack_mcp.services.runtime_status import RuntimeStatusService


@pytest.fixture
def runtime(runner):
    return RuntimeStatusService(runner)


@pytest.mark.asyncio
class TestRuntimeStatusService:
    async def test_status(self, runtime, runner):
        runner.on_command(["docker", "version"], CommandSuccess(data="26.1.4\n"))
        runner.on_command(["systemctl", "is-active"], CommandSuccess(data="active\n"))

        status = await runtime.status()

        assert status == {
            "success": True,
            "docker_installed": True,
            "docker_version": "26.1.4",
            "service_state": "active",
            "active": True,
        }

    async def test_inactive_service_state_from_failure(self, runtime, runner):
        """is-active exits non-zero for a stopped unit but still names its state."""
        runner.on_command(
            ["systemctl", "is-active"],
            CommandFailure(kind=ErrorKind.EXIT_STATUS, message="inactive", data="inactive", returncode=3),
        )

        assert await runtime.probe() == "inactive"

    async def test_docker_missing(self, runtime):
        assert not await runtime.detect_docker()
        assert runtime.docker_version is None

    async def test_control_success(self, runtime, runner):
        runner.on_command(["systemctl", "restart", "docker"], CommandSuccess())
        runner.on_command(["systemctl", "is-active"], CommandSuccess(data="active"))

        result = await runtime.control(ServiceAction.RESTART)

        assert result == {"success": True, "action": "restart", "service_state": "active"}

    async def test_control_failure(self, runtime, runner):
        runner.on_command(
            ["systemctl", "stop", "docker"],
            CommandFailure(
                kind=ErrorKind.RUNTIME_STATE,
                message="Interactive authentication required. permission denied",
            ),
        )
        runner.on_command(["systemctl", "is-active"], CommandSuccess(data="active"))

        result = await runtime.control(ServiceAction.STOP)

        assert not result["success"]
        assert result["error"] == "Failed to stop docker: Permission denied"
        assert result["service_state"] == "active"
