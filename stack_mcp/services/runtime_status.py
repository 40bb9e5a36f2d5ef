"""Docker presence and daemon service control."""

from typing import Any

import structlog

from ..core.subprocess_manager import SubprocessManager
from ..models.enums import ServiceAction


class RuntimeStatusService:
    """Detects docker and drives the daemon through systemctl."""

    def __init__(self, runner: SubprocessManager):
        self.runner = runner
        self.docker_version: str | None = None
        self.service_state: str = "unknown"
        self.logger = structlog.get_logger()

    async def detect_docker(self) -> bool:
        """Whether the docker CLI answers; the client version is cached."""
        result = await self.runner.run_command(
            ["docker", "version", "--format", "{{.Client.Version}}"], suppress_error=True
        )
        self.docker_version = (result.data.strip() or None) if result.success else None
        return result.success

    async def probe(self) -> str:
        """Lightweight ``systemctl is-active docker`` check, polled by the scheduler."""
        result = await self.runner.run_command(["systemctl", "is-active", "docker"], suppress_error=True)
        # is-active exits non-zero for inactive units but still prints the state
        state = (result.data if result.success else result.message).strip().splitlines()
        self.service_state = state[0] if state and state[0] else "unknown"
        return self.service_state

    async def status(self) -> dict[str, Any]:
        installed = await self.detect_docker()
        state = await self.probe()
        return {
            "success": True,
            "docker_installed": installed,
            "docker_version": self.docker_version,
            "service_state": state,
            "active": state == "active",
        }

    async def control(self, action: ServiceAction) -> dict[str, Any]:
        """Start, stop or restart the docker service."""
        if action is ServiceAction.STATUS:
            return await self.status()

        result = await self.runner.run_command(["systemctl", action.value, "docker"])
        state = await self.probe()
        if not result.success:
            self.logger.error("Docker service control failed", action=action.value, error=result.summary)
            return {
                "success": False,
                "action": action.value,
                "error": f"Failed to {action.value} docker: {result.summary}",
                "service_state": state,
            }

        self.logger.info("Docker service controlled", action=action.value, service_state=state)
        return {"success": True, "action": action.value, "service_state": state}
