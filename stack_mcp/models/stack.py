"""Stack-related data models."""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..constants import UPTIME_STOPPED, UPTIME_UNAVAILABLE
from .enums import StackStatus


class MCPModel(BaseModel):
    """Base model with common MCP settings."""

    def model_dump(self, **kwargs) -> dict[str, Any]:
        """Convert to dict with exclude_none by default."""
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)


class PortMapping(MCPModel):
    """Host to container port pair declared in a compose file."""

    host: str
    container: str

    @field_validator("host", "container")
    @classmethod
    def validate_port(cls, v: str) -> str:
        port = v.rsplit(":", 1)[-1]
        if not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValueError(f"Invalid port: {v}")
        return v


class ContainerSnapshot(MCPModel):
    """One container as reported by ``docker ps``."""

    name: str
    state: str
    status_text: str = ""

    @property
    def is_running(self) -> bool:
        return self.state.strip().lower() == "running"


_DURATION_UNITS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}
_DURATION_PART = re.compile(r"(\d+|an?)\s+(second|minute|hour|day|week|month|year)s?", re.IGNORECASE)


def parse_uptime_seconds(status_text: str) -> int:
    """Approximate how long a container has been up from its ``Up ...`` status text."""
    text = status_text.strip()
    if not text.lower().startswith("up "):
        return 0
    if "less than a second" in text.lower():
        return 0

    total = 0
    for amount, unit in _DURATION_PART.findall(text):
        count = 1 if amount.lower() in ("a", "an") else int(amount)
        total += count * _DURATION_UNITS[unit.lower()]
    return total


def format_uptime(status_text: str) -> str:
    """Strip the leading ``Up`` from a docker status string."""
    text = status_text.strip()
    if text.lower().startswith("up "):
        return text[3:].strip()
    if text.lower().startswith("exited"):
        return UPTIME_STOPPED
    return UPTIME_UNAVAILABLE


class Stack(MCPModel):
    """One managed compose application.

    ``status`` and ``uptime`` are derived from the same container snapshot and
    cannot be set on their own; the model is frozen so a reload always builds a
    fresh Stack.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    compose_file: str | None = None
    compose_content: str | None = None
    has_config_error: bool = False
    ports: list[PortMapping] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    containers: list[ContainerSnapshot] | None = None
    query_failed: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> StackStatus:
        return self._derive()[0]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def uptime(self) -> str:
        return self._derive()[1]

    @property
    def running_count(self) -> int:
        return sum(1 for c in self.containers or [] if c.is_running)

    def _derive(self) -> tuple[StackStatus, str]:
        if self.has_config_error or self.query_failed:
            return StackStatus.ERROR, UPTIME_UNAVAILABLE
        if self.containers is None:
            return StackStatus.UNKNOWN, UPTIME_UNAVAILABLE
        if not self.containers:
            return StackStatus.STOPPED, UPTIME_UNAVAILABLE

        running = [c for c in self.containers if c.is_running]
        if not running:
            return StackStatus.STOPPED, UPTIME_STOPPED

        longest = max(running, key=lambda c: parse_uptime_seconds(c.status_text))
        uptime = format_uptime(longest.status_text)
        if len(running) == len(self.containers):
            return StackStatus.RUNNING, uptime
        return StackStatus.PARTIAL, uptime

    def summary(self, has_update: bool = False) -> dict[str, Any]:
        """Listing view of the stack with the update flag merged in."""
        return {
            "name": self.name,
            "status": self.status.value,
            "uptime": self.uptime,
            "containers": len(self.containers or []),
            "running": self.running_count,
            "ports": [f"{p.host}:{p.container}" for p in self.ports],
            "images": self.images,
            "has_update": has_update,
            "has_config_error": self.has_config_error,
        }
