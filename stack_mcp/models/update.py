"""Update check models."""

from pydantic import ConfigDict, Field

from ..constants import HAS_UPDATES, LAST_CHECK, UPDATES
from .stack import MCPModel


class StackUpdateState(MCPModel):
    model_config = ConfigDict(populate_by_name=True)

    has_updates: bool = Field(default=False, alias=HAS_UPDATES)


class UpdateCheckRecord(MCPModel):
    """Persisted summary of the last update check.

    Serialized as ``{"lastCheck": <epoch ms>, "updates": {name: {"hasUpdates": bool}}}``
    and always written as a whole.
    """

    model_config = ConfigDict(populate_by_name=True)

    last_check: int = Field(alias=LAST_CHECK, description="Epoch milliseconds of the check")
    updates: dict[str, StackUpdateState] = Field(default_factory=dict, alias=UPDATES)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def flags(self) -> dict[str, bool]:
        return {name: state.has_updates for name, state in self.updates.items()}

    @classmethod
    def from_flags(cls, last_check: int, flags: dict[str, bool]) -> "UpdateCheckRecord":
        return cls(
            last_check=last_check,
            updates={name: StackUpdateState(has_updates=value) for name, value in flags.items()},
        )


class ImageDigests(MCPModel):
    """Local and remote digests for one image reference."""

    image: str
    local: str | None = None
    remote: str | None = None

    @property
    def has_update(self) -> bool:
        return bool(self.local and self.remote and self.local != self.remote)
