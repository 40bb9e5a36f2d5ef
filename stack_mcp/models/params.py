"""Parameter models for FastMCP tool validation."""

from typing import Annotated, Any

from pydantic import Field, StringConstraints, field_validator

from .enums import RefreshAction, ServiceAction, SettingsAction, StackAction
from .stack import MCPModel

# Empty, or a stack directory name
StackName = Annotated[str, StringConstraints(max_length=128, pattern=r"^$|^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")]


def _validate_enum_action(value: Any, enum_class: type) -> Any:
    """Generic validator for enum action fields."""
    if isinstance(value, str):
        # Handle "EnumClass.VALUE" format
        enum_value = value.split(".")[-1].lower() if "." in value else value.lower()
        for action in enum_class:
            if action.value == enum_value or action.name.lower() == enum_value:
                return action
    elif isinstance(value, enum_class):
        return value

    # Let Pydantic handle the error if no match
    return value


class DockerStacksParams(MCPModel):
    """Parameters for the docker_stacks consolidated tool."""

    action: StackAction = Field(default=StackAction.LIST, description="Action to perform")
    stack_name: StackName = Field(
        default="",
        description="Stack directory name (letters, numbers, '.', '_', '-'; starts alphanumeric)",
    )
    compose_content: str = Field(default="", description="Docker Compose file content")
    env_content: str = Field(default="", description="Contents of the stack's .env file")
    start: bool = Field(default=False, description="Start the stack right after creating it")
    confirm: bool = Field(default=False, description="Confirm an update or remove")
    search: str = Field(default="", description="Case-insensitive filter for log lines")
    lines: int | None = Field(
        default=None,
        ge=1,
        le=10000,
        description="Log lines per container (LOG_TAIL_LINES when unset)",
    )
    limit: int = Field(default=20, ge=1, le=200, description="Number of notices to return")

    @field_validator("action", mode="before")
    @classmethod
    def validate_action(cls, v):
        return _validate_enum_action(v, StackAction)

    @field_validator("env_content")
    @classmethod
    def validate_env_content(cls, v: str) -> str:
        """Every non-blank, non-comment line must be KEY=value."""
        for number, line in enumerate(v.splitlines(), start=1):
            stripped = line.strip()
            if stripped and not stripped.startswith("#") and "=" not in stripped:
                raise ValueError(f"env_content line {number} is not KEY=value")
        return v


class DockerServiceParams(MCPModel):
    """Parameters for the docker_service tool."""

    action: ServiceAction = Field(default=ServiceAction.STATUS, description="Action to perform")

    @field_validator("action", mode="before")
    @classmethod
    def validate_action(cls, v):
        return _validate_enum_action(v, ServiceAction)


class StackRefreshParams(MCPModel):
    """Parameters for the stack_refresh tool."""

    action: RefreshAction = Field(default=RefreshAction.STATUS, description="Action to perform")

    @field_validator("action", mode="before")
    @classmethod
    def validate_action(cls, v):
        return _validate_enum_action(v, RefreshAction)


class StackSettingsParams(MCPModel):
    """Parameters for the stack_settings tool."""

    action: SettingsAction = Field(default=SettingsAction.SHOW, description="Action to perform")
    stacks_path: str = Field(default="", description="New absolute stacks directory")
    migrate: bool = Field(default=False, description="Copy existing stacks to the new directory")

    @field_validator("action", mode="before")
    @classmethod
    def validate_action(cls, v):
        return _validate_enum_action(v, SettingsAction)
