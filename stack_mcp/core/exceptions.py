"""Core exceptions for Stack MCP operations."""


class StackMCPError(Exception):
    """Base exception for Stack MCP operations."""


class ComposeCommandError(StackMCPError):
    """Compose or docker command execution failed."""


class ConfigurationError(StackMCPError):
    """Configuration validation or loading failed."""


class StackValidationError(StackMCPError):
    """User supplied stack input failed validation."""


class OperationInProgressError(StackMCPError):
    """An operation with the same dedup key is already running."""

    def __init__(self, dedup_key: str):
        super().__init__(f"Operation already in progress: {dedup_key}")
        self.dedup_key = dedup_key
