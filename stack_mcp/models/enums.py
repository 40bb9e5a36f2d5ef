"""Enum definitions for Stack MCP tools and the orchestration engine."""

from enum import Enum


class StackAction(Enum):
    """Actions for the docker_stacks tool."""

    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    SAVE = "save"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    UPDATE = "update"
    UPDATE_ALL = "update_all"
    REMOVE = "remove"
    CHECK_UPDATES = "check_updates"
    STATS = "stats"
    LOGS = "logs"
    DETAILS = "details"
    CLOSE_DETAILS = "close_details"
    NOTICES = "notices"


class ServiceAction(Enum):
    """Actions for the docker_service tool."""

    STATUS = "status"
    START = "start"
    STOP = "stop"
    RESTART = "restart"


class RefreshAction(Enum):
    """Actions for the stack_refresh tool."""

    STATUS = "status"
    PAUSE = "pause"
    RESUME = "resume"
    ACTIVITY = "activity"


class SettingsAction(Enum):
    """Actions for the stack_settings tool."""

    SHOW = "show"
    SET_PATH = "set_path"


class OperationType(str, Enum):
    """State-changing operations a stack can undergo."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    UPDATE = "update"
    REMOVE = "remove"
    CREATE = "create"


class OperationState(str, Enum):
    """Lifecycle of a single operation invocation."""

    IDLE = "idle"
    CONFIRMING = "confirming"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StackStatus(str, Enum):
    """Derived runtime status of a stack."""

    RUNNING = "running"
    PARTIAL = "partial"
    STOPPED = "stopped"
    ERROR = "error"
    UNKNOWN = "unknown"


class ProgressKind(str, Enum):
    """Classification of one line of streamed compose output."""

    IMAGE_PULL = "image-pull"
    DOWNLOAD_PROGRESS = "download-progress"
    CONTAINER_OP = "container-op"
    NETWORK_OP = "network-op"
    VOLUME_OP = "volume-op"
    STATUS = "status"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Where a failure originated."""

    TRANSPORT = "transport"
    EXIT_STATUS = "exit-status"
    CONFIGURATION = "configuration"
    RUNTIME_STATE = "runtime-state"
    APPLICATION = "application"


class NoticeLevel(str, Enum):
    """Severity of a user-facing notice."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
