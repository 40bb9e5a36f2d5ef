"""Tuning settings for the orchestration engine.

Provides centralized timing and concurrency configuration using Pydantic
BaseSettings with environment variable support for operational tuning.
All durations are in seconds.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.enums import OperationType


class RefreshSettings(BaseSettings):
    """Adaptive refresh scheduler configuration."""

    base_interval: float = Field(
        60.0, alias="REFRESH_BASE_INTERVAL", description="Stack reload interval while active"
    )
    service_interval: float = Field(
        30.0, alias="REFRESH_SERVICE_INTERVAL", description="Fixed docker service probe interval"
    )
    max_interval: float = Field(
        300.0, alias="REFRESH_MAX_INTERVAL", description="Upper bound for the backed-off interval"
    )
    backoff_multiplier: float = Field(
        1.5, alias="REFRESH_BACKOFF_MULTIPLIER", description="Growth factor applied while idle"
    )
    idle_threshold: float = Field(
        120.0, alias="REFRESH_IDLE_THRESHOLD", description="Inactivity before the user counts as idle"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class EngineSettings(BaseSettings):
    """Batch sizes, delays and view refresh rates."""

    stack_load_concurrency: int = Field(
        5, ge=1, alias="STACK_LOAD_CONCURRENCY", description="Stacks loaded concurrently per chunk"
    )
    image_check_concurrency: int = Field(
        5, ge=1, alias="IMAGE_CHECK_CONCURRENCY", description="Images checked concurrently per chunk"
    )
    stats_concurrency: int = Field(
        5, ge=1, alias="STATS_CONCURRENCY", description="Containers sampled concurrently per chunk"
    )
    update_step_delay: float = Field(
        1.0, alias="UPDATE_STEP_DELAY", description="Pause between the steps of a stack update"
    )
    update_all_delay: float = Field(
        2.0, alias="UPDATE_ALL_DELAY", description="Pause between stacks during update_all"
    )
    update_check_max_age: float = Field(
        86400.0, alias="UPDATE_CHECK_MAX_AGE", description="Age after which updates are re-checked"
    )
    auto_update_check_delay: float = Field(
        3.0, alias="AUTO_UPDATE_CHECK_DELAY", description="Delay before the startup update check"
    )
    log_tail_lines: int = Field(
        200, ge=1, le=10000, alias="LOG_TAIL_LINES", description="Log lines fetched per container"
    )
    stats_refresh_interval: float = Field(
        2.0, alias="STATS_REFRESH_INTERVAL", description="Detail view stats refresh rate"
    )
    logs_refresh_interval: float = Field(
        3.0, alias="LOGS_REFRESH_INTERVAL", description="Detail view logs refresh rate"
    )

    # Containers report running only some time after the command returns
    start_reload_delay: float = Field(2.0, alias="START_RELOAD_DELAY")
    restart_reload_delay: float = Field(2.0, alias="RESTART_RELOAD_DELAY")
    stop_reload_delay: float = Field(1.0, alias="STOP_RELOAD_DELAY")
    update_reload_delay: float = Field(1.0, alias="UPDATE_RELOAD_DELAY")
    create_reload_delay: float = Field(1.0, alias="CREATE_RELOAD_DELAY")
    remove_reload_delay: float = Field(0.0, alias="REMOVE_RELOAD_DELAY")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    def reload_delay(self, operation_type: OperationType) -> float:
        return {
            OperationType.START: self.start_reload_delay,
            OperationType.RESTART: self.restart_reload_delay,
            OperationType.STOP: self.stop_reload_delay,
            OperationType.UPDATE: self.update_reload_delay,
            OperationType.CREATE: self.create_reload_delay,
            OperationType.REMOVE: self.remove_reload_delay,
        }[operation_type]
