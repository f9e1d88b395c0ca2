"""Scheduler settings loaded from environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEZONE = "Asia/Jakarta"
TASK_TIMEOUT_MS = 5 * 60 * 1000
SEARCH_HORIZON_MINUTES = 366 * 24 * 60


class SchedulerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ERP_SCHEDULER_", extra="ignore")

    default_timezone: str = Field(default=DEFAULT_TIMEZONE, description="Zone used when a task does not name one")
    task_timeout_ms: int = Field(default=TASK_TIMEOUT_MS, ge=1, description="Execution timeout applied by the service")
    completion_tolerance_ms: int = Field(
        default=1000, ge=0, description="Allowed drift between stored and derived execution time"
    )
    search_horizon_minutes: int = Field(
        default=SEARCH_HORIZON_MINUTES, ge=1, description="Upper bound of the next-run minute scan"
    )
    allow_concurrent_runs: bool = Field(
        default=False, description="Allow a second running execution for the same task"
    )
    database_url: str = Field(default="sqlite+aiosqlite:///:memory:")


@lru_cache(maxsize=1)
def get_settings() -> SchedulerSettings:
    return SchedulerSettings()
