import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from ..config import get_settings
from .execution import ExecutionStatus

logger = logging.getLogger(__name__)

TASK_CODE_PATTERN = r"^[A-Z][A-Z0-9_]{2,29}$"


class ScheduledTask(BaseModel):
    """
    A named unit of work that recurs on a cron schedule.

    ``next_run_at`` and the ``last_run_*`` fields are derived scheduling state.
    They are maintained by the registry and the execution lifecycle, not
    edited by hand.
    """
    id: str = Field(default_factory=lambda: f"tsk_{uuid.uuid4().hex[:8]}", description="Unique task identifier")
    task_code: str = Field(..., description="Unique uppercase code, e.g. DAILY_OVERDUE_CHECK")
    task_name: str = Field(..., description="Human readable task name")
    description: Optional[str] = Field(None, description="Free text description")
    cron_expression: str = Field(..., description="Five-field cron expression")
    timezone: str = Field(
        default_factory=lambda: get_settings().default_timezone,
        description="IANA zone the cron fields are evaluated in"
    )
    webhook_url: Optional[str] = Field(None, description="External workflow hook invoked when the task runs")
    task_parameters: Dict[str, Any] = Field(default_factory=dict, description="Parameters passed to the job")
    is_active: bool = Field(default=True, description="Whether the task takes part in scheduling")
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[ExecutionStatus] = None
    last_run_duration_ms: Optional[int] = None
    next_run_at: Optional[datetime] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(ZoneInfo("UTC")),
        description="Task creation timestamp with UTC timezone"
    )

    @field_validator('created_at')
    def check_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            logger.warning("Task created_at has no timezone, assuming UTC")
            return v.replace(tzinfo=ZoneInfo("UTC"))
        return v

    def deactivate(self) -> None:
        self.is_active = False

    def activate(self) -> None:
        self.is_active = True

    @property
    def readable_string(self) -> str:
        summary = f"Task '{self.task_code}': {self.task_name}"
        if self.description:
            summary += f"\nDescription: {self.description}"
        summary += f"\nSchedule: {self.cron_expression} ({self.timezone})"
        if self.next_run_at:
            summary += f"\nNext run: {self.next_run_at.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        return summary
