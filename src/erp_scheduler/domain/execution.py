import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TriggerType(str, Enum):
    SCHEDULE = "schedule"
    MANUAL = "manual"
    RETRY = "retry"


TERMINAL_STATUSES: FrozenSet[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT}
)

VALID_STATUS_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: TERMINAL_STATUSES,
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.TIMEOUT: frozenset(),
}


class TaskExecution(BaseModel):
    """
    Represents one run attempt of a scheduled task.
    """
    id: str = Field(default_factory=lambda: f"exe_{uuid.uuid4().hex[:8]}", description="Unique execution identifier")
    task_id: str = Field(..., description="Identifier of the task that was run")
    started_at: datetime = Field(..., description="When the run started")
    completed_at: Optional[datetime] = Field(None, description="Set once, when the run reaches a terminal status")
    status: ExecutionStatus = ExecutionStatus.RUNNING
    triggered_by: TriggerType = Field(..., description="What started the run")
    execution_time_ms: Optional[int] = Field(None, description="completed_at - started_at in milliseconds")
    records_processed: Optional[int] = None
    result_summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(ZoneInfo("UTC")))

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
