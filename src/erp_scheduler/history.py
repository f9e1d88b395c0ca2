"""
Execution history queries over an in-memory snapshot of executions.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator

from .domain.execution import ExecutionStatus, TaskExecution, TriggerType
from .timeutils import to_datetime

FAILED_STATUSES = (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)


class ExecutionFilters(BaseModel):
    """
    Criteria for ``filter_executions``. Every criterion is optional and all
    given criteria must hold.
    """
    task_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    triggered_by: Optional[TriggerType] = None
    start_date: Optional[datetime] = Field(None, description="Inclusive lower bound on started_at")
    end_date: Optional[datetime] = Field(None, description="Inclusive upper bound on started_at")
    limit: Optional[int] = Field(None, ge=0, description="Page size, None or 0 for no bound")
    offset: Optional[int] = Field(None, ge=0)

    @field_validator("start_date", "end_date", mode="before")
    def coerce_date(cls, v: Any) -> Any:
        if v is None:
            return v
        return to_datetime(v)

    def matches(self, execution: TaskExecution) -> bool:
        if self.task_id is not None and execution.task_id != self.task_id:
            return False
        if self.status is not None and execution.status != self.status:
            return False
        if self.triggered_by is not None and execution.triggered_by != self.triggered_by:
            return False
        started_at = to_datetime(execution.started_at)
        if self.start_date is not None and started_at < self.start_date:
            return False
        if self.end_date is not None and started_at > self.end_date:
            return False
        return True


def sort_by_started_at(executions: Sequence[TaskExecution]) -> List[TaskExecution]:
    """Most recent first."""
    return sorted(executions, key=lambda e: to_datetime(e.started_at), reverse=True)


def filter_executions(
    executions: Sequence[TaskExecution],
    filters: Optional[ExecutionFilters] = None,
    **criteria: Any,
) -> List[TaskExecution]:
    """
    Filter, sort and paginate executions.

    Matching executions are ordered by ``started_at`` descending, then
    ``offset`` entries are skipped and at most ``limit`` are returned. The
    input sequence is not modified.

    Args:
        executions (Sequence[TaskExecution]): Executions to query.
        filters (Optional[ExecutionFilters]): Criteria, or pass them as keywords.

    Returns:
        List[TaskExecution]: The requested page.
    """
    if filters is None:
        filters = ExecutionFilters(**criteria)

    result = sort_by_started_at([e for e in executions if filters.matches(e)])

    start = filters.offset or 0
    end = start + filters.limit if filters.limit else None
    return result[start:end]


def get_last_failed_execution(executions: Sequence[TaskExecution], task_id: str) -> Optional[TaskExecution]:
    failed = [e for e in executions if e.task_id == task_id and e.status in FAILED_STATUSES]
    if not failed:
        return None
    return sort_by_started_at(failed)[0]


def can_retry_task(executions: Sequence[TaskExecution], task_id: str) -> Tuple[bool, Optional[str]]:
    """
    A task can be retried when its most recent failure or timeout has not
    been followed by a successful run.

    Returns:
        Tuple[bool, Optional[str]]: Whether a retry is allowed, and why not.
    """
    last_failed = get_last_failed_execution(executions, task_id)
    if last_failed is None:
        return False, "No failed executions to retry"

    succeeded = filter_executions(executions, task_id=task_id, status=ExecutionStatus.COMPLETED, limit=1)
    if succeeded and to_datetime(succeeded[0].started_at) > to_datetime(last_failed.started_at):
        return False, "Task has succeeded since last failure"

    return True, None
