"""
Execution lifecycle: creation, status transitions and completion metrics.

``running`` is the only initial status. ``completed``, ``failed`` and
``timeout`` are terminal and have no outgoing transitions.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from .config import get_settings
from .domain.execution import (
    ExecutionStatus,
    TaskExecution,
    TriggerType,
    VALID_STATUS_TRANSITIONS,
)
from .domain.task import ScheduledTask
from .errors import InvalidStatusTransitionError
from .timeutils import DateLike, to_datetime, utc_now

logger = logging.getLogger(__name__)


class ExecutionUpdate(BaseModel):
    """
    Outcome applied to a running execution when it finishes.
    """
    status: ExecutionStatus = Field(..., description="Terminal status to record")
    completed_at: Optional[datetime] = Field(None, description="Defaults to now")
    execution_time_ms: Optional[int] = Field(None, ge=0, description="Overrides the derived duration")
    records_processed: Optional[int] = None
    result_summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


def create_execution_record(
    task_id: str,
    triggered_by: Union[TriggerType, str],
    started_at: Optional[DateLike] = None,
) -> TaskExecution:
    return TaskExecution(
        task_id=task_id,
        started_at=to_datetime(started_at) if started_at is not None else utc_now(),
        status=ExecutionStatus.RUNNING,
        triggered_by=TriggerType(triggered_by),
    )


def is_valid_status_transition(
    current: Union[ExecutionStatus, str],
    new: Union[ExecutionStatus, str],
) -> bool:
    if not is_valid_execution_status(current) or not is_valid_execution_status(new):
        return False
    return ExecutionStatus(new) in VALID_STATUS_TRANSITIONS[ExecutionStatus(current)]


def calculate_execution_time_ms(started_at: DateLike, completed_at: DateLike) -> int:
    delta = to_datetime(completed_at) - to_datetime(started_at)
    return max(0, round(delta.total_seconds() * 1000))


def complete_execution_record(
    execution: TaskExecution,
    update: Union[ExecutionUpdate, Dict[str, Any]],
    strict: bool = False,
) -> TaskExecution:
    """
    Return a copy of ``execution`` finished with the given outcome.

    ``execution_time_ms`` is derived from ``started_at`` and ``completed_at``
    unless the update supplies it. The transition is only checked when
    ``strict`` is set, callers are otherwise expected to call
    ``is_valid_status_transition`` first.

    Raises:
        InvalidStatusTransitionError: If ``strict`` and the transition is illegal.
    """
    if not isinstance(update, ExecutionUpdate):
        update = ExecutionUpdate.model_validate(update)

    if not is_valid_status_transition(execution.status, update.status):
        if strict:
            raise InvalidStatusTransitionError(execution.status.value, update.status.value)
        logger.warning(
            "Completing execution %s with illegal transition %s -> %s",
            execution.id, execution.status.value, update.status.value,
        )

    completed_at = to_datetime(update.completed_at) if update.completed_at else utc_now()
    execution_time_ms = update.execution_time_ms
    if execution_time_ms is None:
        execution_time_ms = calculate_execution_time_ms(execution.started_at, completed_at)

    return execution.model_copy(update={
        "completed_at": completed_at,
        "status": update.status,
        "execution_time_ms": execution_time_ms,
        "records_processed": _first_set(update.records_processed, execution.records_processed),
        "result_summary": _first_set(update.result_summary, execution.result_summary),
        "error_message": _first_set(update.error_message, execution.error_message),
    })


def _first_set(value: Any, fallback: Any) -> Any:
    return value if value is not None else fallback


def is_execution_record_complete(execution: TaskExecution, tolerance_ms: Optional[int] = None) -> bool:
    """
    Structural check on a stored execution.

    A terminal execution must carry ``completed_at`` and ``execution_time_ms``
    and the two must agree within ``tolerance_ms``.
    """
    if not execution.task_id or not execution.started_at or not execution.triggered_by:
        return False

    if execution.status == ExecutionStatus.RUNNING:
        return True

    if execution.completed_at is None or execution.execution_time_ms is None:
        return False

    if tolerance_ms is None:
        tolerance_ms = get_settings().completion_tolerance_ms
    derived = calculate_execution_time_ms(execution.started_at, execution.completed_at)
    return abs(derived - execution.execution_time_ms) <= tolerance_ms


def is_valid_execution_status(status: Any) -> bool:
    return isinstance(status, str) and status in {s.value for s in ExecutionStatus}


def is_valid_trigger_type(trigger_type: Any) -> bool:
    return isinstance(trigger_type, str) and trigger_type in {t.value for t in TriggerType}


def format_execution_time(ms: Optional[int]) -> str:
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    return f"{ms / 60000:.1f}m"


def record_run_start(task: ScheduledTask, execution: TaskExecution) -> ScheduledTask:
    """Mark ``task`` as running ``execution``. ``next_run_at`` is left alone."""
    return task.model_copy(update={
        "last_run_at": execution.started_at,
        "last_run_status": execution.status,
    })


def record_run_result(task: ScheduledTask, execution: TaskExecution) -> ScheduledTask:
    """Copy the outcome of a finished ``execution`` onto ``task``."""
    return task.model_copy(update={
        "last_run_at": execution.started_at,
        "last_run_status": execution.status,
        "last_run_duration_ms": execution.execution_time_ms,
    })
