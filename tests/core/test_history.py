from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from erp_scheduler.domain.execution import ExecutionStatus, TaskExecution, TriggerType
from erp_scheduler.history import (
    ExecutionFilters,
    can_retry_task,
    filter_executions,
    get_last_failed_execution,
)

BASE = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)


def make_execution(day: int, status: str, triggered_by: str = "schedule", task_id: str = "t1") -> TaskExecution:
    started_at = BASE + timedelta(days=day)
    completed = status != "running"
    return TaskExecution(
        id=f"exe_{task_id}_{day}",
        task_id=task_id,
        started_at=started_at,
        completed_at=started_at + timedelta(seconds=30) if completed else None,
        execution_time_ms=30000 if completed else None,
        status=ExecutionStatus(status),
        triggered_by=TriggerType(triggered_by),
    )


@pytest.fixture
def executions():
    return [
        make_execution(3, "completed"),
        make_execution(0, "failed"),
        make_execution(5, "timeout", "manual"),
        make_execution(1, "completed", "manual"),
        make_execution(4, "failed", "retry"),
        make_execution(2, "running"),
        make_execution(6, "completed", task_id="t2"),
    ]


def started_days(executions):
    return [(e.started_at - BASE).days for e in executions]


def test_no_filters_sorts_most_recent_first(executions):
    result = filter_executions(executions)
    assert started_days(result) == [6, 5, 4, 3, 2, 1, 0]


def test_input_is_not_mutated(executions):
    before = list(executions)
    filter_executions(executions, status="failed", limit=1)
    assert executions == before


@pytest.mark.parametrize("status", list(ExecutionStatus))
def test_status_filter(executions, status):
    result = filter_executions(executions, status=status)
    assert all(e.status == status for e in result)
    assert len(result) == sum(1 for e in executions if e.status == status)
    assert result == sorted(result, key=lambda e: e.started_at, reverse=True)


def test_trigger_filter(executions):
    result = filter_executions(executions, triggered_by="manual")
    assert started_days(result) == [5, 1]


def test_date_range_is_inclusive(executions):
    result = filter_executions(
        executions,
        start_date=BASE + timedelta(days=1),
        end_date="2024-03-05T00:00:00Z",
    )
    assert started_days(result) == [4, 3, 2, 1]


def test_filters_are_combined(executions):
    result = filter_executions(executions, ExecutionFilters(status="completed", triggered_by="schedule"))
    assert started_days(result) == [6, 3]
    result = filter_executions(executions, ExecutionFilters(status="completed", task_id="t1"))
    assert started_days(result) == [3, 1]


def test_pagination(executions):
    assert started_days(filter_executions(executions, limit=2)) == [6, 5]
    assert started_days(filter_executions(executions, offset=2, limit=2)) == [4, 3]
    assert started_days(filter_executions(executions, offset=5)) == [1, 0]
    assert filter_executions(executions, offset=10) == []


def test_zero_limit_means_no_bound(executions):
    assert filter_executions(executions, limit=0) == filter_executions(executions)
    assert len(filter_executions(executions, offset=1, limit=0)) == len(executions) - 1


def test_negative_pagination_is_rejected():
    with pytest.raises(ValidationError):
        ExecutionFilters(limit=-1)
    with pytest.raises(ValidationError):
        ExecutionFilters(offset=-1)


def test_last_failed_execution(executions):
    assert get_last_failed_execution(executions, "t1").id == "exe_t1_5"
    assert get_last_failed_execution(executions, "t2") is None


def test_can_retry_after_failure(executions):
    assert can_retry_task(executions, "t1") == (True, None)


def test_cannot_retry_after_later_success():
    executions = [make_execution(0, "failed"), make_execution(1, "completed")]
    assert can_retry_task(executions, "t1") == (False, "Task has succeeded since last failure")


def test_cannot_retry_without_failure(executions):
    assert can_retry_task(executions, "t2") == (False, "No failed executions to retry")
