from datetime import datetime, timedelta, timezone

import pytest

from erp_scheduler.domain.execution import ExecutionStatus, TaskExecution, TriggerType
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.errors import InvalidStatusTransitionError
from erp_scheduler.lifecycle import (
    ExecutionUpdate,
    calculate_execution_time_ms,
    complete_execution_record,
    create_execution_record,
    format_execution_time,
    is_execution_record_complete,
    is_valid_execution_status,
    is_valid_status_transition,
    is_valid_trigger_type,
    record_run_result,
    record_run_start,
)

STARTED = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
TERMINAL = [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT]


@pytest.mark.parametrize("triggered_by", ["schedule", "manual", "retry"])
def test_create_execution_record(triggered_by):
    execution = create_execution_record("t1", triggered_by)
    assert execution.task_id == "t1"
    assert execution.status == ExecutionStatus.RUNNING
    assert execution.triggered_by == TriggerType(triggered_by)
    assert execution.started_at is not None
    assert execution.started_at.tzinfo is not None
    assert execution.completed_at is None
    assert execution.execution_time_ms is None
    assert execution.records_processed is None
    assert execution.error_message is None


def test_create_execution_record_rejects_unknown_trigger():
    with pytest.raises(ValueError):
        create_execution_record("t1", "cron")


@pytest.mark.parametrize("new", TERMINAL)
def test_running_to_terminal_is_valid(new):
    assert is_valid_status_transition(ExecutionStatus.RUNNING, new) is True
    assert is_valid_status_transition("running", new.value) is True


def test_running_to_running_is_invalid():
    assert is_valid_status_transition("running", "running") is False


@pytest.mark.parametrize("current", TERMINAL)
@pytest.mark.parametrize("new", list(ExecutionStatus))
def test_no_transition_out_of_terminal(current, new):
    assert is_valid_status_transition(current, new) is False


def test_unknown_status_transition_is_invalid():
    assert is_valid_status_transition("running", "cancelled") is False
    assert is_valid_status_transition("pending", "completed") is False


def test_failed_after_five_seconds():
    execution = create_execution_record("t1", "manual", started_at=STARTED)
    finished = complete_execution_record(
        execution, {"status": "failed", "completed_at": STARTED + timedelta(milliseconds=5000)}
    )
    assert finished.execution_time_ms == 5000
    assert finished.status == ExecutionStatus.FAILED
    assert is_execution_record_complete(finished) is True
    assert execution.status == ExecutionStatus.RUNNING


@pytest.mark.parametrize("status", TERMINAL)
@pytest.mark.parametrize("duration_ms", [0, 1, 999, 60000, 300000])
def test_completion_derives_duration(status, duration_ms):
    execution = create_execution_record("t1", "schedule", started_at=STARTED)
    finished = complete_execution_record(execution, ExecutionUpdate(
        status=status,
        completed_at=STARTED + timedelta(milliseconds=duration_ms),
    ))
    assert abs(finished.execution_time_ms - duration_ms) <= 1
    assert finished.started_at == STARTED
    assert finished.triggered_by == TriggerType.SCHEDULE
    assert is_execution_record_complete(finished) is True


def test_completion_defaults_to_now():
    execution = create_execution_record("t1", "manual")
    finished = complete_execution_record(execution, ExecutionUpdate(status=ExecutionStatus.COMPLETED))
    assert finished.completed_at >= execution.started_at
    assert finished.execution_time_ms >= 0


def test_completion_keeps_explicit_duration_and_payload():
    execution = create_execution_record("t1", "manual", started_at=STARTED)
    finished = complete_execution_record(execution, ExecutionUpdate(
        status=ExecutionStatus.COMPLETED,
        completed_at=STARTED + timedelta(seconds=2),
        execution_time_ms=1500,
        records_processed=42,
        result_summary={"total_count": 42},
    ))
    assert finished.execution_time_ms == 1500
    assert finished.records_processed == 42
    assert finished.result_summary == {"total_count": 42}


def test_completion_is_advisory_by_default():
    execution = create_execution_record("t1", "manual", started_at=STARTED)
    done = complete_execution_record(execution, ExecutionUpdate(status=ExecutionStatus.COMPLETED))
    again = complete_execution_record(done, ExecutionUpdate(status=ExecutionStatus.FAILED))
    assert again.status == ExecutionStatus.FAILED


def test_strict_completion_rejects_illegal_transition():
    execution = create_execution_record("t1", "manual", started_at=STARTED)
    done = complete_execution_record(execution, ExecutionUpdate(status=ExecutionStatus.COMPLETED), strict=True)
    with pytest.raises(InvalidStatusTransitionError, match="completed -> timeout"):
        complete_execution_record(done, ExecutionUpdate(status=ExecutionStatus.TIMEOUT), strict=True)


def test_negative_duration_is_clamped():
    assert calculate_execution_time_ms(STARTED, STARTED - timedelta(seconds=3)) == 0
    assert calculate_execution_time_ms("2024-01-01T09:00:00Z", "2024-01-01T09:00:01.250Z") == 1250


def test_running_record_is_complete():
    assert is_execution_record_complete(create_execution_record("t1", "manual")) is True


def test_terminal_record_without_completion_is_incomplete():
    execution = TaskExecution(
        task_id="t1", started_at=STARTED, status=ExecutionStatus.COMPLETED, triggered_by=TriggerType.MANUAL
    )
    assert is_execution_record_complete(execution) is False


def test_terminal_record_with_inconsistent_duration_is_incomplete():
    execution = TaskExecution(
        task_id="t1",
        started_at=STARTED,
        completed_at=STARTED + timedelta(seconds=10),
        status=ExecutionStatus.FAILED,
        triggered_by=TriggerType.RETRY,
        execution_time_ms=5000,
    )
    assert is_execution_record_complete(execution) is False
    assert is_execution_record_complete(execution, tolerance_ms=5000) is True


def test_record_without_task_id_is_incomplete():
    execution = create_execution_record("", "manual")
    assert is_execution_record_complete(execution) is False


def test_status_and_trigger_validators():
    assert is_valid_execution_status("timeout") is True
    assert is_valid_execution_status("cancelled") is False
    assert is_valid_execution_status(None) is False
    assert is_valid_trigger_type("retry") is True
    assert is_valid_trigger_type("cron") is False


@pytest.mark.parametrize("ms, text", [
    (None, "-"),
    (0, "0ms"),
    (999, "999ms"),
    (1500, "1.5s"),
    (59999, "60.0s"),
    (90000, "1.5m"),
])
def test_format_execution_time(ms, text):
    assert format_execution_time(ms) == text


def test_task_bookkeeping_leaves_next_run_alone():
    next_run = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
    task = ScheduledTask(task_code="DAILY_OVERDUE_CHECK", task_name="Overdue", cron_expression="0 9 * * *",
                         next_run_at=next_run)
    execution = create_execution_record(task.id, "manual", started_at=STARTED)

    started = record_run_start(task, execution)
    assert started.last_run_at == STARTED
    assert started.last_run_status == ExecutionStatus.RUNNING
    assert started.next_run_at == next_run

    finished = complete_execution_record(execution, ExecutionUpdate(
        status=ExecutionStatus.TIMEOUT, completed_at=STARTED + timedelta(minutes=5)
    ))
    recorded = record_run_result(started, finished)
    assert recorded.last_run_status == ExecutionStatus.TIMEOUT
    assert recorded.last_run_duration_ms == 300000
    assert recorded.next_run_at == next_run
