import asyncio

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone

from erp_scheduler.domain.execution import ExecutionStatus, TaskExecution, TriggerType
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.errors import DuplicateTaskCodeError
from erp_scheduler.history import ExecutionFilters
from erp_scheduler.storages.sqlalchemy import InMemoryStorage, SqlAlchemyStorage

BASE = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sqlite_storage():
    storage = InMemoryStorage()
    await storage.create_tables()
    yield storage
    await storage.dispose()


def make_task(code: str, **kwargs) -> ScheduledTask:
    return ScheduledTask(
        task_code=code,
        task_name=f"Task {code}",
        cron_expression=kwargs.pop("cron_expression", "0 9 * * *"),
        timezone=kwargs.pop("timezone", "Asia/Jakarta"),
        **kwargs
    )


def make_execution(task_id: str, hours: int, status=ExecutionStatus.RUNNING, triggered_by=TriggerType.SCHEDULE):
    return TaskExecution(
        id=f"exe_{task_id}_{hours}",
        task_id=task_id,
        started_at=BASE + timedelta(hours=hours),
        status=status,
        triggered_by=triggered_by,
    )


@pytest.mark.asyncio
async def test_create_and_get_task(sqlite_storage: SqlAlchemyStorage):
    task = make_task(
        "DAILY_OVERDUE_CHECK",
        id="tsk_1",
        description="Flags overdue invoices",
        webhook_url="https://n8n.example.com/webhook/overdue",
        task_parameters={"days": 30},
        next_run_at=BASE,
    )

    task_id = await sqlite_storage.create_task(task)
    assert task_id == "tsk_1"

    retrieved = await sqlite_storage.get_task(task_id)
    assert retrieved is not None
    assert retrieved.task_code == task.task_code
    assert retrieved.description == task.description
    assert retrieved.webhook_url == task.webhook_url
    assert retrieved.task_parameters == {"days": 30}
    assert retrieved.timezone == "Asia/Jakarta"
    assert retrieved.next_run_at == BASE
    assert retrieved.next_run_at.tzinfo is not None
    assert retrieved.last_run_status is None


@pytest.mark.asyncio
async def test_get_task_by_code(sqlite_storage: SqlAlchemyStorage):
    task = make_task("WEEKLY_KPI_SNAPSHOT")
    await sqlite_storage.create_task(task)

    assert (await sqlite_storage.get_task_by_code("WEEKLY_KPI_SNAPSHOT")).id == task.id
    assert await sqlite_storage.get_task_by_code("MISSING_TASK") is None


@pytest.mark.asyncio
async def test_duplicate_task_code_is_rejected(sqlite_storage: SqlAlchemyStorage):
    await sqlite_storage.create_task(make_task("DAILY_EXPIRY_CHECK"))
    with pytest.raises(DuplicateTaskCodeError):
        await sqlite_storage.create_task(make_task("DAILY_EXPIRY_CHECK"))


@pytest.mark.asyncio
async def test_update_task(sqlite_storage: SqlAlchemyStorage):
    task = make_task("MONTHLY_DEPRECIATION")
    await sqlite_storage.create_task(task)

    task.is_active = False
    task.last_run_at = BASE
    task.last_run_status = ExecutionStatus.FAILED
    task.last_run_duration_ms = 1234

    assert await sqlite_storage.update_task(task) is True

    updated = await sqlite_storage.get_task(task.id)
    assert updated.is_active is False
    assert updated.last_run_at == BASE
    assert updated.last_run_status == ExecutionStatus.FAILED
    assert updated.last_run_duration_ms == 1234


@pytest.mark.asyncio
async def test_update_missing_task(sqlite_storage: SqlAlchemyStorage):
    assert await sqlite_storage.update_task(make_task("NEVER_STORED")) is False


@pytest.mark.asyncio
async def test_list_tasks(sqlite_storage: SqlAlchemyStorage):
    for code, active in [("CCC_TASK", True), ("AAA_TASK", False), ("BBB_TASK", True)]:
        await sqlite_storage.create_task(make_task(code, is_active=active))

    assert [t.task_code for t in await sqlite_storage.list_tasks()] == ["AAA_TASK", "BBB_TASK", "CCC_TASK"]
    assert [t.task_code for t in await sqlite_storage.list_tasks(active_only=True)] == ["BBB_TASK", "CCC_TASK"]
    assert [t.task_code for t in await sqlite_storage.list_tasks(limit=1, offset=1)] == ["BBB_TASK"]


@pytest.mark.asyncio
async def test_create_and_update_execution(sqlite_storage: SqlAlchemyStorage):
    task = make_task("DAILY_MAINTENANCE_CHECK")
    await sqlite_storage.create_task(task)

    execution = make_execution(task.id, 0, triggered_by=TriggerType.MANUAL)
    assert await sqlite_storage.create_execution(execution) == execution.id

    retrieved = await sqlite_storage.get_execution(execution.id)
    assert retrieved.status == ExecutionStatus.RUNNING
    assert retrieved.triggered_by == TriggerType.MANUAL
    assert retrieved.started_at == execution.started_at
    assert retrieved.completed_at is None

    execution.status = ExecutionStatus.COMPLETED
    execution.completed_at = execution.started_at + timedelta(seconds=5)
    execution.execution_time_ms = 5000
    execution.records_processed = 12
    execution.result_summary = {"overdue_count": 12}
    assert await sqlite_storage.update_execution(execution) is True

    updated = await sqlite_storage.get_execution(execution.id)
    assert updated.status == ExecutionStatus.COMPLETED
    assert updated.completed_at == execution.completed_at
    assert updated.execution_time_ms == 5000
    assert updated.records_processed == 12
    assert updated.result_summary == {"overdue_count": 12}


@pytest.mark.asyncio
async def test_get_missing_execution(sqlite_storage: SqlAlchemyStorage):
    assert await sqlite_storage.get_execution("exe_missing") is None


@pytest.mark.asyncio
async def test_list_executions(sqlite_storage: SqlAlchemyStorage):
    task = make_task("DAILY_OVERDUE_CHECK")
    other = make_task("DAILY_EXPIRY_CHECK")
    await sqlite_storage.create_task(task)
    await sqlite_storage.create_task(other)

    await sqlite_storage.create_execution(make_execution(task.id, 1, ExecutionStatus.COMPLETED))
    await sqlite_storage.create_execution(make_execution(task.id, 3, ExecutionStatus.FAILED))
    await sqlite_storage.create_execution(make_execution(task.id, 2, ExecutionStatus.FAILED, TriggerType.RETRY))
    await sqlite_storage.create_execution(make_execution(other.id, 4, ExecutionStatus.FAILED))

    all_for_task = await sqlite_storage.list_executions(ExecutionFilters(task_id=task.id))
    assert [e.id for e in all_for_task] == [f"exe_{task.id}_3", f"exe_{task.id}_2", f"exe_{task.id}_1"]

    failed = await sqlite_storage.list_executions(ExecutionFilters(status="failed"))
    assert [e.id for e in failed] == [f"exe_{other.id}_4", f"exe_{task.id}_3", f"exe_{task.id}_2"]

    retries = await sqlite_storage.list_executions(ExecutionFilters(triggered_by="retry"))
    assert [e.id for e in retries] == [f"exe_{task.id}_2"]

    window = await sqlite_storage.list_executions(ExecutionFilters(
        start_date=BASE + timedelta(hours=2),
        end_date=BASE + timedelta(hours=3),
    ))
    assert [e.id for e in window] == [f"exe_{task.id}_3", f"exe_{task.id}_2"]

    page = await sqlite_storage.list_executions(ExecutionFilters(offset=1, limit=2))
    assert [e.id for e in page] == [f"exe_{task.id}_3", f"exe_{task.id}_2"]


@pytest.mark.asyncio
async def test_concurrent_writes_are_kept(sqlite_storage: SqlAlchemyStorage):
    task = make_task("DAILY_OVERDUE_CHECK")
    await sqlite_storage.create_task(task)

    await asyncio.gather(*(
        sqlite_storage.create_execution(make_execution(task.id, hours)) for hours in range(3)
    ))
    tasks, executions = await asyncio.gather(
        sqlite_storage.list_tasks(),
        sqlite_storage.list_executions(),
    )

    assert [t.id for t in tasks] == [task.id]
    assert [e.id for e in executions] == [f"exe_{task.id}_2", f"exe_{task.id}_1", f"exe_{task.id}_0"]
