"""
Scheduler service: task and execution operations over an injected store.

The service is what a polling loop or an admin endpoint calls. It keeps the
pure helpers of the registry, lifecycle and history modules load-bearing:
illegal status transitions raise instead of being written.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from erp_scheduler.config import SchedulerSettings, get_settings
from erp_scheduler.domain.execution import ExecutionStatus, TaskExecution, TriggerType
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.errors import (
    ExecutionAlreadyRunningError,
    ExecutionNotFoundError,
    InvalidStatusTransitionError,
    InvalidTaskCodeError,
    RetryNotAllowedError,
    SchedulerError,
    TaskInactiveError,
    TaskNotFoundError,
)
from erp_scheduler.history import ExecutionFilters, can_retry_task, get_last_failed_execution
from erp_scheduler.lifecycle import (
    ExecutionUpdate,
    calculate_execution_time_ms,
    complete_execution_record,
    create_execution_record,
    record_run_result,
    record_run_start,
)
from erp_scheduler.registry import calculate_task_next_run, is_valid_task_code
from erp_scheduler.runners.factory import TaskRunnerFactory
from erp_scheduler.runners.protocol import RunOutcome, TaskRunner
from erp_scheduler.runners.webhook import WebhookTaskRunner
from erp_scheduler.storages.protocol import Storage
from erp_scheduler.timeutils import DateLike, to_datetime, utc_now

logger = logging.getLogger(__name__)

TIMEOUT_ERROR_MESSAGE = "Task execution exceeded timeout limit"
NO_RUNNER_MESSAGE = "Task triggered without specific runner"


class TimedResult(BaseModel):
    result: Any = None
    timed_out: bool = False
    error: Optional[str] = None


class RunResult(BaseModel):
    success: bool
    execution_id: Optional[str] = None
    records_processed: int = 0
    summary: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    timed_out: bool = False


class IsolatedRunReport(BaseModel):
    results: Dict[str, RunResult] = Field(default_factory=dict)
    total_success: int = 0
    total_failed: int = 0


class SchedulerService:
    def __init__(
        self,
        storage: Storage,
        runner_factory: Optional[TaskRunnerFactory] = None,
        settings: Optional[SchedulerSettings] = None,
        webhook_runner: Optional[TaskRunner] = None,
    ):
        self.storage: Storage = storage
        self.runner_factory: TaskRunnerFactory = runner_factory or TaskRunnerFactory()
        self.settings: SchedulerSettings = settings or get_settings()
        self.webhook_runner: TaskRunner = webhook_runner or WebhookTaskRunner()
        self._start_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # Tasks

    async def create_task(self, task: ScheduledTask) -> ScheduledTask:
        """
        Store a new task, computing its first ``next_run_at`` when active.

        Raises:
            InvalidTaskCodeError: If the code is not an uppercase identifier.
            DuplicateTaskCodeError: If another task already uses the code.
        """
        if not is_valid_task_code(task.task_code):
            raise InvalidTaskCodeError(task.task_code)
        if task.is_active:
            task = calculate_task_next_run(task)
        await self.storage.create_task(task)
        logger.info("Registered task %s (%s), next run %s", task.task_code, task.cron_expression, task.next_run_at)
        return task

    async def get_scheduled_tasks(self, active_only: bool = False) -> List[ScheduledTask]:
        return await self.storage.list_tasks(active_only=active_only)

    async def get_scheduled_task_by_code(self, task_code: str) -> ScheduledTask:
        task = await self.storage.get_task_by_code(task_code)
        if task is None:
            raise TaskNotFoundError(task_code)
        return task

    async def _get_task(self, task_id: str) -> ScheduledTask:
        task = await self.storage.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def get_due_tasks(self, now: Optional[DateLike] = None) -> List[ScheduledTask]:
        now = to_datetime(now) if now is not None else utc_now()
        tasks = await self.storage.list_tasks(active_only=True)
        return [task for task in tasks if task.next_run_at is not None and task.next_run_at <= now]

    async def enable_task(self, task_id: str) -> ScheduledTask:
        task = await self._get_task(task_id)
        task.activate()
        task = calculate_task_next_run(task)
        await self.storage.update_task(task)
        logger.info("Enabled task %s, next run %s", task.task_code, task.next_run_at)
        return task

    async def disable_task(self, task_id: str) -> ScheduledTask:
        task = await self._get_task(task_id)
        task.deactivate()
        await self.storage.update_task(task)
        logger.info("Disabled task %s", task.task_code)
        return task

    async def toggle_task_status(self, task_id: str, is_active: bool) -> ScheduledTask:
        if is_active:
            return await self.enable_task(task_id)
        return await self.disable_task(task_id)

    async def update_scheduled_next_run(self, task_id: str, from_time: Optional[DateLike] = None) -> ScheduledTask:
        task = calculate_task_next_run(await self._get_task(task_id), from_time)
        await self.storage.update_task(task)
        return task

    # Execution start

    async def validate_manual_trigger(self, task_code: str) -> ScheduledTask:
        """
        Raises:
            TaskNotFoundError: If no task has the code.
            TaskInactiveError: If the task is disabled.
        """
        task = await self.get_scheduled_task_by_code(task_code)
        if not task.is_active:
            raise TaskInactiveError(task_code)
        return task

    async def create_task_execution(self, task_id: str, triggered_by: Union[TriggerType, str]) -> TaskExecution:
        task = await self._get_task(task_id)
        execution, _ = await self._start_execution(task, TriggerType(triggered_by))
        return execution

    async def _start_execution(self, task: ScheduledTask, triggered_by: TriggerType) -> Tuple[TaskExecution, ScheduledTask]:
        if self.settings.allow_concurrent_runs:
            execution = await self._create_execution(task, triggered_by)
        else:
            # the running check and the insert must not interleave with another start
            async with self._start_locks[task.id]:
                running = await self.storage.list_executions(
                    ExecutionFilters(task_id=task.id, status=ExecutionStatus.RUNNING, limit=1)
                )
                if running:
                    raise ExecutionAlreadyRunningError(task.id, running[0].id)
                execution = await self._create_execution(task, triggered_by)

        task = record_run_start(task, execution)
        await self.storage.update_task(task)
        logger.info("Started execution %s of task %s (%s)", execution.id, task.task_code, triggered_by.value)
        return execution, task

    async def _create_execution(self, task: ScheduledTask, triggered_by: TriggerType) -> TaskExecution:
        execution = create_execution_record(task.id, triggered_by)
        await self.storage.create_execution(execution)
        return execution

    async def trigger_task_manually(self, task_code: str) -> TaskExecution:
        """
        Start a manual execution. The task's ``next_run_at`` is preserved.
        """
        task = await self.validate_manual_trigger(task_code)
        execution, _ = await self._start_execution(task, TriggerType.MANUAL)
        return execution

    async def retry_failed_task(self, task_code: str) -> TaskExecution:
        """
        Start a retry execution after a failure or timeout. The task's
        ``next_run_at`` is preserved.

        Raises:
            RetryNotAllowedError: If there is nothing to retry.
        """
        task = await self.validate_manual_trigger(task_code)
        allowed, reason = await self.can_retry_task(task.id)
        if not allowed:
            raise RetryNotAllowedError(task_code, reason or "")
        execution, _ = await self._start_execution(task, TriggerType.RETRY)
        return execution

    # Execution completion

    async def _get_execution(self, execution_id: str) -> TaskExecution:
        execution = await self.storage.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def update_task_execution(self, execution_id: str, update: ExecutionUpdate) -> TaskExecution:
        """
        Finish a running execution and copy its outcome onto the owning task.

        Raises:
            ExecutionNotFoundError: If the execution does not exist.
            InvalidStatusTransitionError: If the execution is not running.
        """
        current = await self._get_execution(execution_id)
        execution = complete_execution_record(current, update, strict=True)
        await self.storage.update_execution(execution)

        task = await self.storage.get_task(execution.task_id)
        if task is not None:
            await self.storage.update_task(record_run_result(task, execution))
        logger.info(
            "Execution %s finished as %s in %sms",
            execution.id, execution.status.value, execution.execution_time_ms,
        )
        return execution

    async def complete_task_execution(
        self,
        execution_id: str,
        records_processed: int,
        result_summary: Optional[Dict[str, Any]] = None,
    ) -> TaskExecution:
        return await self.update_task_execution(execution_id, ExecutionUpdate(
            status=ExecutionStatus.COMPLETED,
            completed_at=utc_now(),
            records_processed=records_processed,
            result_summary=result_summary,
        ))

    async def fail_task_execution(self, execution_id: str, error_message: str) -> TaskExecution:
        return await self.update_task_execution(execution_id, ExecutionUpdate(
            status=ExecutionStatus.FAILED,
            completed_at=utc_now(),
            error_message=error_message,
        ))

    async def timeout_task_execution(self, execution_id: str) -> TaskExecution:
        return await self.update_task_execution(execution_id, ExecutionUpdate(
            status=ExecutionStatus.TIMEOUT,
            completed_at=utc_now(),
            error_message=TIMEOUT_ERROR_MESSAGE,
        ))

    async def timeout_stale_executions(self, now: Optional[DateLike] = None) -> List[TaskExecution]:
        """
        Mark running executions older than the configured timeout as timed out.
        """
        now = to_datetime(now) if now is not None else utc_now()
        running = await self.storage.list_executions(ExecutionFilters(status=ExecutionStatus.RUNNING))
        stale = [
            e for e in running
            if calculate_execution_time_ms(e.started_at, now) > self.settings.task_timeout_ms
        ]
        timed_out = []
        for execution in stale:
            logger.warning("Execution %s of task %s is stale, marking as timeout", execution.id, execution.task_id)
            try:
                timed_out.append(await self.update_task_execution(execution.id, ExecutionUpdate(
                    status=ExecutionStatus.TIMEOUT,
                    completed_at=now,
                    error_message=TIMEOUT_ERROR_MESSAGE,
                )))
            except InvalidStatusTransitionError as e:
                logger.info("Execution %s finished before it could be timed out: %s", execution.id, e)
        return timed_out

    # History

    async def get_task_executions(self, task_id: str, filters: Optional[ExecutionFilters] = None) -> List[TaskExecution]:
        filters = (filters or ExecutionFilters()).model_copy(update={"task_id": task_id})
        return await self.storage.list_executions(filters)

    async def get_last_failed_execution(self, task_id: str) -> Optional[TaskExecution]:
        return get_last_failed_execution(await self.get_task_executions(task_id), task_id)

    async def can_retry_task(self, task_id: str) -> Tuple[bool, Optional[str]]:
        return can_retry_task(await self.get_task_executions(task_id), task_id)

    # Running jobs

    async def execute_with_timeout(
        self,
        execution_id: str,
        execution_fn: Callable[[], Awaitable[Any]],
        timeout_ms: Optional[int] = None,
    ) -> TimedResult:
        """
        Await ``execution_fn`` and finish the execution as ``timeout`` or
        ``failed`` when it does not return in time or raises. A successful
        result is returned without completing the execution.
        """
        timeout_ms = timeout_ms or self.settings.task_timeout_ms
        try:
            result = await asyncio.wait_for(execution_fn(), timeout=timeout_ms / 1000)
            return TimedResult(result=result)
        except asyncio.TimeoutError:
            await self.timeout_task_execution(execution_id)
            return TimedResult(timed_out=True, error="Task execution timeout")
        except Exception as e:
            logger.exception("Execution %s raised", execution_id)
            message = str(e) or type(e).__name__
            await self.fail_task_execution(execution_id, message)
            return TimedResult(error=message)

    def _resolve_runner(self, task: ScheduledTask) -> Optional[TaskRunner]:
        if self.runner_factory.has_runner(task.task_code):
            return self.runner_factory.get_runner(task.task_code)
        if task.webhook_url:
            return self.webhook_runner
        return None

    async def run_scheduled_task(
        self,
        task_code: str,
        triggered_by: Union[TriggerType, str] = TriggerType.MANUAL,
    ) -> RunResult:
        """
        Run a task end to end: start an execution, run its job under the
        timeout and record the outcome. Scheduled runs also move
        ``next_run_at`` forward. Errors are reported in the result, never
        raised.
        """
        triggered_by = TriggerType(triggered_by)
        try:
            task = await self.validate_manual_trigger(task_code)
            if triggered_by == TriggerType.RETRY:
                allowed, reason = await self.can_retry_task(task.id)
                if not allowed:
                    raise RetryNotAllowedError(task_code, reason or "")
            execution, task = await self._start_execution(task, triggered_by)
            if triggered_by == TriggerType.SCHEDULE:
                task = await self.update_scheduled_next_run(task.id)
        except SchedulerError as e:
            logger.warning("Could not start task %s: %s", task_code, e)
            return RunResult(success=False, error=str(e))

        runner = self._resolve_runner(task)
        if runner is None:
            # completion is reported later through update_task_execution
            return RunResult(success=True, execution_id=execution.id, summary={"message": NO_RUNNER_MESSAGE})

        try:
            timed = await self.execute_with_timeout(execution.id, lambda: runner.run(task, execution))
            if timed.error is not None:
                logger.error("Task %s failed in execution %s: %s", task_code, execution.id, timed.error)
                return RunResult(success=False, execution_id=execution.id, error=timed.error, timed_out=timed.timed_out)

            outcome = timed.result if isinstance(timed.result, RunOutcome) else RunOutcome()
            await self.complete_task_execution(execution.id, outcome.records_processed, outcome.result_summary)
        except SchedulerError as e:
            logger.warning("Could not record the outcome of execution %s: %s", execution.id, e)
            return RunResult(success=False, execution_id=execution.id, error=str(e))
        return RunResult(
            success=True,
            execution_id=execution.id,
            records_processed=outcome.records_processed,
            summary=outcome.result_summary,
        )

    async def run_tasks_isolated(
        self,
        task_codes: Sequence[str],
        triggered_by: Union[TriggerType, str] = TriggerType.SCHEDULE,
    ) -> IsolatedRunReport:
        """
        Run each task independently, one failure does not stop the rest.
        """
        report = IsolatedRunReport()
        for task_code in task_codes:
            try:
                result = await self.run_scheduled_task(task_code, triggered_by)
            except Exception as e:
                logger.exception("Task %s crashed", task_code)
                result = RunResult(success=False, error=str(e) or type(e).__name__)
            report.results[task_code] = result
            if result.success:
                report.total_success += 1
            else:
                report.total_failed += 1
        return report

    async def run_due_tasks(self, now: Optional[datetime] = None) -> IsolatedRunReport:
        due = await self.get_due_tasks(now)
        return await self.run_tasks_isolated([task.task_code for task in due], TriggerType.SCHEDULE)
