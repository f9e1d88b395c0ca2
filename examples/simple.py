import asyncio
import logging
from typing import Optional

from erp_scheduler.cron import describe_cron_expression
from erp_scheduler.domain.execution import TaskExecution, TriggerType
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.runners.factory import TaskRunnerFactory
from erp_scheduler.runners.protocol import RunOutcome, TaskRunner
from erp_scheduler.service import SchedulerService
from erp_scheduler.storages.sqlalchemy import InMemoryStorage


class PrintOverdueRunner(TaskRunner):
    @staticmethod
    def supported_task_code() -> Optional[str]:
        return "DAILY_OVERDUE_CHECK"

    async def run(self, task: ScheduledTask, execution: TaskExecution) -> RunOutcome:
        print(f"Checking overdue invoices for execution {execution.id} with {task.task_parameters}")
        return RunOutcome(records_processed=3, result_summary={"total_count": 3})


runner_factory = TaskRunnerFactory()
runner_factory.register(PrintOverdueRunner)
storage = InMemoryStorage()
service = SchedulerService(storage, runner_factory)

TASKS = [
    ScheduledTask(task_code="DAILY_OVERDUE_CHECK", task_name="Daily overdue invoice check",
                  cron_expression="0 8 * * *", task_parameters={"min_days_overdue": 1}),
    ScheduledTask(task_code="MONTHLY_DEPRECIATION", task_name="Monthly asset depreciation",
                  cron_expression="0 1 1 * *"),
    ScheduledTask(task_code="WEEKLY_KPI_SNAPSHOT", task_name="Weekly KPI snapshot",
                  cron_expression="0 0 * * 1", is_active=False),
]


async def poll(interval_seconds: int = 30):
    while True:
        report = await service.run_due_tasks()
        if report.results:
            print(f"Ran {len(report.results)} due tasks: {report.total_success} ok, {report.total_failed} failed")
        await service.timeout_stale_executions()
        await asyncio.sleep(interval_seconds)


async def main():
    logging.basicConfig(level=logging.INFO)
    await storage.create_tables()
    for task in TASKS:
        await service.create_task(task)

    for task in await service.get_scheduled_tasks():
        print(f"{task.task_code}: {describe_cron_expression(task.cron_expression)}, next run {task.next_run_at}")

    result = await service.run_scheduled_task("DAILY_OVERDUE_CHECK", TriggerType.MANUAL)
    print(f"Manual run: {result}")

    try:
        await asyncio.wait_for(poll(), timeout=5)
    except asyncio.TimeoutError:
        pass
    await storage.dispose()


if __name__ == "__main__":
    asyncio.run(main())
