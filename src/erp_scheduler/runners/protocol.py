from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, Field

from erp_scheduler.domain.execution import TaskExecution
from erp_scheduler.domain.task import ScheduledTask


class RunOutcome(BaseModel):
    """
    What a runner reports back after the job behind a task succeeded.
    """
    records_processed: int = Field(default=0, ge=0, description="Number of business records touched")
    result_summary: Dict[str, Any] = Field(default_factory=dict, description="Job specific counters")


class TaskRunner(Protocol):
    """
    Protocol class for the jobs triggered by a due task.
    """

    async def run(self, task: ScheduledTask, execution: TaskExecution) -> RunOutcome:
        """
        Run the job for the given task.

        Args:
            task (ScheduledTask): The task being run.
            execution (TaskExecution): The running execution record.

        Raises:
            Exception: Any exception marks the execution as failed.
        """
        ...

    @staticmethod
    def supported_task_code() -> Optional[str]:
        """
        Return the task code this runner handles.
        """
        ...
