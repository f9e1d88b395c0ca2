from typing import List, Optional, Protocol

from erp_scheduler.domain.execution import TaskExecution
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.history import ExecutionFilters


class Storage(Protocol):
    async def create_task(self, task: ScheduledTask) -> str:
        """Create a new task and return its ID. Task codes must be unique."""
        ...

    async def get_task(self, task_id: str) -> Optional[ScheduledTask]:
        """Retrieve a task by its ID."""
        ...

    async def get_task_by_code(self, task_code: str) -> Optional[ScheduledTask]:
        """Retrieve a task by its task code."""
        ...

    async def update_task(self, task: ScheduledTask) -> bool:
        """Update an existing task. Return True if successful, False otherwise."""
        ...

    async def list_tasks(self, active_only: bool = False, limit: Optional[int] = None, offset: int = 0) -> List[ScheduledTask]:
        """List tasks ordered by task code."""
        ...

    async def create_execution(self, execution: TaskExecution) -> str:
        """Create a new execution record and return its ID."""
        ...

    async def get_execution(self, execution_id: str) -> Optional[TaskExecution]:
        """Retrieve an execution by its ID."""
        ...

    async def update_execution(self, execution: TaskExecution) -> bool:
        """Update an existing execution. Return True if successful, False otherwise."""
        ...

    async def list_executions(self, filters: Optional[ExecutionFilters] = None) -> List[TaskExecution]:
        """List executions matching ``filters``, most recent start first."""
        ...
