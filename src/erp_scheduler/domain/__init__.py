from .execution import (
    ExecutionStatus,
    TaskExecution,
    TERMINAL_STATUSES,
    TriggerType,
    VALID_STATUS_TRANSITIONS,
)
from .task import ScheduledTask, TASK_CODE_PATTERN

__all__ = [
    "ScheduledTask",
    "TASK_CODE_PATTERN",
    "TaskExecution",
    "ExecutionStatus",
    "TriggerType",
    "TERMINAL_STATUSES",
    "VALID_STATUS_TRANSITIONS",
]
