"""
Recurring Task Scheduling

This package schedules the recurring back-office jobs of the ERP and tracks
every run of them.

Core Concepts:

ScheduledTask:
    A named unit of work identified by a unique task code and recurring on a
    five-field cron expression evaluated in the task's timezone. A task
    carries its next run time and the outcome of its last run.

TaskExecution:
    A single run attempt of a ScheduledTask. It starts as ``running`` and is
    finished exactly once as ``completed``, ``failed`` or ``timeout``.

Relationships:
    - A ScheduledTask can have many TaskExecutions.
    - The cron, next_run, registry, lifecycle and history modules are pure
      functions over snapshots owned by the caller.
    - SchedulerService applies them to an injected Storage.
"""

from .cron import CronExpression, describe_cron_expression, is_valid_cron_expression, parse_cron_expression
from .domain import ExecutionStatus, ScheduledTask, TaskExecution, TriggerType
from .history import ExecutionFilters, filter_executions
from .lifecycle import (
    ExecutionUpdate,
    complete_execution_record,
    create_execution_record,
    is_execution_record_complete,
    is_valid_status_transition,
)
from .next_run import NextRunReason, NextRunResult, compute_next_run, get_next_run_time
from .registry import are_task_codes_unique, calculate_task_next_run, filter_scheduled_tasks, find_task_by_code
from .service import RunResult, SchedulerService

__all__ = [
    "CronExpression",
    "parse_cron_expression",
    "is_valid_cron_expression",
    "describe_cron_expression",
    "NextRunReason",
    "NextRunResult",
    "compute_next_run",
    "get_next_run_time",
    "ScheduledTask",
    "TaskExecution",
    "ExecutionStatus",
    "TriggerType",
    "filter_scheduled_tasks",
    "find_task_by_code",
    "are_task_codes_unique",
    "calculate_task_next_run",
    "ExecutionUpdate",
    "create_execution_record",
    "is_valid_status_transition",
    "complete_execution_record",
    "is_execution_record_complete",
    "ExecutionFilters",
    "filter_executions",
    "SchedulerService",
    "RunResult",
]
