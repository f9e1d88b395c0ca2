"""
Task registry helpers.

These functions work on a snapshot of tasks passed in by the caller and never
mutate their input.
"""

import re
from collections import Counter
from typing import List, Optional, Sequence

from .domain.task import TASK_CODE_PATTERN, ScheduledTask
from .next_run import get_next_run_time
from .timeutils import DateLike


def filter_scheduled_tasks(tasks: Sequence[ScheduledTask], active_only: bool = False) -> List[ScheduledTask]:
    if active_only:
        return [task for task in tasks if task.is_active]
    return list(tasks)


def find_task_by_code(tasks: Sequence[ScheduledTask], task_code: str) -> Optional[ScheduledTask]:
    return next((task for task in tasks if task.task_code == task_code), None)


def are_task_codes_unique(tasks: Sequence[ScheduledTask]) -> bool:
    codes = [task.task_code for task in tasks]
    return len(codes) == len(set(codes))


def duplicate_task_codes(tasks: Sequence[ScheduledTask]) -> List[str]:
    """Codes shared by more than one task, in first-seen order."""
    counts = Counter(task.task_code for task in tasks)
    return [code for code, count in counts.items() if count > 1]


def calculate_task_next_run(task: ScheduledTask, from_time: Optional[DateLike] = None) -> ScheduledTask:
    """
    Return a copy of ``task`` with ``next_run_at`` recomputed from its own
    cron expression and timezone. ``next_run_at`` is None when the expression
    is malformed or never matches.
    """
    next_run = get_next_run_time(task.cron_expression, task.timezone, from_time)
    return task.model_copy(update={"next_run_at": next_run})


def is_valid_task_code(task_code: str) -> bool:
    return isinstance(task_code, str) and re.fullmatch(TASK_CODE_PATTERN, task_code) is not None
