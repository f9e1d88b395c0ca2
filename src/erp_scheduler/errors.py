class SchedulerError(Exception):
    """Base class for errors raised by the scheduler service layer."""


class TaskNotFoundError(SchedulerError, KeyError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Task not found: {key}")

    def __str__(self) -> str:
        return self.args[0]


class TaskInactiveError(SchedulerError):
    def __init__(self, task_code: str):
        self.task_code = task_code
        super().__init__(f"Task is inactive: {task_code}")


class DuplicateTaskCodeError(SchedulerError, ValueError):
    def __init__(self, task_code: str):
        self.task_code = task_code
        super().__init__(f"Task code already exists: {task_code}")


class ExecutionNotFoundError(SchedulerError, KeyError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidStatusTransitionError(SchedulerError, ValueError):
    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Invalid status transition: {current} -> {new}")


class ExecutionAlreadyRunningError(SchedulerError):
    def __init__(self, task_id: str, execution_id: str):
        self.task_id = task_id
        self.execution_id = execution_id
        super().__init__(f"Task {task_id} already has a running execution: {execution_id}")


class RetryNotAllowedError(SchedulerError):
    def __init__(self, task_code: str, reason: str):
        self.task_code = task_code
        self.reason = reason
        super().__init__(f"Task {task_code} cannot be retried: {reason}")


class TaskRunError(SchedulerError):
    """Raised by a runner when the job behind a task did not succeed."""


class InvalidTaskCodeError(SchedulerError, ValueError):
    def __init__(self, task_code: str):
        self.task_code = task_code
        super().__init__(f"Invalid task code: {task_code!r}")
