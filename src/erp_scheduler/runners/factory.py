from typing import Dict, List, Type

from erp_scheduler.runners.protocol import TaskRunner


class TaskRunnerFactory:
    """
    Factory class mapping task codes to task runners.
    """
    def __init__(self):
        self._runners: Dict[str, Type[TaskRunner]] = {}

    @property
    def task_codes(self) -> List[str]:
        return sorted(self._runners)

    def register(self, runner_class: Type[TaskRunner]) -> None:
        """
        Register a runner class for the task code it supports.

        Args:
            runner_class (Type[TaskRunner]): The runner class to register.
        """
        task_code = runner_class.supported_task_code()
        if not task_code:
            raise ValueError(f"Runner '{runner_class.__name__}' does not declare a task code")
        if task_code in self._runners:
            raise ValueError(f"A runner for task '{task_code}' is already registered")
        self._runners[task_code] = runner_class

    def has_runner(self, task_code: str) -> bool:
        return task_code in self._runners

    def get_runner(self, task_code: str) -> TaskRunner:
        """
        Get a runner instance for a task code.

        Raises:
            KeyError: If no runner is registered for the task code.
        """
        if task_code not in self._runners:
            raise KeyError(f"No runner registered for task '{task_code}'")
        return self._runners[task_code]()
