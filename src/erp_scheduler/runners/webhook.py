import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from erp_scheduler.domain.execution import TaskExecution
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.errors import TaskRunError
from erp_scheduler.runners.protocol import RunOutcome, TaskRunner

logger = logging.getLogger(__name__)


class WebhookCallPayload(BaseModel):
    task_code: str = Field(..., description="Code of the task being run")
    execution_id: str = Field(..., description="Execution record the workflow reports against")
    triggered_by: str = Field(..., description="schedule, manual or retry")
    parameters: Dict[str, Any] = Field(default={}, description="The task's parameters")


class WebhookTaskRunner(TaskRunner):
    """
    Runs a task by posting to the external workflow behind its ``webhook_url``.

    A JSON response may carry ``records_processed`` and ``result_summary``.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def supported_task_code() -> Optional[str]:
        return None

    async def run(self, task: ScheduledTask, execution: TaskExecution) -> RunOutcome:
        if not task.webhook_url:
            raise TaskRunError(f"Task {task.task_code} has no webhook_url")

        payload = WebhookCallPayload(
            task_code=task.task_code,
            execution_id=execution.id,
            triggered_by=execution.triggered_by.value,
            parameters=task.task_parameters,
        )
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds) if self.timeout_seconds else None

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(task.webhook_url, json=payload.model_dump()) as response:
                    body = await response.text()
                    if response.status >= 400:
                        raise TaskRunError(f"Webhook returned HTTP {response.status}: {body[:200]}")
                    data = await self._json_or_none(response)
        except aiohttp.ClientError as e:
            raise TaskRunError(f"Webhook call failed: {e}") from e

        logger.info("Webhook for task %s answered for execution %s", task.task_code, execution.id)
        if not isinstance(data, dict):
            return RunOutcome(result_summary={"response": body})
        return RunOutcome(
            records_processed=data.get("records_processed") or 0,
            result_summary=data.get("result_summary") or {},
        )

    @staticmethod
    async def _json_or_none(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return None
