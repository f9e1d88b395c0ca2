from .factory import TaskRunnerFactory
from .protocol import RunOutcome, TaskRunner
from .webhook import WebhookCallPayload, WebhookTaskRunner

__all__ = ["TaskRunner", "RunOutcome", "TaskRunnerFactory", "WebhookTaskRunner", "WebhookCallPayload"]
