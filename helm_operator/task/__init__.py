"""Task tracking for the long running loops of the operator."""

from .context import get_task_service, task_service_context
from .service import TaskService, TaskServiceImpl

__all__ = ["get_task_service", "task_service_context", "TaskService", "TaskServiceImpl"]
