"""Runtime facade for app integration."""

from .service import RuntimeService, get_runtime_service, load_task_executor

__all__ = [
    "RuntimeService",
    "get_runtime_service",
    "load_task_executor",
]
