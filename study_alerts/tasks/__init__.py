"""Tasks: the model, input validation and persistence."""

from study_alerts.tasks.models import (
    Priority,
    Task,
    TaskFilters,
    TaskInput,
    TaskList,
    TaskPatch,
    TaskStatus,
)
from study_alerts.tasks.store import InMemoryTaskStore, SQLiteTaskStore, TaskRepository

__all__ = [
    "InMemoryTaskStore",
    "Priority",
    "SQLiteTaskStore",
    "Task",
    "TaskFilters",
    "TaskInput",
    "TaskList",
    "TaskPatch",
    "TaskRepository",
    "TaskStatus",
]
