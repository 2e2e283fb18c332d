"""Errors raised by the task store.

Storage faults are not wrapped: SQLAlchemy exceptions reach the caller as-is.
"""

from __future__ import annotations


class TaskStoreError(RuntimeError):
    """Base class for task store failures."""


class TaskNotFoundError(TaskStoreError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"No task with id '{task_id}' found")
        self.task_id = task_id


class TaskConflictError(TaskStoreError):
    """A conditional state transition lost its precondition."""


class TaskCorruptionError(TaskStoreError):
    """Stored task data cannot be decoded and must not be acted upon."""


class InvalidTaskStatusError(TaskStoreError, ValueError):
    """Completion requested with a non-terminal status."""
