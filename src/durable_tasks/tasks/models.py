"""Domain models for the durable task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    OPEN = "open"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
)


class TaskEventType(str, Enum):
    """Kinds of rows in the task event log."""

    LOG = "log"
    COMPLETION = "completion"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Step progress carried inside ``log`` event bodies."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class TaskView:
    """Readable task view for workers, supervisors and the CLI."""

    task_id: str
    spec: dict[str, Any]
    status: TaskStatus
    created_at: datetime
    last_heartbeat_at: datetime | None = None
    created_by: str | None = None
    secrets: dict[str, Any] | None = None


@dataclass(slots=True)
class TaskEventView:
    """One entry of the task event log."""

    event_id: int
    task_id: str
    event_type: TaskEventType
    body: dict[str, Any]
    created_at: datetime

    @property
    def step_id(self) -> str | None:
        value = self.body.get("stepId")
        return str(value) if value else None

    @property
    def step_status(self) -> StepStatus | None:
        try:
            return StepStatus(self.body.get("status"))
        except ValueError:
            return None


@dataclass(slots=True)
class TaskDetails:
    """Task with its ordered event stream."""

    task: TaskView
    events: list[TaskEventView] = field(default_factory=list)

    @property
    def completion(self) -> TaskEventView | None:
        """First completion event; later duplicates are not authoritative."""

        for event in self.events:
            if event.event_type == TaskEventType.COMPLETION:
                return event
        return None
