"""Cursor-based polling of a task's event log until it completes."""

from __future__ import annotations

import time
from collections.abc import Iterator

from durable_tasks.tasks.models import TaskEventType, TaskEventView
from durable_tasks.tasks.repository import TaskStore


def follow_events(
    store: TaskStore,
    task_id: str,
    *,
    after: int | None = None,
    poll_interval_seconds: float = 1.0,
    timeout_seconds: float | None = None,
) -> Iterator[TaskEventView]:
    """Yield new events in order and stop after the first completion event.

    Raises ``TimeoutError`` if no completion arrives within ``timeout_seconds``.
    """

    deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
    cursor = after
    while True:
        events = store.list_events(task_id, after=cursor)
        for event in events:
            if event.event_type is TaskEventType.COMPLETION:
                yield event
                return
            if cursor is None or event.event_id > cursor:
                yield event
        if events:
            newest = events[-1].event_id
            cursor = newest if cursor is None else max(cursor, newest)

        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"Task {task_id} did not complete within {timeout_seconds}s")
            time.sleep(min(poll_interval_seconds, remaining))
        else:
            time.sleep(poll_interval_seconds)


def wait_for_completion(
    store: TaskStore,
    task_id: str,
    *,
    poll_interval_seconds: float = 1.0,
    timeout_seconds: float | None = None,
) -> TaskEventView:
    """Block until the task has a completion event and return it."""

    completion: TaskEventView | None = None
    for event in follow_events(
        store,
        task_id,
        poll_interval_seconds=poll_interval_seconds,
        timeout_seconds=timeout_seconds,
    ):
        completion = event
    if completion is None or completion.event_type is not TaskEventType.COMPLETION:
        raise RuntimeError(f"Event stream of task {task_id} ended without completion")
    return completion
