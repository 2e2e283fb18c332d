from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import allure
import pytest
from sqlalchemy import event

from durable_tasks.tasks.errors import TaskConflictError
from durable_tasks.tasks.models import TaskEventType, TaskStatus, TaskView
from durable_tasks.tasks.repository import TaskStore

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Concurrent Claims"),
]


def test_only_one_of_many_concurrent_claimants_wins(db_path: Path, store: TaskStore) -> None:
    task_id = store.create_task({"template": "race"}, secrets={"token": "only-once"})
    workers = 8
    barrier = threading.Barrier(workers)
    results: list[TaskView | None] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def _claim() -> None:
        barrier.wait()
        try:
            claimed = store.claim_task()
        except BaseException as error:  # noqa: BLE001
            with lock:
                errors.append(error)
            return
        with lock:
            results.append(claimed)

    threads = [threading.Thread(target=_claim) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    winners = [result for result in results if result is not None]
    assert len(winners) == 1
    assert winners[0].task_id == task_id
    assert winners[0].secrets == {"token": "only-once"}

    connection = sqlite3.connect(db_path)
    try:
        rows = connection.execute("SELECT status, secrets FROM tasks").fetchall()
    finally:
        connection.close()
    assert rows == [(TaskStatus.PROCESSING.value, None)]


def _run_before_first_update(store: TaskStore, table: str, action) -> None:
    """Run ``action`` right before ``store`` issues its first UPDATE on ``table``."""

    fired = False

    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        nonlocal fired
        if fired or not statement.lstrip().upper().startswith(f"UPDATE {table.upper()}"):
            return
        fired = True
        action()

    event.listen(store.engine, "before_cursor_execute", _before_cursor_execute)


def test_claim_that_loses_the_race_returns_none(db_path: Path) -> None:
    loser = TaskStore.create(db_path)
    winner = TaskStore.create(db_path, run_migrations=False)
    task_id = loser.create_task({"template": "race"}, secrets={"token": "x"})
    won: list[TaskView | None] = []
    _run_before_first_update(loser, "tasks", lambda: won.append(winner.claim_task()))

    try:
        assert loser.claim_task() is None
        assert len(won) == 1
        assert won[0] is not None
        assert won[0].task_id == task_id
        assert won[0].secrets == {"token": "x"}
        assert winner.get_task(task_id).status == TaskStatus.PROCESSING
    finally:
        loser.close()
        winner.close()


def test_completion_that_loses_the_race_is_a_conflict(db_path: Path) -> None:
    loser = TaskStore.create(db_path)
    winner = TaskStore.create(db_path, run_migrations=False)
    task_id = loser.create_task({"template": "race"})
    assert loser.claim_task() is not None
    _run_before_first_update(
        loser,
        "tasks",
        lambda: winner.complete_task(task_id, TaskStatus.COMPLETED, {"message": "winner"}),
    )

    try:
        with pytest.raises(TaskConflictError, match="Failed to update status to 'failed'"):
            loser.complete_task(task_id, TaskStatus.FAILED, {"message": "loser"})

        assert winner.get_task(task_id).status == TaskStatus.COMPLETED
        completions = [
            event
            for event in winner.list_events(task_id)
            if event.event_type is TaskEventType.COMPLETION
        ]
        assert [event.body for event in completions] == [{"message": "winner"}]
    finally:
        loser.close()
        winner.close()
