"""Shared test fixtures."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from durable_tasks.tasks.repository import TaskStore


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks.db"


@pytest.fixture()
def store(db_path: Path) -> Iterator[TaskStore]:
    task_store = TaskStore.create(db_path)
    try:
        yield task_store
    finally:
        task_store.close()


@pytest.fixture()
def age_heartbeat(db_path: Path) -> Callable[[str, float], None]:
    """Rewrite a task heartbeat to ``seconds`` in the past, bypassing the store."""

    def _age(task_id: str, seconds: float) -> None:
        stamp = (datetime.now(tz=UTC) - timedelta(seconds=seconds)).replace(tzinfo=None)
        connection = sqlite3.connect(db_path)
        try:
            connection.execute(
                "UPDATE tasks SET last_heartbeat_at = ? WHERE id = ?",
                (stamp.isoformat(sep=" "), task_id),
            )
            connection.commit()
        finally:
            connection.close()

    return _age


@pytest.fixture()
def raw_sql(db_path: Path) -> Callable[..., None]:
    """Execute one statement directly against the SQLite file."""

    def _execute(sql: str, params: tuple[object, ...] = ()) -> None:
        connection = sqlite3.connect(db_path)
        try:
            connection.execute(sql, params)
            connection.commit()
        finally:
            connection.close()

    return _execute
