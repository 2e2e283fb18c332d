from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import allure

from durable_tasks.storage.common import to_db_datetime, to_utc_aware_datetime
from durable_tasks.tasks.repository import TaskStore

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Database Clock"),
]


def test_sqlite_timestamps_are_stored_as_naive_utc() -> None:
    local = datetime(2026, 10, 18, 14, 30, tzinfo=timezone(timedelta(hours=2)))

    stored = to_db_datetime(local, dialect_name="sqlite")

    assert stored == datetime(2026, 10, 18, 12, 30)
    assert stored.tzinfo is None


def test_server_backends_receive_aware_utc_timestamps() -> None:
    local = datetime(2026, 10, 18, 14, 30, tzinfo=timezone(timedelta(hours=2)))

    for dialect_name in ("postgresql", "mysql"):
        stored = to_db_datetime(local, dialect_name=dialect_name)
        assert stored == datetime(2026, 10, 18, 12, 30, tzinfo=UTC)
        assert stored.utcoffset() == timedelta(0)

    naive = to_db_datetime(datetime(2026, 10, 18, 12, 30), dialect_name="postgresql")
    assert naive == datetime(2026, 10, 18, 12, 30, tzinfo=UTC)


def test_stored_timestamps_read_back_as_utc(store: TaskStore) -> None:
    before = datetime.now(tz=UTC).replace(microsecond=0)
    task_id = store.create_task({"template": "a"})

    created_at = store.get_task(task_id).created_at

    assert created_at.tzinfo is not None
    assert created_at >= before
    assert to_utc_aware_datetime(created_at) == created_at
