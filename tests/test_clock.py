from __future__ import annotations

import allure
import pytest
from sqlalchemy.dialects import mysql, postgresql, sqlite

from durable_tasks.storage.clock import (
    MysqlClock,
    PostgresClock,
    SqliteClock,
    clock_for_dialect,
)

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Database Clock"),
]


@pytest.mark.parametrize(
    ("dialect_name", "expected"),
    [
        ("sqlite", SqliteClock),
        ("postgresql", PostgresClock),
        ("mysql", MysqlClock),
        ("mariadb", MysqlClock),
    ],
)
def test_clock_is_selected_by_dialect(dialect_name: str, expected: type) -> None:
    assert isinstance(clock_for_dialect(dialect_name), expected)


def test_unsupported_dialect_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported database backend 'oracle'"):
        clock_for_dialect("oracle")


def test_sqlite_cutoff_uses_datetime_modifier() -> None:
    compiled = SqliteClock().seconds_ago(30).compile(
        dialect=sqlite.dialect(),
        compile_kwargs={"literal_binds": True},
    )
    assert str(compiled) == "datetime('now', '-30 seconds')"


def test_postgres_cutoff_uses_interval_arithmetic() -> None:
    compiled = str(PostgresClock().seconds_ago(30).compile(dialect=postgresql.dialect()))
    assert "now()" in compiled
    assert "make_interval" in compiled


def test_mysql_cutoff_uses_date_sub() -> None:
    compiled = str(MysqlClock().seconds_ago(45).compile(dialect=mysql.dialect()))
    assert "date_sub(now(), INTERVAL 45 SECOND)" in compiled


@pytest.mark.parametrize("seconds", [-5, 2.5, "30", False])
def test_cutoff_rejects_non_integer_seconds(seconds) -> None:
    with pytest.raises(ValueError, match="non-negative integer"):
        SqliteClock().seconds_ago(seconds)
    with pytest.raises(ValueError, match="non-negative integer"):
        MysqlClock().seconds_ago(seconds)
