"""Server-side clock expressions, one strategy per database backend.

Heartbeats and stale detection both use the database clock rather than the
worker's, so every process compares timestamps against the same source. The
strategy is resolved once from the engine dialect when a store is built.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import DateTime, func, text
from sqlalchemy.sql.elements import ColumnElement


class DatabaseClock(Protocol):
    """Builds "now" and "now minus N seconds" SQL expressions."""

    def now(self) -> ColumnElement: ...

    def seconds_ago(self, seconds: int) -> ColumnElement: ...


class SqliteClock:
    """SQLite stores timestamps as UTC text; ``datetime('now')`` matches that format."""

    def now(self) -> ColumnElement:
        return func.current_timestamp()

    def seconds_ago(self, seconds: int) -> ColumnElement:
        return func.datetime("now", f"-{_checked_seconds(seconds)} seconds", type_=DateTime)


class PostgresClock:
    def now(self) -> ColumnElement:
        return func.now()

    def seconds_ago(self, seconds: int) -> ColumnElement:
        return func.now() - func.make_interval(0, 0, 0, 0, 0, 0, _checked_seconds(seconds))


class MysqlClock:
    def now(self) -> ColumnElement:
        return func.now()

    def seconds_ago(self, seconds: int) -> ColumnElement:
        interval = text(f"INTERVAL {_checked_seconds(seconds)} SECOND")
        return func.date_sub(func.now(), interval, type_=DateTime)


_CLOCKS: dict[str, type[SqliteClock] | type[PostgresClock] | type[MysqlClock]] = {
    "sqlite": SqliteClock,
    "postgresql": PostgresClock,
    "mysql": MysqlClock,
    "mariadb": MysqlClock,
}


def clock_for_dialect(dialect_name: str) -> DatabaseClock:
    """Return the clock strategy for a SQLAlchemy dialect name."""

    try:
        return _CLOCKS[dialect_name]()
    except KeyError:
        supported = ", ".join(sorted(_CLOCKS))
        raise ValueError(
            f"Unsupported database backend {dialect_name!r}; expected one of: {supported}",
        ) from None


def _checked_seconds(seconds: int) -> int:
    # Rendered into SQL text for some backends, so only plain ints are accepted.
    if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
        raise ValueError(f"Timeout must be a non-negative integer of seconds, got {seconds!r}")
    return seconds
