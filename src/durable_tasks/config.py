"""Runtime configuration for the task store, supervisor and workers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class SupervisorSettings:
    """Stale-task recovery settings."""

    stale_timeout_seconds: int = 300
    sweep_interval_seconds: float = 30.0


@dataclass(slots=True)
class WorkerSettings:
    """Worker-side liveness settings."""

    heartbeat_interval_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".durable_tasks.db")
    database_url: str | None = None
    sqlite_busy_timeout_ms: int = 5_000
    skip_migrations: bool = False
    log_level: str = "INFO"
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        database_url = os.getenv("DURABLE_TASKS_DATABASE_URL", "").strip() or None
        return cls(
            db_path=db_path or Path(os.getenv("DURABLE_TASKS_DB_PATH", ".durable_tasks.db")),
            # An explicit --db-path always wins over a configured URL.
            database_url=None if db_path is not None else database_url,
            sqlite_busy_timeout_ms=int(os.getenv("DURABLE_TASKS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            skip_migrations=_env_bool("DURABLE_TASKS_SKIP_MIGRATIONS", default=False),
            log_level=os.getenv("DURABLE_TASKS_LOG_LEVEL", "INFO").strip().upper(),
            supervisor=SupervisorSettings(
                stale_timeout_seconds=int(
                    os.getenv("DURABLE_TASKS_STALE_TIMEOUT_SECONDS", "300"),
                ),
                sweep_interval_seconds=float(
                    os.getenv("DURABLE_TASKS_SWEEP_INTERVAL_SECONDS", "30"),
                ),
            ),
            worker=WorkerSettings(
                heartbeat_interval_seconds=float(
                    os.getenv("DURABLE_TASKS_HEARTBEAT_INTERVAL_SECONDS", "10"),
                ),
            ),
        )

    @property
    def resolved_database_url(self) -> str:
        """Database URL used to build the store engine."""

        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def validate_for_supervisor(self) -> None:
        """Raise configuration error if the supervisor cannot run with these values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("DURABLE_TASKS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.supervisor.stale_timeout_seconds <= 0:
            raise ValueError("DURABLE_TASKS_STALE_TIMEOUT_SECONDS must be > 0.")
        if self.supervisor.sweep_interval_seconds <= 0:
            raise ValueError("DURABLE_TASKS_SWEEP_INTERVAL_SECONDS must be > 0.")

    def validate(self) -> None:
        """Raise configuration error for inconsistent timing or logging values."""

        self.validate_for_supervisor()
        if self.worker.heartbeat_interval_seconds <= 0:
            raise ValueError("DURABLE_TASKS_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if self.worker.heartbeat_interval_seconds >= self.supervisor.stale_timeout_seconds:
            raise ValueError(
                "DURABLE_TASKS_HEARTBEAT_INTERVAL_SECONDS must be shorter than "
                "DURABLE_TASKS_STALE_TIMEOUT_SECONDS, otherwise healthy tasks look stale.",
            )
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid DURABLE_TASKS_LOG_LEVEL: {self.log_level!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
