"""Controllers for task store CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from durable_tasks.config import Settings
from durable_tasks.tasks.follow import follow_events
from durable_tasks.tasks.models import TaskEventView, TaskStatus, TaskView
from durable_tasks.tasks.repository import TaskStore
from durable_tasks.tasks.supervisor import StaleTaskSupervisor


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task creation."""

    db_path: Path | None
    spec_json: str
    secrets_json: str | None = None
    created_by: str | None = None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    created_by: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskClaimCommand:
    db_path: Path | None


@dataclass(slots=True)
class TaskLogCommand:
    """CLI input for appending a log or step-status event."""

    db_path: Path | None
    task_id: str
    message: str
    step_id: str | None = None
    step_status: str | None = None


@dataclass(slots=True)
class TaskCompleteCommand:
    db_path: Path | None
    task_id: str
    status: str
    message: str


@dataclass(slots=True)
class TaskCancelCommand:
    db_path: Path | None
    task_id: str
    message: str


@dataclass(slots=True)
class TaskEventsCommand:
    """CLI input for event listing and following."""

    db_path: Path | None
    task_id: str
    after: int | None = None
    follow: bool = False
    poll_interval_seconds: float = 1.0
    timeout_seconds: float | None = None


@dataclass(slots=True)
class TaskStaleCommand:
    db_path: Path | None
    timeout_seconds: int | None


@dataclass(slots=True)
class SuperviseCommand:
    """CLI input for the stale-task supervisor."""

    db_path: Path | None
    once: bool
    max_sweeps: int | None = None
    stale_timeout_seconds: int | None = None
    sweep_interval_seconds: float | None = None


class TaskCliController:
    """Coordinates task store operations for the CLI."""

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        spec = _parse_json_object(command.spec_json, option="--spec")
        secrets = (
            _parse_json_object(command.secrets_json, option="--secrets")
            if command.secrets_json is not None
            else None
        )
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            task_id = store.create_task(spec, secrets=secrets, created_by=command.created_by)
        return [f"Task created: task_id={task_id} status={TaskStatus.OPEN.value}"]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        status = TaskStatus(command.status.strip().lower()) if command.status else None
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            tasks = store.list_tasks(
                created_by=command.created_by,
                status=status,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} "
                f"created_by={task.created_by or '-'} "
                f"created_at={task.created_at.isoformat()} "
                f"heartbeat_at={_heartbeat_text(task)}",
            )
        return lines

    def inspect_task(self, command: TaskRefCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            details = store.get_task_details(command.task_id)

        task = details.task
        completion = details.completion
        lines = [
            f"Task: {task.task_id}",
            f"Status: {task.status.value}",
            f"Created by: {task.created_by or '-'}",
            f"Created at: {task.created_at.isoformat()}",
            f"Last heartbeat: {_heartbeat_text(task)}",
            f"Spec: {_dumps(task.spec)}",
            f"Completion: {_dumps(completion.body) if completion is not None else '-'}",
            f"Events: {len(details.events)}",
        ]
        lines.extend(_event_line(event) for event in details.events)
        return lines

    def claim_task(self, command: TaskClaimCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            task = store.claim_task()
        if task is None:
            return ["No open task to claim."]
        secret_keys = ", ".join(sorted(task.secrets)) if task.secrets else "-"
        return [
            f"Task claimed: task_id={task.task_id} status={task.status.value}",
            f"Spec: {_dumps(task.spec)}",
            f"Secrets: {secret_keys}",
        ]

    def heartbeat_task(self, command: TaskRefCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            store.heartbeat_task(command.task_id)
        return [f"Heartbeat recorded: {command.task_id}"]

    def log_event(self, command: TaskLogCommand) -> list[str]:
        body: dict[str, Any] = {"message": command.message}
        if command.step_id is not None:
            body["stepId"] = command.step_id
        if command.step_status is not None:
            body["status"] = command.step_status
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            store.emit_log_event(command.task_id, body)
        return [f"Event recorded: {command.task_id} {_dumps(body)}"]

    def complete_task(self, command: TaskCompleteCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            store.complete_task(command.task_id, command.status, {"message": command.message})
            task = store.get_task(command.task_id)
        return [f"Task finalized: {command.task_id} status={task.status.value}"]

    def cancel_task(self, command: TaskCancelCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            store.cancel_task(command.task_id, {"message": command.message})
        return [f"Cancellation requested: {command.task_id}"]

    def list_events(self, command: TaskEventsCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            if command.follow:
                events = list(
                    follow_events(
                        store,
                        command.task_id,
                        after=command.after,
                        poll_interval_seconds=command.poll_interval_seconds,
                        timeout_seconds=command.timeout_seconds,
                    ),
                )
            else:
                events = store.list_events(command.task_id, after=command.after)
        return [f"Events: {len(events)}", *(_event_line(event) for event in events)]

    def list_stale(self, command: TaskStaleCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        timeout = (
            command.timeout_seconds
            if command.timeout_seconds is not None
            else settings.supervisor.stale_timeout_seconds
        )
        with _store(settings) as store:
            task_ids = store.list_stale_tasks(timeout)
        lines = [f"Stale tasks (timeout={timeout}s): {len(task_ids)}"]
        lines.extend(f"  {task_id}" for task_id in task_ids)
        return lines

    def shutdown_task(self, command: TaskRefCommand) -> list[str]:
        with _store(Settings.from_env(db_path=command.db_path)) as store:
            store.shutdown_task(command.task_id)
        return [f"Task shut down: {command.task_id} status={TaskStatus.FAILED.value}"]

    def supervise(self, command: SuperviseCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.stale_timeout_seconds is not None:
            settings.supervisor.stale_timeout_seconds = command.stale_timeout_seconds
        if command.sweep_interval_seconds is not None:
            settings.supervisor.sweep_interval_seconds = command.sweep_interval_seconds
        settings.validate_for_supervisor()

        with _store(settings) as store:
            supervisor = StaleTaskSupervisor(
                store=store,
                stale_timeout_seconds=settings.supervisor.stale_timeout_seconds,
                sweep_interval_seconds=settings.supervisor.sweep_interval_seconds,
            )
            summary = (
                supervisor.run_once()
                if command.once
                else supervisor.run_loop(max_sweeps=command.max_sweeps)
            )

        return [
            "Supervisor summary: "
            f"sweeps={summary.sweeps} stale={summary.stale} "
            f"recovered={summary.recovered} conflicts={summary.conflicts}",
        ]


def _parse_json_object(raw: str, *, option: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except ValueError as error:
        raise ValueError(f"{option} must be valid JSON: {error}") from error
    if not isinstance(parsed, dict):
        raise ValueError(f"{option} must be a JSON object.")
    return parsed


def _dumps(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _heartbeat_text(task: TaskView) -> str:
    if task.last_heartbeat_at is None:
        return "-"
    return task.last_heartbeat_at.isoformat()


def _event_line(event: TaskEventView) -> str:
    return (
        f"  #{event.event_id} {event.created_at.isoformat()} "
        f"{event.event_type.value} {_dumps(event.body)}"
    )


@contextmanager
def _store(settings: Settings) -> Iterator[TaskStore]:
    store = TaskStore.create(
        settings.resolved_database_url,
        run_migrations=not settings.skip_migrations,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    try:
        yield store
    finally:
        store.close()
