"""Persistent task store: task table, claim, liveness, completion and event log."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from durable_tasks.storage.alembic_runner import upgrade_head
from durable_tasks.storage.clock import DatabaseClock, clock_for_dialect
from durable_tasks.storage.common import (
    build_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from durable_tasks.storage.sqlmodel_models import TaskEventRow, TaskRow
from durable_tasks.tasks.errors import (
    InvalidTaskStatusError,
    TaskConflictError,
    TaskCorruptionError,
    TaskNotFoundError,
)
from durable_tasks.tasks.models import (
    TERMINAL_STATUSES,
    StepStatus,
    TaskDetails,
    TaskEventType,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from durable_tasks.tasks.serialization import (
    decode_object,
    decode_optional_object,
    encode_object,
    encode_optional_object,
)

logger = logging.getLogger(__name__)

STALE_TASK_MESSAGE = "This task was marked as stale as it exceeded its timeout"
_TERMINAL_VALUES = frozenset(status.value for status in TERMINAL_STATUSES)


@runtime_checkable
class DatabaseManager(Protocol):
    """Lazily provides an engine; may carry ``skip_migrations = True``."""

    def get_engine(self) -> Engine: ...


DatabaseHandle = Engine | DatabaseManager | str | Path


class TaskStore:
    """Queue persistence facade backed by SQLModel.

    Every public method runs in its own session and commits or rolls back
    before returning, so callers can share one store across threads.
    """

    def __init__(self, database: DatabaseHandle, *, busy_timeout_ms: int = 5_000) -> None:
        self.engine, self._owns_engine = _resolve_engine(database, busy_timeout_ms=busy_timeout_ms)
        self.clock: DatabaseClock = clock_for_dialect(self.engine.dialect.name)

    @classmethod
    def create(
        cls,
        database: DatabaseHandle,
        *,
        run_migrations: bool | None = None,
        busy_timeout_ms: int = 5_000,
    ) -> TaskStore:
        """Build a store and bring its schema to head unless migrations are skipped.

        With ``run_migrations=None`` a database manager decides through its
        ``skip_migrations`` attribute; any other handle is migrated.
        """

        store = cls(database, busy_timeout_ms=busy_timeout_ms)
        if run_migrations is None:
            run_migrations = not getattr(database, "skip_migrations", False)
        if run_migrations:
            store.init_schema()
        return store

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.engine)

    def close(self) -> None:
        """Dispose the engine if this store created it."""

        if self._owns_engine:
            self.engine.dispose()

    # -- task table -----------------------------------------------------------

    def create_task(
        self,
        spec: Mapping[str, Any],
        *,
        secrets: Mapping[str, Any] | None = None,
        created_by: str | None = None,
    ) -> str:
        """Create an open task and return its id."""

        task_id = str(uuid4())
        row = TaskRow(
            id=task_id,
            spec=encode_object(spec, what="Task spec"),
            status=TaskStatus.OPEN.value,
            created_at=self._db_now(),
            created_by=created_by,
            secrets=encode_optional_object(secrets, what="Task secrets"),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
        logger.info("Created task %s (created_by=%s)", task_id, created_by or "-")
        return task_id

    def get_task(self, task_id: str) -> TaskView:
        """Return one task including secrets, which exist only while it is open."""

        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.id == task_id)).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            return _to_task_view(row, include_secrets=True)

    def list_tasks(
        self,
        *,
        created_by: str | None = None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[TaskView]:
        """List tasks newest first. Secrets are never part of this projection."""

        statement = select(TaskRow).order_by(col(TaskRow.created_at).desc())
        if created_by:
            statement = statement.where(TaskRow.created_by == created_by)
        if status is not None:
            statement = statement.where(TaskRow.status == TaskStatus(status).value)
        if limit is not None:
            statement = statement.limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [_to_task_view(row, include_secrets=False) for row in rows]

    def get_task_details(self, task_id: str) -> TaskDetails:
        """Return a task with its full event stream."""

        task = self.get_task(task_id)
        task.secrets = None
        return TaskDetails(task=task, events=self.list_events(task_id))

    # -- claim ----------------------------------------------------------------

    def claim_task(self) -> TaskView | None:
        """Atomically move one open task to processing.

        Returns ``None`` when nothing is open or another claimant won the race;
        the polling caller retries. The returned view is the only place the
        task's secrets are exposed after creation: they are cleared in the
        same update.
        """

        with Session(self.engine) as session:
            candidate = session.exec(
                select(TaskRow).where(TaskRow.status == TaskStatus.OPEN.value).limit(1),
            ).one_or_none()
            if candidate is None:
                return None

            task_id = candidate.id
            raw_spec = candidate.spec
            raw_secrets = candidate.secrets
            created_at = candidate.created_at
            created_by = candidate.created_by

            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.status) == TaskStatus.OPEN.value,
                )
                .values(
                    status=TaskStatus.PROCESSING.value,
                    last_heartbeat_at=self.clock.now(),
                    secrets=None,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.debug("Lost claim race for task %s", task_id)
                return None

            try:
                spec = decode_object(raw_spec, context=f"spec of task '{task_id}'")
                secrets = decode_optional_object(
                    raw_secrets,
                    context=f"secrets of task '{task_id}'",
                )
            except TaskCorruptionError:
                session.rollback()
                raise

            heartbeat_at = session.exec(
                select(TaskRow.last_heartbeat_at).where(TaskRow.id == task_id),
            ).one()
            session.commit()

        logger.info("Claimed task %s", task_id)
        return TaskView(
            task_id=task_id,
            spec=spec,
            status=TaskStatus.PROCESSING,
            created_at=to_utc_aware_datetime(created_at),
            last_heartbeat_at=(
                to_utc_aware_datetime(heartbeat_at) if heartbeat_at is not None else None
            ),
            created_by=created_by,
            secrets=secrets,
        )

    # -- liveness -------------------------------------------------------------

    def heartbeat_task(self, task_id: str) -> None:
        """Renew the heartbeat of a processing task.

        Raises ``TaskConflictError`` when the task is missing or no longer
        processing; the worker must stop working on it.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.status) == TaskStatus.PROCESSING.value,
                )
                .values(last_heartbeat_at=self.clock.now()),
            )
            if result.rowcount == 0:
                session.rollback()
                raise TaskConflictError(f"No running task with taskId {task_id} found")
            session.commit()

    def list_stale_tasks(self, timeout_seconds: int) -> list[str]:
        """Return ids of processing tasks whose heartbeat is older than the timeout."""

        cutoff = self.clock.seconds_ago(timeout_seconds)
        with Session(self.engine) as session:
            task_ids = session.exec(
                select(TaskRow.id)
                .where(
                    TaskRow.status == TaskStatus.PROCESSING.value,
                    col(TaskRow.last_heartbeat_at) <= cutoff,
                )
                .order_by(col(TaskRow.last_heartbeat_at).asc()),
            ).all()
        return list(task_ids)

    # -- completion -----------------------------------------------------------

    def complete_task(
        self,
        task_id: str,
        status: TaskStatus | str,
        event_body: Mapping[str, Any],
    ) -> None:
        """Move a processing task to a terminal status and record its completion event.

        A task that is already cancelled is left untouched, so repeated
        cancellation is harmless.
        """

        target = _terminal_status(task_id, status)
        body = encode_object(event_body, what="Completion event body")
        self._finalize(task_id, target, body)

    def cancel_task(self, task_id: str, body: Mapping[str, Any]) -> None:
        """Signal the running worker to stop; the status is not changed here.

        The worker observes the ``cancelled`` event and finalizes the task with
        ``complete_task(..., 'cancelled', ...)``. Signals for finished tasks
        are dropped.
        """

        encoded = encode_object(body, what="Cancellation event body")
        with Session(self.engine) as session:
            current = session.exec(
                select(TaskRow.status).where(TaskRow.id == task_id),
            ).one_or_none()
            if current is None:
                raise TaskNotFoundError(task_id)
            if current in _TERMINAL_VALUES:
                logger.debug("Task %s is already %s; dropping cancel signal", task_id, current)
                return
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.CANCELLED,
                body=encoded,
            )
            session.commit()
        logger.info("Cancellation requested for task %s", task_id)

    def shutdown_task(self, task_id: str, *, message: str = STALE_TASK_MESSAGE) -> None:
        """Force-fail a stale task, first failing every step left in processing.

        The step failures and the completion are written in one transaction
        that only proceeds while the task is still processing, so a task the
        worker finished in the meantime gets no forced step events.
        """

        step_events = [event for event in self.list_events(task_id) if event.step_id is not None]
        finished_steps = {
            event.step_id
            for event in step_events
            if event.step_status in {StepStatus.COMPLETED, StepStatus.FAILED}
        }
        hung_steps: list[str] = []
        for event in step_events:
            step_id = event.step_id
            if (
                event.step_status is StepStatus.PROCESSING
                and step_id not in finished_steps
                and step_id not in hung_steps
            ):
                hung_steps.append(step_id)

        step_bodies = [
            encode_object(
                {"message": message, "stepId": step_id, "status": StepStatus.FAILED.value},
                what="Step failure event body",
            )
            for step_id in hung_steps
        ]
        finished = self._finalize(
            task_id,
            TaskStatus.FAILED,
            encode_object({"message": message}, what="Completion event body"),
            step_bodies=step_bodies,
        )
        if finished:
            for step_id in hung_steps:
                logger.warning("Marked hung step %s of task %s as failed", step_id, task_id)

    # -- event log ------------------------------------------------------------

    def emit_log_event(self, task_id: str, body: Mapping[str, Any]) -> None:
        """Append a log event."""

        encoded = encode_object(body, what="Log event body")
        with Session(self.engine) as session:
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.LOG,
                body=encoded,
            )
            session.commit()

    def list_events(self, task_id: str, *, after: int | None = None) -> list[TaskEventView]:
        """Return task events in sequence order.

        With ``after``, only events past that sequence number are returned,
        plus the completion event whatever its number: a client polling with a
        cursor must never miss the terminal event.
        """

        statement = select(TaskEventRow).where(TaskEventRow.task_id == task_id)
        if after is not None:
            if isinstance(after, bool) or not isinstance(after, int):
                raise ValueError(f"Event cursor must be an integer, got {after!r}")
            statement = statement.where(
                or_(
                    col(TaskEventRow.id) > after,
                    col(TaskEventRow.event_type) == TaskEventType.COMPLETION.value,
                ),
            )
        statement = statement.order_by(col(TaskEventRow.id).asc())

        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [_to_event_view(row) for row in rows]

    def _finalize(
        self,
        task_id: str,
        target: TaskStatus,
        body: str,
        *,
        step_bodies: list[str] | None = None,
    ) -> bool:
        """Move a processing task to ``target``; return False if it was already cancelled."""

        with Session(self.engine) as session:
            current = session.exec(
                select(TaskRow.status).where(TaskRow.id == task_id),
            ).one_or_none()
            if current is None:
                raise TaskNotFoundError(task_id)
            if current == TaskStatus.CANCELLED.value:
                logger.debug("Task %s is already cancelled; ignoring %s", task_id, target.value)
                return False
            if current != TaskStatus.PROCESSING.value:
                raise TaskConflictError(
                    f"Refusing to update status of task '{task_id}' to status "
                    f"'{target.value}' as it is currently '{current}', expected 'processing'",
                )

            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.status) == TaskStatus.PROCESSING.value,
                )
                .values(status=target.value),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskConflictError(
                    f"Failed to update status to '{target.value}' for taskId {task_id}",
                )
            for step_body in step_bodies or ():
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type=TaskEventType.LOG,
                    body=step_body,
                )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=TaskEventType.COMPLETION,
                body=body,
            )
            session.commit()
        logger.info("Task %s finished with status %s", task_id, target.value)
        return True

    def _db_now(self) -> datetime:
        return to_db_datetime(utc_now(), dialect_name=self.engine.dialect.name)

    def _add_event(
        self,
        *,
        session: Session,
        task_id: str,
        event_type: TaskEventType,
        body: str,
    ) -> None:
        session.add(
            TaskEventRow(
                task_id=task_id,
                event_type=event_type.value,
                body=body,
                created_at=self._db_now(),
            ),
        )


def _resolve_engine(database: DatabaseHandle, *, busy_timeout_ms: int) -> tuple[Engine, bool]:
    if isinstance(database, Engine):
        return database, False
    if isinstance(database, Path):
        return build_engine(f"sqlite:///{database}", busy_timeout_ms=busy_timeout_ms), True
    if isinstance(database, str):
        return build_engine(database, busy_timeout_ms=busy_timeout_ms), True
    if isinstance(database, DatabaseManager):
        return database.get_engine(), False
    raise TypeError(f"Unsupported database handle: {type(database).__name__}")


def _terminal_status(task_id: str, status: TaskStatus | str) -> TaskStatus:
    try:
        parsed = TaskStatus(status)
    except ValueError:
        parsed = None
    if parsed not in TERMINAL_STATUSES:
        raise InvalidTaskStatusError(
            f"Invalid status update of task '{task_id}' to status '{status}'",
        )
    return parsed


def _to_task_view(row: TaskRow, *, include_secrets: bool) -> TaskView:
    context = f"task '{row.id}'"
    try:
        status = TaskStatus(row.status)
    except ValueError as error:
        raise TaskCorruptionError(f"Unknown status {row.status!r} of {context}") from error
    return TaskView(
        task_id=row.id,
        spec=decode_object(row.spec, context=f"spec of {context}"),
        status=status,
        created_at=to_utc_aware_datetime(row.created_at),
        last_heartbeat_at=(
            to_utc_aware_datetime(row.last_heartbeat_at)
            if row.last_heartbeat_at is not None
            else None
        ),
        created_by=row.created_by,
        secrets=(
            decode_optional_object(row.secrets, context=f"secrets of {context}")
            if include_secrets
            else None
        ),
    )


def _to_event_view(row: TaskEventRow) -> TaskEventView:
    context = f"event body from event taskId={row.task_id} id={row.id}"
    try:
        event_type = TaskEventType(row.event_type)
    except ValueError as error:
        raise TaskCorruptionError(f"Unknown type {row.event_type!r} of {context}") from error
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=event_type,
        body=decode_object(row.body, context=context),
        created_at=to_utc_aware_datetime(row.created_at),
    )
