"""Background heartbeat renewal for a claimed task."""

from __future__ import annotations

import logging
import threading
from types import TracebackType

from sqlalchemy.exc import SQLAlchemyError

from durable_tasks.tasks.errors import TaskConflictError
from durable_tasks.tasks.repository import TaskStore

logger = logging.getLogger(__name__)


class HeartbeatKeeper:
    """Renews a task heartbeat on a daemon thread while the worker runs it.

    Use as a context manager around task execution. When the store reports
    that the task is no longer processing, heartbeats stop and ``lost`` turns
    true; the worker should check it between steps and abandon the task.
    """

    def __init__(
        self,
        store: TaskStore,
        task_id: str,
        *,
        interval_seconds: float = 10.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.store = store
        self.task_id = task_id
        self.interval_seconds = interval_seconds
        self.beats = 0
        self._stop = threading.Event()
        self._lost = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def lost(self) -> bool:
        return self._lost.is_set()

    def wait_lost(self, timeout: float | None = None) -> bool:
        """Block until the claim is lost or the timeout elapses."""

        return self._lost.wait(timeout=timeout)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"heartbeat-{self.task_id[:8]}",
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=self.interval_seconds + 5)
        self._thread = None

    def __enter__(self) -> HeartbeatKeeper:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            try:
                self.store.heartbeat_task(self.task_id)
            except TaskConflictError:
                logger.warning("Lost claim on task %s; stopping heartbeats", self.task_id)
                self._lost.set()
                return
            except SQLAlchemyError:
                # Transient store outage: keep trying until the supervisor decides.
                logger.exception("Heartbeat failed for task %s", self.task_id)
                continue
            self.beats += 1
