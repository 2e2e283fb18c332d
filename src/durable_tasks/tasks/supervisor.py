"""Supervisor loop that force-fails tasks whose workers stopped heartbeating."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from durable_tasks.tasks.errors import TaskConflictError
from durable_tasks.tasks.repository import STALE_TASK_MESSAGE, TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SupervisorSummary:
    """Aggregate sweep counters for CLI reporting."""

    sweeps: int = 0
    stale: int = 0
    recovered: int = 0
    conflicts: int = 0


class StaleTaskSupervisor:
    """Finds stale processing tasks and shuts them down."""

    def __init__(
        self,
        *,
        store: TaskStore,
        stale_timeout_seconds: int = 300,
        sweep_interval_seconds: float = 30.0,
        message: str = STALE_TASK_MESSAGE,
    ) -> None:
        self.store = store
        self.stale_timeout_seconds = stale_timeout_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.message = message
        self._stop_requested = False

    def run_once(self) -> SupervisorSummary:
        """Run a single detection and recovery sweep."""

        summary = SupervisorSummary(sweeps=1)
        task_ids = self.store.list_stale_tasks(self.stale_timeout_seconds)
        summary.stale = len(task_ids)
        for task_id in task_ids:
            if self._stop_requested:
                break
            try:
                self.store.shutdown_task(task_id, message=self.message)
            except TaskConflictError as error:
                # The worker finished (or another supervisor won) after detection.
                summary.conflicts += 1
                logger.info("Stale task %s was finalized concurrently: %s", task_id, error)
                continue
            summary.recovered += 1
            logger.warning(
                "Recovered stale task %s (no heartbeat for %ss)",
                task_id,
                self.stale_timeout_seconds,
            )
        return summary

    def run_loop(self, *, max_sweeps: int | None = None) -> SupervisorSummary:
        """Sweep repeatedly until stopped by a signal or ``max_sweeps`` is reached."""

        aggregate = SupervisorSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                summary = self.run_once()
                aggregate.sweeps += summary.sweeps
                aggregate.stale += summary.stale
                aggregate.recovered += summary.recovered
                aggregate.conflicts += summary.conflicts
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                self._sleep_with_stop(self.sweep_interval_seconds)
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Supervisor stop requested by %s", name)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
