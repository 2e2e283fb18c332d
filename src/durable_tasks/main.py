"""CLI entrypoint for durable-tasks."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from durable_tasks import __version__
from durable_tasks.config import Settings
from durable_tasks.logging_setup import setup_logging
from durable_tasks.tasks.controllers import (
    SuperviseCommand,
    TaskCancelCommand,
    TaskClaimCommand,
    TaskCliController,
    TaskCompleteCommand,
    TaskCreateCommand,
    TaskEventsCommand,
    TaskListCommand,
    TaskLogCommand,
    TaskRefCommand,
    TaskStaleCommand,
)
from durable_tasks.tasks.errors import TaskStoreError
from durable_tasks.tasks.models import StepStatus, TaskStatus

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()

_DB_PATH_HELP = "SQLite DB path. Overrides DURABLE_TASKS_DATABASE_URL."
_TERMINAL_CHOICES = [
    TaskStatus.COMPLETED.value,
    TaskStatus.FAILED.value,
    TaskStatus.CANCELLED.value,
]


@click.group()
@click.version_option(version=__version__, prog_name="durable-tasks")
@click.option(
    "--log-level",
    default=None,
    help="Logging level. Defaults to DURABLE_TASKS_LOG_LEVEL or INFO.",
)
def durable_tasks(log_level: str | None) -> None:
    """Durable task queue CLI."""

    setup_logging((log_level or Settings.from_env().log_level).upper())


@durable_tasks.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--spec", "spec_json", required=True, help="Task spec as a JSON object.")
@click.option(
    "--secrets",
    "secrets_json",
    default=None,
    help="One-time secrets as a JSON object, handed to the claiming worker only.",
)
@click.option("--created-by", default=None, help="Identity of the task creator.")
def tasks_create(
    db_path: Path | None,
    spec_json: str,
    secrets_json: str | None,
    created_by: str | None,
) -> None:
    """Create an open task."""

    _emit(
        lambda: TASK_CONTROLLER.create_task(
            TaskCreateCommand(
                db_path=db_path,
                spec_json=spec_json,
                secrets_json=secrets_json,
                created_by=created_by,
            ),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--created-by", default=None, help="Only tasks created by this identity.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(
    db_path: Path | None,
    created_by: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List tasks, newest first."""

    _emit(
        lambda: TASK_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                created_by=created_by,
                status=status,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show a task and its event history."""

    _emit(lambda: TASK_CONTROLLER.inspect_task(TaskRefCommand(db_path=db_path, task_id=task_id)))


@tasks.command("claim")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
def tasks_claim(db_path: Path | None) -> None:
    """Claim one open task for processing."""

    _emit(lambda: TASK_CONTROLLER.claim_task(TaskClaimCommand(db_path=db_path)))


@tasks.command("heartbeat")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
def tasks_heartbeat(db_path: Path | None, task_id: str) -> None:
    """Renew the heartbeat of a processing task."""

    _emit(
        lambda: TASK_CONTROLLER.heartbeat_task(TaskRefCommand(db_path=db_path, task_id=task_id)),
    )


@tasks.command("log")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
@click.option("--message", required=True, help="Log message.")
@click.option("--step-id", default=None, help="Step the event reports on.")
@click.option(
    "--step-status",
    type=click.Choice([status.value for status in StepStatus], case_sensitive=False),
    default=None,
    help="Step status carried by the event.",
)
def tasks_log(
    db_path: Path | None,
    task_id: str,
    message: str,
    step_id: str | None,
    step_status: str | None,
) -> None:
    """Append a log or step-status event."""

    _emit(
        lambda: TASK_CONTROLLER.log_event(
            TaskLogCommand(
                db_path=db_path,
                task_id=task_id,
                message=message,
                step_id=step_id,
                step_status=step_status.lower() if step_status else None,
            ),
        ),
    )


@tasks.command("complete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
@click.option(
    "--status",
    type=click.Choice(_TERMINAL_CHOICES, case_sensitive=False),
    required=True,
    help="Terminal status.",
)
@click.option("--message", default="", help="Message stored in the completion event.")
def tasks_complete(db_path: Path | None, task_id: str, status: str, message: str) -> None:
    """Finalize a processing task."""

    _emit(
        lambda: TASK_CONTROLLER.complete_task(
            TaskCompleteCommand(
                db_path=db_path,
                task_id=task_id,
                status=status.lower(),
                message=message,
            ),
        ),
    )


@tasks.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
@click.option("--message", default="Cancelled by operator", show_default=True)
def tasks_cancel(db_path: Path | None, task_id: str, message: str) -> None:
    """Ask the worker running a task to stop."""

    _emit(
        lambda: TASK_CONTROLLER.cancel_task(
            TaskCancelCommand(db_path=db_path, task_id=task_id, message=message),
        ),
    )


@tasks.command("events")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
@click.option(
    "--after",
    type=click.IntRange(min=0),
    default=None,
    help="Only events after this sequence number (the completion event is always shown).",
)
@click.option(
    "--follow/--no-follow",
    default=False,
    show_default=True,
    help="Keep polling until the task completes.",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.0, min_open=True),
    default=1.0,
    show_default=True,
    help="Seconds between polls when following.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0.0, min_open=True),
    default=None,
    help="Give up following after this many seconds.",
)
def tasks_events(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    after: int | None,
    follow: bool,
    poll_interval: float,
    timeout: float | None,
) -> None:
    """Print the event log of a task."""

    _emit(
        lambda: TASK_CONTROLLER.list_events(
            TaskEventsCommand(
                db_path=db_path,
                task_id=task_id,
                after=after,
                follow=follow,
                poll_interval_seconds=poll_interval,
                timeout_seconds=timeout,
            ),
        ),
    )


@tasks.command("stale")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Heartbeat age threshold. Defaults to DURABLE_TASKS_STALE_TIMEOUT_SECONDS.",
)
def tasks_stale(db_path: Path | None, timeout_seconds: int | None) -> None:
    """List processing tasks whose heartbeat is too old."""

    _emit(
        lambda: TASK_CONTROLLER.list_stale(
            TaskStaleCommand(db_path=db_path, timeout_seconds=timeout_seconds),
        ),
    )


@tasks.command("shutdown")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
def tasks_shutdown(db_path: Path | None, task_id: str) -> None:
    """Force-fail a task and every step it left in processing."""

    _emit(
        lambda: TASK_CONTROLLER.shutdown_task(TaskRefCommand(db_path=db_path, task_id=task_id)),
    )


@durable_tasks.command("supervise")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=_DB_PATH_HELP)
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one recovery sweep or keep sweeping until interrupted.",
)
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for sweeps in loop mode.",
)
@click.option(
    "--stale-timeout-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Heartbeat age threshold. Defaults to DURABLE_TASKS_STALE_TIMEOUT_SECONDS.",
)
@click.option(
    "--sweep-interval-seconds",
    type=click.FloatRange(min=0.0, min_open=True),
    default=None,
    help="Pause between sweeps. Defaults to DURABLE_TASKS_SWEEP_INTERVAL_SECONDS.",
)
def supervise(
    db_path: Path | None,
    once: bool,
    max_sweeps: int | None,
    stale_timeout_seconds: int | None,
    sweep_interval_seconds: float | None,
) -> None:
    """Recover tasks whose workers stopped heartbeating."""

    _emit(
        lambda: TASK_CONTROLLER.supervise(
            SuperviseCommand(
                db_path=db_path,
                once=once,
                max_sweeps=max_sweeps,
                stale_timeout_seconds=stale_timeout_seconds,
                sweep_interval_seconds=sweep_interval_seconds,
            ),
        ),
    )


def _emit(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (TaskStoreError, ValueError, TimeoutError) as error:
        raise click.ClickException(str(error)) from error
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    durable_tasks()
