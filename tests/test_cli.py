from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from durable_tasks.main import durable_tasks

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Operator CLI"),
]

_TASK_ID_RE = re.compile(r"task_id=([0-9a-f-]{36})")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DURABLE_TASKS_DATABASE_URL", raising=False)
    monkeypatch.delenv("DURABLE_TASKS_SKIP_MIGRATIONS", raising=False)


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    command, *rest = args
    group = ["tasks", command] if command != "supervise" else ["supervise"]
    return runner.invoke(durable_tasks, [*group, "--db-path", str(db_path), *rest])


def test_task_lifecycle_through_cli(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    created = _invoke(
        runner,
        db_path,
        "create",
        "--spec",
        '{"template": "digest"}',
        "--secrets",
        '{"api_key": "k", "token": "t"}',
        "--created-by",
        "user:ops",
    )
    assert created.exit_code == 0, created.output
    match = _TASK_ID_RE.search(created.output)
    assert match is not None
    task_id = match.group(1)
    assert "status=open" in created.output

    claimed = _invoke(runner, db_path, "claim")
    assert claimed.exit_code == 0, claimed.output
    assert f"Task claimed: task_id={task_id} status=processing" in claimed.output
    assert "Secrets: api_key, token" in claimed.output
    assert '"k"' not in claimed.output

    assert "No open task to claim." in _invoke(runner, db_path, "claim").output

    heartbeat = _invoke(runner, db_path, "heartbeat", "--task-id", task_id)
    assert heartbeat.exit_code == 0, heartbeat.output

    logged = _invoke(
        runner,
        db_path,
        "log",
        "--task-id",
        task_id,
        "--message",
        "fetching",
        "--step-id",
        "fetch",
        "--step-status",
        "processing",
    )
    assert logged.exit_code == 0, logged.output

    completed = _invoke(
        runner,
        db_path,
        "complete",
        "--task-id",
        task_id,
        "--status",
        "completed",
        "--message",
        "All good",
    )
    assert completed.exit_code == 0, completed.output
    assert f"Task finalized: {task_id} status=completed" in completed.output

    events = _invoke(runner, db_path, "events", "--task-id", task_id, "--follow", "--timeout", "5")
    assert events.exit_code == 0, events.output
    assert "Events: 2" in events.output
    assert '"stepId": "fetch"' in events.output
    assert 'completion {"message": "All good"}' in events.output

    inspected = _invoke(runner, db_path, "inspect", "--task-id", task_id)
    assert inspected.exit_code == 0, inspected.output
    assert "Status: completed" in inspected.output
    assert "Created by: user:ops" in inspected.output
    assert 'Completion: {"message": "All good"}' in inspected.output

    listed = _invoke(runner, db_path, "list", "--status", "completed")
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 1" in listed.output
    assert task_id in listed.output


def test_cli_reports_store_errors_as_failures(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    missing = _invoke(runner, db_path, "inspect", "--task-id", "missing")
    assert missing.exit_code == 1
    assert "No task with id 'missing' found" in missing.output

    created = _invoke(runner, db_path, "create", "--spec", '{"template": "a"}')
    match = _TASK_ID_RE.search(created.output)
    assert match is not None
    task_id = match.group(1)

    premature = _invoke(
        runner,
        db_path,
        "complete",
        "--task-id",
        task_id,
        "--status",
        "failed",
    )
    assert premature.exit_code == 1
    assert "expected 'processing'" in premature.output

    not_running = _invoke(runner, db_path, "heartbeat", "--task-id", task_id)
    assert not_running.exit_code == 1
    assert "No running task" in not_running.output

    bad_spec = _invoke(runner, db_path, "create", "--spec", "[1, 2]")
    assert bad_spec.exit_code == 1
    assert "--spec must be a JSON object" in bad_spec.output


def test_cancel_then_shutdown_via_cli(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    created = _invoke(runner, db_path, "create", "--spec", '{"template": "a"}')
    match = _TASK_ID_RE.search(created.output)
    assert match is not None
    task_id = match.group(1)
    assert _invoke(runner, db_path, "claim").exit_code == 0

    cancelled = _invoke(runner, db_path, "cancel", "--task-id", task_id)
    assert cancelled.exit_code == 0, cancelled.output
    assert f"Cancellation requested: {task_id}" in cancelled.output

    shutdown = _invoke(runner, db_path, "shutdown", "--task-id", task_id)
    assert shutdown.exit_code == 0, shutdown.output
    assert f"Task shut down: {task_id} status=failed" in shutdown.output

    events = _invoke(runner, db_path, "events", "--task-id", task_id)
    assert "cancelled {\"message\": \"Cancelled by operator\"}" in events.output
    assert "completion" in events.output


def test_supervise_once_reports_summary(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _invoke(runner, db_path, "create", "--spec", '{"template": "a"}')
    assert _invoke(runner, db_path, "claim").exit_code == 0

    stale = _invoke(runner, db_path, "stale", "--timeout-seconds", "3600")
    assert stale.exit_code == 0, stale.output
    assert "Stale tasks (timeout=3600s): 0" in stale.output

    result = _invoke(runner, db_path, "supervise", "--once", "--stale-timeout-seconds", "3600")
    assert result.exit_code == 0, result.output
    assert "Supervisor summary: sweeps=1 stale=0 recovered=0 conflicts=0" in result.output


def test_stale_with_zero_timeout_is_not_replaced_by_default(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _invoke(runner, db_path, "create", "--spec", '{"template": "a"}')
    assert _invoke(runner, db_path, "claim").exit_code == 0

    stale = _invoke(runner, db_path, "stale", "--timeout-seconds", "0")

    assert stale.exit_code == 0, stale.output
    assert "Stale tasks (timeout=0s): 1" in stale.output
