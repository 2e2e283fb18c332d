from __future__ import annotations

import logging

import allure

from durable_tasks.logging_setup import setup_logging

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Configuration"),
]


def _console_handlers() -> list[logging.Handler]:
    return [
        handler
        for handler in logging.getLogger().handlers
        if getattr(handler, "_durable_tasks_console", False)
    ]


def test_setup_logging_installs_one_filtered_handler() -> None:
    root = logging.getLogger()
    previous_level = root.level
    try:
        setup_logging("DEBUG")
        setup_logging("INFO")

        handlers = _console_handlers()
        assert len(handlers) == 1
        assert root.level == logging.INFO

        own = logging.LogRecord("durable_tasks.tasks", logging.INFO, __file__, 1, "x", None, None)
        noisy = logging.LogRecord("sqlalchemy.engine", logging.INFO, __file__, 1, "x", None, None)
        loud = logging.LogRecord("alembic", logging.WARNING, __file__, 1, "x", None, None)
        assert handlers[0].filter(own)
        assert not handlers[0].filter(noisy)
        assert handlers[0].filter(loud)
    finally:
        for handler in _console_handlers():
            root.removeHandler(handler)
        root.setLevel(previous_level)
        logging.captureWarnings(False)
