"""Console logging configuration for the CLI."""

from __future__ import annotations

import logging
import sys


class _ConsoleNoiseFilter(logging.Filter):
    """Keep our own records, only warnings and above from third parties."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("durable_tasks"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(level: str | int = logging.INFO) -> None:
    """Install a single stderr handler on the root logger.

    Repeated calls replace the handler installed earlier instead of stacking
    duplicates; handlers added by other code are left alone.
    """

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_durable_tasks_console", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ),
    )
    handler.addFilter(_ConsoleNoiseFilter())
    handler._durable_tasks_console = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    logging.captureWarnings(True)
