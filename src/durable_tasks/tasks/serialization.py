"""JSON boundary for payloads stored in text columns."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from durable_tasks.tasks.errors import TaskCorruptionError


def encode_object(value: Mapping[str, Any], *, what: str) -> str:
    """Serialize a JSON object for storage."""

    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object, got {type(value).__name__}")
    try:
        return json.dumps(dict(value), ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as error:
        raise ValueError(f"{what} is not JSON serializable: {error}") from error


def encode_optional_object(value: Mapping[str, Any] | None, *, what: str) -> str | None:
    if value is None:
        return None
    return encode_object(value, what=what)


def decode_object(raw: str, *, context: str) -> dict[str, Any]:
    """Parse a stored JSON object, raising ``TaskCorruptionError`` on bad data."""

    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as error:
        raise TaskCorruptionError(f"Failed to parse {context}, {error}") from error
    if not isinstance(parsed, dict):
        raise TaskCorruptionError(
            f"Failed to parse {context}, expected a JSON object, got {type(parsed).__name__}",
        )
    return parsed


def decode_optional_object(raw: str | None, *, context: str) -> dict[str, Any] | None:
    # Empty text is treated like NULL, as older writers stored it.
    if not raw:
        return None
    return decode_object(raw, context=context)
