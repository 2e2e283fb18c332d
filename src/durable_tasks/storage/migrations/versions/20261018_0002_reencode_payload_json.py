"""Re-encode stored task payloads in place as canonical JSON text.

Earlier writers stored ``spec``, ``secrets`` and event ``body`` as opaque text.
This one-time pass validates every payload and rewrites it in the canonical
encoding the store now reads. Rows that are not valid JSON abort the upgrade
so they can be repaired by hand; nothing is partially rewritten.
"""

from __future__ import annotations

import json

import sqlalchemy as sa

from alembic import context, op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None

_PAYLOAD_COLUMNS = {
    "tasks": ("spec", "secrets"),
    "task_events": ("body",),
}
_MAX_REPORTED_ROWS = 20


def upgrade() -> None:
    bind = op.get_bind()
    pending: list[tuple[sa.TableClause, object, dict[str, str]]] = []
    corrupt: list[str] = []

    for table_name, columns in _PAYLOAD_COLUMNS.items():
        table = sa.table(table_name, sa.column("id"), *(sa.column(name) for name in columns))
        for row in bind.execute(sa.select(table)).mappings():
            changes: dict[str, str] = {}
            for name in columns:
                raw = row[name]
                if raw is None:
                    continue
                try:
                    canonical = _canonical_json(raw)
                except ValueError:
                    corrupt.append(f"{table_name}.{name}@{row['id']}")
                    continue
                if canonical != raw:
                    changes[name] = canonical
            if changes:
                pending.append((table, row["id"], changes))

    if corrupt:
        shown = ", ".join(corrupt[:_MAX_REPORTED_ROWS])
        more = len(corrupt) - _MAX_REPORTED_ROWS
        suffix = f" (+{more} more)" if more > 0 else ""
        raise RuntimeError(f"Cannot re-encode payloads that are not valid JSON: {shown}{suffix}")

    for table, row_id, changes in pending:
        bind.execute(sa.update(table).where(table.c.id == row_id).values(**changes))


def downgrade() -> None:
    x_args = context.get_x_argument(as_dictionary=True)
    if x_args.get("allow_irreversible", "").strip().lower() != "true":
        raise RuntimeError(
            "Payload re-encoding cannot be reverted; "
            "pass -x allow_irreversible=true to step over it without changes.",
        )


def _canonical_json(raw: str) -> str:
    return json.dumps(json.loads(raw), ensure_ascii=False, sort_keys=True)
