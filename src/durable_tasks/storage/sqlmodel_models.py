"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_status", "status"),
        Index("idx_tasks_created_by", "created_by"),
        Index("idx_tasks_liveness", "status", "last_heartbeat_at"),
    )

    id: str = Field(primary_key=True)
    spec: str = Field(sa_column=Column(Text, nullable=False))
    status: str
    last_heartbeat_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_by: str | None = None
    secrets: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


class TaskEventRow(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_seq", "task_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    body: str = Field(sa_column=Column(Text, nullable=False))
    event_type: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
