"""Task models.

Includes: Task (SQL table), TaskCounter (SQL table), lifecycle literals.

A task's sequence code (e.g. "ABC-007") is issued from TaskCounter, one row
per project, incremented inside the same write transaction that reads it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

TaskState = Literal["draft", "pending", "running", "complete", "failed"]
TaskPriority = Literal["low", "medium", "high"]

TASK_STATES: tuple[str, ...] = ("draft", "pending", "running", "complete", "failed")
IN_FLIGHT_STATES = frozenset({"pending", "running"})
TERMINAL_TASK_STATES = frozenset({"complete", "failed"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(SQLModel, table=True):
    """A unit of work tied to one project, optionally assigned to an agent."""

    __tablename__ = "task"
    __table_args__ = (UniqueConstraint("project_id", "sequence_code", name="uq_task_project_code"),)

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    project_id: str = SQLField(index=True)
    sequence_code: str              # "<project key>-<zero-padded counter>"
    title: str
    description: str = ""
    state: str = "draft"            # TaskState
    priority: str = "medium"        # TaskPriority
    agent_id: str | None = None
    tags: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    remote_job_id: str | None = SQLField(default=None, index=True)  # correlation id
    branch_name: str | None = None
    created_at: datetime = SQLField(default_factory=_utcnow)
    updated_at: datetime = SQLField(default_factory=_utcnow)


class TaskCounter(SQLModel, table=True):
    """Last issued task sequence number for a project."""

    __tablename__ = "task_counter"

    project_id: str = SQLField(primary_key=True)
    last_value: int = 0


def format_sequence_code(project_key: str, number: int) -> str:
    """Build a task code: project key plus a counter padded to three digits."""
    return f"{project_key}-{number:03d}"


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Trim, drop empties, and deduplicate tags (first occurrence wins)."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        cleaned = tag.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)
