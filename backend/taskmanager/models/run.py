"""Project run models.

Includes: ProjectRun + ProjectSubtask (SQL tables), ProjectRunView (Pydantic).

A project run fans out into one subtask per key file on the execution API.
Runs are persisted so polling can pick them up again after a restart; the
aggregate "all subtasks terminal" is recomputed from the subtask rows on every
poll tick.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import SQLModel
from sqlmodel import Field as SQLField

ProjectRunStatus = Literal["active", "retired"]
RemoteStatus = Literal["pending", "running", "completed", "failed", "unknown"]

INITIAL_SUBTASK_DESCRIPTION = "Initializing..."


class ProjectRun(SQLModel, table=True):
    """One project-level run on the execution API."""

    __tablename__ = "project_run"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    project_id: str = SQLField(index=True)
    remote_project_id: str = SQLField(index=True)  # correlation id
    status: str = "active"  # ProjectRunStatus
    remote_created_at: str | None = None
    remote_updated_at: str | None = None
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class ProjectSubtask(SQLModel, table=True):
    """A per-file unit of work spawned by a project run."""

    __tablename__ = "project_subtask"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    run_id: str = SQLField(index=True)
    subtask_id: str                 # remote task id
    position: int = 0
    status: str = "pending"         # RemoteStatus
    description: str = INITIAL_SUBTASK_DESCRIPTION
    branch_name: str = ""


class SubtaskView(BaseModel):
    subtask_id: str
    status: str
    description: str
    branch_name: str = ""


class ProjectRunView(BaseModel):
    """A project run with its ordered subtasks, as served to the dashboard."""

    id: str
    project_id: str
    remote_project_id: str
    status: str
    remote_created_at: str | None = None
    remote_updated_at: str | None = None
    created_at: datetime
    updated_at: datetime
    subtasks: list[SubtaskView] = Field(default_factory=list)
