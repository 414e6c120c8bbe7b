"""Server-sent event schema for dashboard updates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

EventType = Literal[
    "task.run_started",
    "task.updated",
    "project_run.started",
    "project_run.updated",
    "project_run.retired",
]


class RunEvent(BaseModel):
    """Schema for all Server-Sent Events."""

    event_type: EventType
    user_id: str | None = None  # owner; None = deliver to every subscriber
    task_id: str | None = None
    run_id: str | None = None
    payload: dict = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
