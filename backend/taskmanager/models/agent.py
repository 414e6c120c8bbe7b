"""Agent model — a named external worker that tasks can be assigned to."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import SQLModel
from sqlmodel import Field as SQLField


class Agent(SQLModel, table=True):
    __tablename__ = "agent"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    name: str
    url: str
    description: str | None = None
    archived: bool = False
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
