"""Project model."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import SQLModel
from sqlmodel import Field as SQLField

PROJECT_KEY_PATTERN = r"^[A-Z][A-Z0-9]{1,5}$"
_KEY_RE = re.compile(PROJECT_KEY_PATTERN)


class Project(SQLModel, table=True):
    """A unit of ownership for tasks, optionally linked to a repository."""

    __tablename__ = "project"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    name: str
    key: str                        # 2-6 uppercase chars, immutable after creation
    description: str | None = None
    repository_url: str | None = None
    key_files: str | None = None    # newline/comma-separated manifest
    archived: bool = False
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


def is_valid_project_key(key: str) -> bool:
    return bool(_KEY_RE.match(key))


def suggest_project_key(name: str) -> str:
    """Derive a key from a project name: letters only, uppercased, first three.

    Returns "" when the name has fewer than two letters; callers must then
    ask for an explicit key.
    """
    letters = re.sub(r"[^a-zA-Z]", "", name).upper()[:3]
    return letters if len(letters) >= 2 else ""
