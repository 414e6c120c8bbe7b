"""Database setup — SQLite with WAL mode via SQLModel/SQLAlchemy.

What goes where:
- Task, Project, Agent: dashboard records, always scoped by user_id
- TaskCounter: per-project sequence counter behind task codes (ABC-001)
- ProjectRun, ProjectSubtask: persisted project-level runs, so polling
  resumes after a restart
"""

from __future__ import annotations

import os
from sqlmodel import SQLModel, create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine

from taskmanager.config import settings


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


# Enable WAL mode for all SQLite connections
@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode so poll writes don't block dashboard reads."""
    if not type(dbapi_connection).__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA busy_timeout=5000")    # 5s wait on lock
    cursor.close()


engine = create_engine(
    get_database_url(),
    echo=False,
    connect_args={"check_same_thread": False},  # Required for SQLite + async
)


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables defined by SQLModel metadata."""
    # Import table models so SQLModel metadata registers them
    from taskmanager.models import agent, project, run, task  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)

