"""Shared test fixtures for Task Manager backend tests."""

import os
import sys
from unittest.mock import AsyncMock

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")

from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from taskmanager.db.database import create_db_and_tables
from taskmanager.db.store import TaskStore
from taskmanager.runs.client import (
    ExecutionClient,
    ProjectStatus,
    ProjectSubmission,
    TaskStatus,
    TaskSubmission,
)

USER = "user-1"


@pytest.fixture
def store():
    """TaskStore over a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    return TaskStore(engine)


@pytest.fixture
def project(store):
    """A project with a repository and a three-file manifest."""
    return store.create_project(
        USER,
        name="Acme API",
        key="ABC",
        description="Backend for Acme",
        repository_url="https://github.com/acme/api",
        key_files="a.py,b.py\nc.py",
    )


@pytest.fixture
def bare_project(store):
    """A project without a repository URL or key files."""
    return store.create_project(USER, name="Scratch", key="SCR")


@pytest.fixture
def mock_client():
    """ExecutionClient double with canned successful responses."""
    client = AsyncMock(spec=ExecutionClient)
    client.submit_task.return_value = TaskSubmission(remote_job_id="X1")
    client.submit_project.return_value = ProjectSubmission(
        remote_project_id="P1", subtask_ids=["s1", "s2"]
    )
    client.get_task_status.return_value = TaskStatus(status="pending")
    client.get_project_status.return_value = ProjectStatus(subtasks=[])
    return client


@pytest.fixture
def api(store, mock_client):
    """TestClient over the v1 routers (no middleware), acting as USER."""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from taskmanager.api.v1 import agents, projects, tasks
    from taskmanager.runs.orchestrator import RunOrchestrator

    orchestrator = RunOrchestrator(store, mock_client)
    tasks.set_dependencies(store, orchestrator)
    projects.set_dependencies(store, orchestrator)
    agents.set_store(store)

    test_app = FastAPI()
    test_app.include_router(projects.router)
    test_app.include_router(agents.router)
    test_app.include_router(tasks.router)
    return TestClient(test_app, headers={"X-User-Id": USER})
