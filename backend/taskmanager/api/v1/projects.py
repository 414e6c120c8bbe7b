"""Project API endpoints — CRUD, archive, and project-level runs.

GET    /api/v1/projects                 — list (archived hidden unless ?include_archived=true)
GET    /api/v1/projects/{id}            — single project
POST   /api/v1/projects                 — create (key suggested from the name if omitted)
PUT    /api/v1/projects/{id}            — edit (key is immutable)
DELETE /api/v1/projects/{id}            — archive
POST   /api/v1/projects/{id}/run        — fan the key files out into remote subtasks
GET    /api/v1/projects/{id}/runs       — project runs, newest first
GET    /api/v1/project-runs/{run_id}    — one project run with its subtasks
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from taskmanager.api.v1.errors import to_http_exception
from taskmanager.db.store import TaskStore
from taskmanager.middleware.auth import current_user_id
from taskmanager.models.project import PROJECT_KEY_PATTERN, Project, suggest_project_key
from taskmanager.models.run import ProjectRunView
from taskmanager.runs.errors import TaskManagerError
from taskmanager.runs.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["projects"])

# Module-level references, set by main.py at startup
_store: TaskStore | None = None
_orchestrator: RunOrchestrator | None = None


def set_dependencies(store: TaskStore, orchestrator: RunOrchestrator | None = None) -> None:
    """Wire up dependencies (called from main.py lifespan)."""
    global _store, _orchestrator
    _store = store
    _orchestrator = orchestrator


def _get_store() -> TaskStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Task store not initialized.")
    return _store


# === Request / Response Models ===


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    key: str | None = Field(default=None, pattern=PROJECT_KEY_PATTERN)
    description: str | None = Field(default=None, max_length=5000)
    repository_url: str | None = Field(default=None, max_length=500)
    key_files: str | None = Field(default=None, max_length=20000)


class UpdateProjectRequest(BaseModel):
    """Editable project fields. The key is fixed at creation and rejected here."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    repository_url: str | None = Field(default=None, max_length=500)
    key_files: str | None = Field(default=None, max_length=20000)


class ProjectResponse(BaseModel):
    id: str
    name: str
    key: str
    description: str | None = None
    repository_url: str | None = None
    key_files: str | None = None
    archived: bool
    created_at: datetime
    updated_at: datetime


def _to_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        key=project.key,
        description=project.description,
        repository_url=project.repository_url,
        key_files=project.key_files,
        archived=project.archived,
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def _get_project(store: TaskStore, project_id: str, user_id: str) -> Project:
    project = store.get_project(project_id, user_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


# === Endpoints ===


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(
    include_archived: bool = False,
    user_id: str = Depends(current_user_id),
) -> list[ProjectResponse]:
    projects = _get_store().list_projects(user_id, include_archived=include_archived)
    return [_to_response(p) for p in projects]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, user_id: str = Depends(current_user_id)) -> ProjectResponse:
    return _to_response(_get_project(_get_store(), project_id, user_id))


@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: CreateProjectRequest,
    user_id: str = Depends(current_user_id),
) -> ProjectResponse:
    """Create a project. Without an explicit key, one is derived from the name."""
    key = request.key or suggest_project_key(request.name)
    if not key:
        raise HTTPException(
            status_code=422,
            detail="Project key required: the name has fewer than two letters to derive one from.",
        )
    project = _get_store().create_project(
        user_id,
        name=request.name,
        key=key,
        description=request.description,
        repository_url=request.repository_url,
        key_files=request.key_files,
    )
    logger.info("Created project %s (%s)", project.key, project.id)
    return _to_response(project)


@router.put("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    user_id: str = Depends(current_user_id),
) -> ProjectResponse:
    store = _get_store()
    _get_project(store, project_id, user_id)
    try:
        project = store.update_project(project_id, user_id, request.model_dump(exclude_unset=True))
    except TaskManagerError as e:
        raise to_http_exception(e) from e
    return _to_response(project)


@router.delete("/projects/{project_id}", response_model=ProjectResponse)
async def archive_project(project_id: str, user_id: str = Depends(current_user_id)) -> ProjectResponse:
    """Archive a project. Its tasks keep referring to it."""
    store = _get_store()
    _get_project(store, project_id, user_id)
    return _to_response(store.archive_project(project_id, user_id))


@router.post("/projects/{project_id}/run", response_model=ProjectRunView, status_code=201)
async def run_project(project_id: str, user_id: str = Depends(current_user_id)) -> ProjectRunView:
    """Start a project-level run: one remote subtask per key file."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Run orchestrator not initialized.")
    project = _get_project(_get_store(), project_id, user_id)
    try:
        return await _orchestrator.run_project(project)
    except TaskManagerError as e:
        logger.warning("Run of project %s rejected: %s", project.key, e)
        raise to_http_exception(e, action="Project run") from e


@router.get("/projects/{project_id}/runs", response_model=list[ProjectRunView])
async def list_project_runs(
    project_id: str,
    user_id: str = Depends(current_user_id),
) -> list[ProjectRunView]:
    store = _get_store()
    _get_project(store, project_id, user_id)
    return store.list_project_runs(project_id, user_id)


@router.get("/project-runs/{run_id}", response_model=ProjectRunView)
async def get_project_run(run_id: str, user_id: str = Depends(current_user_id)) -> ProjectRunView:
    run = _get_store().get_project_run(run_id, user_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Project run not found: {run_id}")
    return run
