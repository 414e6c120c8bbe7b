"""Task API endpoints — CRUD plus "run".

GET    /api/v1/tasks                — list (optional ?state=, ?project_id=, ?q=)
GET    /api/v1/tasks/grouped        — tasks grouped by lifecycle state
GET    /api/v1/tasks/{id}           — single task
POST   /api/v1/tasks                — create (issues the sequence code)
PUT    /api/v1/tasks/{id}           — edit (state is not editable)
DELETE /api/v1/tasks/{id}           — delete
POST   /api/v1/tasks/{id}/run       — submit to the execution API
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from taskmanager.api.v1.errors import to_http_exception
from taskmanager.db.store import TaskStore
from taskmanager.middleware.auth import current_user_id
from taskmanager.models.task import TASK_STATES, Task
from taskmanager.runs.errors import TaskManagerError
from taskmanager.runs.lifecycle import IllegalTransitionError
from taskmanager.runs.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["tasks"])

_STATE_PATTERN = r"^(draft|pending|running|complete|failed)$"
_PRIORITY_PATTERN = r"^(low|medium|high)$"

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


class CreateTaskRequest(BaseModel):
    """Request to create a task in a project."""

    title: str = Field(min_length=1, max_length=500)
    description: str = Field(default="", max_length=20000)
    project_id: str
    priority: str = Field(default="medium", pattern=_PRIORITY_PATTERN)
    agent_id: str | None = None
    tags: list[str] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    """Request to edit a task. All fields optional."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=20000)
    priority: str | None = Field(default=None, pattern=_PRIORITY_PATTERN)
    agent_id: str | None = None
    tags: list[str] | None = None
    state: str | None = Field(default=None, pattern=_STATE_PATTERN)


class TaskResponse(BaseModel):
    id: str
    sequence_code: str
    title: str
    description: str
    state: str
    priority: str
    project_id: str
    agent_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    remote_job_id: str | None = None
    branch_name: str | None = None
    created_at: datetime
    updated_at: datetime


def _to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        sequence_code=task.sequence_code,
        title=task.title,
        description=task.description,
        state=task.state,
        priority=task.priority,
        project_id=task.project_id,
        agent_id=task.agent_id,
        tags=task.tags or [],
        remote_job_id=task.remote_job_id,
        branch_name=task.branch_name,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _get_task(store: TaskStore, task_id: str, user_id: str) -> Task:
    task = store.get_task(task_id, user_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return task


def _check_assignable_agent(store: TaskStore, agent_id: str, user_id: str) -> None:
    agent = store.get_agent(agent_id, user_id)
    if agent is None or agent.archived:
        raise HTTPException(status_code=422, detail=f"Agent not available: {agent_id}")


# === Endpoints ===


@router.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(
    state: str | None = Query(default=None, pattern=_STATE_PATTERN),
    project_id: str | None = None,
    q: str | None = Query(default=None, max_length=200),
    user_id: str = Depends(current_user_id),
) -> list[TaskResponse]:
    """List the caller's tasks, newest first."""
    tasks = _get_store().list_tasks(user_id, state=state, project_id=project_id, query=q)
    return [_to_response(t) for t in tasks]


@router.get("/tasks/grouped", response_model=dict[str, list[TaskResponse]])
async def list_tasks_grouped(
    project_id: str | None = None,
    user_id: str = Depends(current_user_id),
) -> dict[str, list[TaskResponse]]:
    """Tasks grouped by state, in lifecycle order; empty groups are omitted."""
    tasks = _get_store().list_tasks(user_id, project_id=project_id)
    grouped: dict[str, list[TaskResponse]] = {}
    for state in TASK_STATES:
        members = [_to_response(t) for t in tasks if t.state == state]
        if members:
            grouped[state] = members
    return grouped


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, user_id: str = Depends(current_user_id)) -> TaskResponse:
    return _to_response(_get_task(_get_store(), task_id, user_id))


@router.post("/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    request: CreateTaskRequest,
    user_id: str = Depends(current_user_id),
) -> TaskResponse:
    """Create a draft task; its code is the project key plus the next counter value."""
    store = _get_store()
    project = store.get_project(request.project_id, user_id)
    if project is None or project.archived:
        raise HTTPException(status_code=422, detail=f"Project not available: {request.project_id}")
    if request.agent_id:
        _check_assignable_agent(store, request.agent_id, user_id)

    try:
        task = store.create_task(
            user_id,
            project,
            title=request.title,
            description=request.description,
            priority=request.priority,
            agent_id=request.agent_id,
            tags=request.tags,
        )
    except TaskManagerError as e:
        raise to_http_exception(e) from e
    logger.info("Created task %s in project %s", task.sequence_code, project.key)
    return _to_response(task)


@router.put("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    request: UpdateTaskRequest,
    user_id: str = Depends(current_user_id),
) -> TaskResponse:
    """Edit a task. Its state only changes through runs and polling."""
    store = _get_store()
    current = _get_task(store, task_id, user_id)
    changes = request.model_dump(exclude_unset=True)
    if changes.get("agent_id") and changes["agent_id"] != current.agent_id:
        _check_assignable_agent(store, changes["agent_id"], user_id)

    try:
        task = store.update_task(task_id, user_id, changes)
    except (TaskManagerError, IllegalTransitionError) as e:
        raise to_http_exception(e) from e
    return _to_response(task)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, user_id: str = Depends(current_user_id)) -> None:
    """Delete a task. A remote job it started is not cancelled."""
    if not _get_store().delete_task(task_id, user_id):
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")


@router.post("/tasks/{task_id}/run", response_model=TaskResponse)
async def run_task(task_id: str, user_id: str = Depends(current_user_id)) -> TaskResponse:
    """Submit a task to the execution API; it becomes pending and is polled."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Run orchestrator not initialized.")
    task = _get_task(_get_store(), task_id, user_id)
    try:
        updated = await _orchestrator.run_task(task)
    except (TaskManagerError, IllegalTransitionError) as e:
        logger.warning("Run of task %s rejected: %s", task.sequence_code, e)
        raise to_http_exception(e, action="Task run") from e
    return _to_response(updated)
