"""Task Manager FastAPI Application.

Entry point for the backend server. Run with:
    uvicorn taskmanager.main:app --app-dir backend
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskmanager.api.health import router as health_router
from taskmanager.api.health import set_schedulers
from taskmanager.api.v1.agents import router as agents_router
from taskmanager.api.v1.agents import set_store as set_agents_store
from taskmanager.api.v1.projects import router as projects_router
from taskmanager.api.v1.projects import set_dependencies as set_project_deps
from taskmanager.api.v1.sse import router as sse_router
from taskmanager.api.v1.sse import sse_hub
from taskmanager.api.v1.tasks import router as tasks_router
from taskmanager.api.v1.tasks import set_dependencies as set_task_deps
from taskmanager.config import settings
from taskmanager.db.database import create_db_and_tables
from taskmanager.db.database import engine as db_engine
from taskmanager.db.store import TaskStore
from taskmanager.middleware.auth import APIKeyAuthMiddleware
from taskmanager.runs.client import ExecutionClient
from taskmanager.runs.orchestrator import RunOrchestrator
from taskmanager.runs.scheduler import ProjectPollRegistry, TaskPollScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    create_db_and_tables()

    store = TaskStore(db_engine)
    client = ExecutionClient()
    project_pollers = ProjectPollRegistry(
        store=store,
        client=client,
        hub=sse_hub,
        interval_seconds=settings.poll_interval_seconds,
        enabled=settings.project_poll_enabled,
    )
    orchestrator = RunOrchestrator(store, client, project_pollers, hub=sse_hub)
    task_poller = TaskPollScheduler(
        store=store,
        client=client,
        hub=sse_hub,
        interval_seconds=settings.poll_interval_seconds,
        enabled=settings.task_poll_enabled,
    )

    # Wire up API modules
    set_task_deps(store, orchestrator)
    set_project_deps(store, orchestrator)
    set_agents_store(store)
    set_schedulers(task_poller, project_pollers)

    await task_poller.start()
    await project_pollers.resume_active()
    logger.info("Task Manager started (execution API: %s)", settings.execution_api_url)

    yield

    # Shutdown: cancel every poll loop, then close event streams
    task_poller.stop()
    project_pollers.stop_all()
    await sse_hub.disconnect_all()


app = FastAPI(
    title="Task Manager",
    description="Projects, agents and tasks run against a remote code-generation service",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (order matters: first added = outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id"],
)
app.add_middleware(APIKeyAuthMiddleware)


# Global exception handler: internal details never leak to clients
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# Routes
app.include_router(health_router)
app.include_router(sse_router)
app.include_router(projects_router)
app.include_router(agents_router)
app.include_router(tasks_router)


@app.get("/")
async def root():
    return {"name": "Task Manager", "version": "0.1.0", "status": "running"}
