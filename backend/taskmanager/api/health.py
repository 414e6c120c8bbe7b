"""Health check endpoint.

Checks: SQLite DB, execution API configuration, poll schedulers.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from taskmanager.config import settings
from taskmanager.runs.scheduler import ProjectPollRegistry, TaskPollScheduler

router = APIRouter()

VERSION = "0.1.0"

# Set by main.py at startup
_task_poller: TaskPollScheduler | None = None
_project_pollers: ProjectPollRegistry | None = None


def set_schedulers(
    task_poller: TaskPollScheduler | None = None,
    project_pollers: ProjectPollRegistry | None = None,
) -> None:
    """Wire up the schedulers reported on (called from main.py lifespan)."""
    global _task_poller, _project_pollers
    _task_poller = task_poller
    _project_pollers = project_pollers


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    dependencies: dict[str, str]  # Simplified view for frontend
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Check the database, execution API settings, and schedulers."""
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. Database
    try:
        from sqlalchemy import text

        from taskmanager.db.database import engine

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        checks["database"] = {"status": "ok", "detail": engine.url.get_backend_name()}
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)}
        overall_healthy = False

    # 2. Execution API (config only; never called from a health check)
    if settings.execution_api_url:
        checks["execution_api"] = {"status": "ok", "detail": settings.execution_api_url}
    else:
        checks["execution_api"] = {"status": "error", "detail": "EXECUTION_API_URL not set"}
        overall_healthy = False

    # 3. Task poller
    if _task_poller is None:
        checks["task_poller"] = {"status": "warning", "detail": "not initialized"}
        has_warning = True
    else:
        poller = _task_poller.get_status()
        if poller["running"]:
            checks["task_poller"] = {"status": "ok", "detail": f"every {poller['interval_seconds']}s"}
        elif not poller["enabled"]:
            checks["task_poller"] = {"status": "disabled", "detail": "set TASK_POLL_ENABLED=true"}
        else:
            checks["task_poller"] = {"status": "warning", "detail": "not running"}
            has_warning = True

    # 4. Project run pollers (informational)
    if _project_pollers is not None:
        pollers = _project_pollers.get_status()
        checks["project_pollers"] = {
            "status": "ok" if pollers["enabled"] else "disabled",
            "detail": f"{pollers['active_runs']} active run(s)",
        }

    dependencies = {name: check["status"] for name, check in checks.items()}

    if overall_healthy:
        status = "degraded" if has_warning else "healthy"
    else:
        status = "unhealthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )
