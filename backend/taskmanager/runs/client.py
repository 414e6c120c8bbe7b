"""Execution API client.

Submits task and project jobs to the external code-generation service and
reads back their status. Calls never touch local state: they return parsed
results or raise RemoteUnavailable / RemoteRejected / InvalidInput.

Endpoints:
  POST /api/tasks                       → {task_id, branch_name?}
  GET  /api/tasks/{task_id}             → {status, branch_name?}
  POST /api/project-tasks               → {project_id, subtask_ids}
  GET  /api/project-tasks/{project_id}  → {project_id, created_at, updated_at, subtasks}

No retries here: the poll schedulers retry implicitly on their next tick.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from taskmanager.config import settings
from taskmanager.models.run import SubtaskView
from taskmanager.models.task import Task
from taskmanager.runs.errors import InvalidInput, RemoteRejected, RemoteUnavailable

logger = logging.getLogger(__name__)

REMOTE_STATUSES = frozenset({"pending", "running", "completed", "failed"})
UNKNOWN_STATUS = "unknown"


class TaskSubmission(BaseModel):
    remote_job_id: str
    branch_name: str | None = None


class ProjectSubmission(BaseModel):
    remote_project_id: str
    subtask_ids: list[str] = Field(default_factory=list)


class TaskStatus(BaseModel):
    status: str  # pending | running | completed | failed | unknown
    branch_name: str | None = None


class ProjectStatus(BaseModel):
    subtasks: list[SubtaskView] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


def normalize_remote_status(raw: Any) -> str:
    """Keep the known remote vocabulary; everything else is "unknown"."""
    return raw if raw in REMOTE_STATUSES else UNKNOWN_STATUS


def repository_name(repository_url: str) -> str:
    """Last path segment of a repository URL ("https://github.com/o/repo" → "repo")."""
    return repository_url.rstrip("/").split("/")[-1]


class ExecutionClient:
    """Async client for the execution API.

    Usage:
        client = ExecutionClient()
        submission = await client.submit_task(task, "https://github.com/acme/api")
        status = await client.get_task_status(submission.remote_job_id)
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self.base_url = (base_url or settings.execution_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.execution_api_timeout
        self._headers = {"Accept": "application/json"}

    async def submit_task(self, task: Task, repository_url: str) -> TaskSubmission:
        """Start a remote job for a single task."""
        body = {
            "task_description": f"{task.sequence_code} {task.title}",
            "detailed_description": task.description,
            "repo_url": repository_url,
            "repo_name": repository_name(repository_url),
        }
        data = await self._request("POST", "/api/tasks", json=body)
        task_id = data.get("task_id")
        if not task_id:
            raise RemoteRejected("Execution API response missing task_id")
        return TaskSubmission(remote_job_id=str(task_id), branch_name=data.get("branch_name") or None)

    async def submit_project(self, description: str, key_files: list[str]) -> ProjectSubmission:
        """Start a project run that fans out into one subtask per key file."""
        if not key_files:
            raise InvalidInput("No key files specified")
        body = {"project_description": description, "key_files": list(key_files)}
        data = await self._request("POST", "/api/project-tasks", json=body)
        project_id = data.get("project_id")
        if not project_id:
            raise RemoteRejected("Execution API response missing project_id")
        return ProjectSubmission(
            remote_project_id=str(project_id),
            subtask_ids=[str(s) for s in data.get("subtask_ids") or []],
        )

    async def get_task_status(self, remote_job_id: str) -> TaskStatus:
        data = await self._request("GET", f"/api/tasks/{remote_job_id}")
        return TaskStatus(
            status=normalize_remote_status(data.get("status")),
            branch_name=data.get("branch_name") or None,
        )

    async def get_project_status(self, remote_project_id: str) -> ProjectStatus:
        data = await self._request("GET", f"/api/project-tasks/{remote_project_id}")
        subtasks = [
            SubtaskView(
                subtask_id=str(s.get("task_id", "")),
                status=normalize_remote_status(s.get("status")),
                description=s.get("task_description") or "",
                branch_name=s.get("branch_name") or "",
            )
            for s in data.get("subtasks") or []
        ]
        return ProjectStatus(
            subtasks=subtasks,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        """Send one request and return the decoded JSON object.

        Raises:
            RemoteUnavailable: On connection errors and timeouts.
            RemoteRejected: On non-2xx responses or a non-object JSON body.
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, json=json, headers=self._headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Execution API %s %s returned %d", method, path, status)
            raise RemoteRejected(
                f"Execution API error: {status} {e.response.reason_phrase}",
                status_code=status,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Execution API %s %s unreachable: %s", method, path, e)
            raise RemoteUnavailable(f"Execution API unreachable: {e}") from e
        except ValueError as e:
            raise RemoteRejected(f"Execution API returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise RemoteRejected("Execution API returned a non-object body")
        return data
