"""Run orchestrator — "run task" and "run project" entry points.

run_task:
  1. project has a repository URL, task is not complete (else no remote call)
  2. submit the job to the execution API
  3. persist {remote_job_id, state: pending, branch_name} in one write
     → from here the task poll scheduler picks it up on its next tick

run_project:
  1. project has a repository URL and a non-empty key-file manifest
  2. submit the project to the execution API
  3. persist an active ProjectRun with one "Initializing..." subtask per id
  4. start a ProjectPollScheduler for the run

Any failure aborts the attempt before local state changes and is raised to
the caller, so the user is told the run did not start.
"""

from __future__ import annotations

import logging
import re

from taskmanager.api.v1.sse import SSEHub
from taskmanager.db.store import TaskStore
from taskmanager.models.project import Project
from taskmanager.models.run import ProjectRunView
from taskmanager.models.task import Task
from taskmanager.runs import lifecycle
from taskmanager.runs.client import ExecutionClient
from taskmanager.runs.errors import InvalidInput, StoreWriteFailed
from taskmanager.runs.lifecycle import IllegalTransitionError
from taskmanager.runs.scheduler import ProjectPollRegistry

logger = logging.getLogger(__name__)

_MANIFEST_SEPARATORS = re.compile(r"[\n,]")


def parse_key_files(manifest: str | None) -> list[str]:
    """Split a key-file manifest on newlines or commas.

    Pieces are trimmed and empty ones dropped; order is preserved.
    "a.py,b.py\\nc.py" → ["a.py", "b.py", "c.py"]
    """
    if not manifest:
        return []
    pieces = (piece.strip() for piece in _MANIFEST_SEPARATORS.split(manifest))
    return [piece for piece in pieces if piece]


class RunOrchestrator:
    """Starts remote runs and hands them over to polling.

    Usage:
        orchestrator = RunOrchestrator(store, ExecutionClient(), pollers, hub=sse_hub)
        task = await orchestrator.run_task(task)
        run = await orchestrator.run_project(project)
    """

    def __init__(
        self,
        store: TaskStore,
        client: ExecutionClient,
        project_pollers: ProjectPollRegistry | None = None,
        hub: SSEHub | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.project_pollers = project_pollers
        self.hub = hub

    async def run_task(self, task: Task) -> Task:
        """Submit a task to the execution API and mark it pending.

        Raises:
            InvalidInput: The task's project has no repository URL.
            IllegalTransitionError: The task is already complete.
            RemoteUnavailable / RemoteRejected: The execution API call failed.
            StoreWriteFailed: The started run could not be persisted.
        """
        project = self.store.get_project(task.project_id, task.user_id)
        if project is None:
            raise InvalidInput(f"Task {task.sequence_code} has no project")
        if not (project.repository_url or "").strip():
            raise InvalidInput(f"Project {project.key} has no repository URL")
        if not lifecycle.can_run(task.state):
            raise IllegalTransitionError(task.state, "pending", "run")

        submission = await self.client.submit_task(task, project.repository_url.strip())
        logger.info(
            "Task %s submitted as remote job %s", task.sequence_code, submission.remote_job_id
        )

        try:
            updated = self.store.record_task_run(
                task.id,
                task.user_id,
                remote_job_id=submission.remote_job_id,
                branch_name=submission.branch_name,
            )
        except (StoreWriteFailed, IllegalTransitionError):
            logger.error(
                "Remote job %s started but task %s could not be updated",
                submission.remote_job_id, task.id,
            )
            raise

        if self.hub is not None:
            await self.hub.publish(
                "task.run_started",
                user_id=updated.user_id,
                task_id=updated.id,
                payload={
                    "state": updated.state,
                    "remote_job_id": updated.remote_job_id,
                    "branch_name": updated.branch_name,
                },
            )
        return updated

    async def run_project(self, project: Project) -> ProjectRunView:
        """Fan a project out into per-file subtasks and start polling them.

        Raises:
            InvalidInput: No repository URL, or the key-file manifest is empty.
            RemoteUnavailable / RemoteRejected: The execution API call failed.
        """
        if not (project.repository_url or "").strip():
            raise InvalidInput(f"Project {project.key} has no repository URL")
        key_files = parse_key_files(project.key_files)
        if not key_files:
            raise InvalidInput(f"Project {project.key} has no key files specified")

        description = project.description or project.name
        submission = await self.client.submit_project(description, key_files)
        logger.info(
            "Project %s submitted as remote project %s (%d subtasks)",
            project.key, submission.remote_project_id, len(submission.subtask_ids),
        )

        run = self.store.create_project_run(
            user_id=project.user_id,
            project_id=project.id,
            remote_project_id=submission.remote_project_id,
            subtask_ids=submission.subtask_ids,
        )
        if self.hub is not None:
            await self.hub.publish(
                "project_run.started",
                user_id=project.user_id,
                run_id=run.id,
                payload=run.model_dump(mode="json"),
            )
        if self.project_pollers is not None:
            await self.project_pollers.watch(run.id)
        return run
