"""Status reconciler — remote job status → local task state.

Pure functions: no I/O, no clock. The poll schedulers feed them the stored
record and the freshly polled remote status and write whatever they return.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from taskmanager.models.run import SubtaskView
from taskmanager.models.task import Task
from taskmanager.runs import lifecycle
from taskmanager.runs.client import TaskStatus

logger = logging.getLogger(__name__)

REMOTE_TO_LOCAL: dict[str, str] = {
    "pending": "pending",
    "running": "running",
    "completed": "complete",
    "failed": "failed",
}
FALLBACK_STATE = "draft"

TERMINAL_REMOTE_STATUSES = frozenset({"completed", "failed"})


def map_remote_status(remote_status: str) -> str:
    """Map a remote status onto a local task state ("draft" when unrecognised)."""
    return REMOTE_TO_LOCAL.get(remote_status, FALLBACK_STATE)


@dataclass(frozen=True)
class TaskUpdate:
    """The {state, branch_name} write the poller should apply to a task."""

    state: str
    branch_name: str | None


def reconcile_task(task: Task, remote: TaskStatus) -> TaskUpdate | None:
    """Decide whether a polled status changes the stored task.

    Returns the update to write, or None when nothing changed. A mapped state
    the lifecycle does not allow from the stored one (e.g. the "draft"
    fallback for an unknown status while running) is not applied; only a
    branch change can still produce a write in that case.
    """
    mapped = map_remote_status(remote.status)
    new_state = task.state
    if mapped != task.state:
        if lifecycle.is_legal(task.state, mapped, "poll"):
            new_state = mapped
        else:
            logger.warning(
                "Ignoring remote status %r for task %s: %s → %s is not a legal poll transition",
                remote.status, task.id, task.state, mapped,
            )

    # A missing remote branch never erases the stored one.
    new_branch = remote.branch_name or task.branch_name

    if new_state == task.state and new_branch == task.branch_name:
        return None
    return TaskUpdate(state=new_state, branch_name=new_branch)


def is_project_retired(subtasks: list[SubtaskView]) -> bool:
    """True once every subtask of a project run has reached a terminal status."""
    return all(s.status in TERMINAL_REMOTE_STATUSES for s in subtasks)


def project_status_changed(stored: list[SubtaskView], polled: list[SubtaskView]) -> bool:
    return [s.model_dump() for s in stored] != [s.model_dump() for s in polled]
