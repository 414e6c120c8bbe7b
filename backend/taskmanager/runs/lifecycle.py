"""Task lifecycle — state machine + transition table.

Every state change on a Task goes through this table. The trigger names who
may cause a transition: "run" (a user starts a remote job) or "poll" (the
poll scheduler observed a remote status). Manual edits trigger nothing, so a
task's state cannot be changed from an edit form.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from taskmanager.models.task import TERMINAL_TASK_STATES, Task

Trigger = Literal["run", "poll"]

# === State Transition Table ===
# Key: (from_state, to_state) → trigger allowed to cause it
# Absent pair → illegal transition

LEGAL_TRANSITIONS: dict[tuple[str, str], Trigger] = {
    # Starting (or restarting) a remote job
    ("draft", "pending"): "run",
    ("pending", "pending"): "run",
    ("running", "pending"): "run",
    ("failed", "pending"): "run",
    # Observed remote progress
    ("pending", "running"): "poll",
    ("pending", "complete"): "poll",  # job finished between two ticks
    ("pending", "failed"): "poll",
    ("running", "complete"): "poll",
    ("running", "failed"): "poll",
    # complete has no transitions out
}


class IllegalTransitionError(Exception):
    """Raised when attempting an illegal state transition."""

    def __init__(self, from_state: str, to_state: str, trigger: str | None = None) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.trigger = trigger
        via = f" via {trigger}" if trigger else ""
        super().__init__(f"Illegal transition: {from_state} → {to_state}{via}.")


def is_legal(from_state: str, to_state: str, trigger: Trigger) -> bool:
    return LEGAL_TRANSITIONS.get((from_state, to_state)) == trigger


def can_run(state: str) -> bool:
    """A task can be (re)run from any state except complete."""
    return is_legal(state, "pending", "run")


def is_terminal(state: str) -> bool:
    return state in TERMINAL_TASK_STATES


def transition(task: Task, to_state: str, trigger: Trigger) -> None:
    """Move a task to a new state, enforcing the transition table.

    Raises:
        IllegalTransitionError: If the (from, to, trigger) triple is not legal.
    """
    if not is_legal(task.state, to_state, trigger):
        raise IllegalTransitionError(task.state, to_state, trigger)
    task.state = to_state
    task.updated_at = datetime.now(timezone.utc)


def check_manual_edit(current_state: str, requested_state: str | None) -> None:
    """Reject edit-form changes to a task's state.

    Only the run and poll paths move a task between states; an edit that
    repeats the current state is accepted.
    """
    if requested_state is not None and requested_state != current_state:
        raise IllegalTransitionError(current_state, requested_state, "manual")
