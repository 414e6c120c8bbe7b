"""Error taxonomy for run orchestration and persistence.

  RemoteUnavailable → transport failure or timeout talking to the execution API
  RemoteRejected    → execution API answered non-2xx (or an unusable body)
  InvalidInput      → run preconditions not met (no repository URL, empty manifest)
  StoreWriteFailed  → the store refused a write (missing row, ownership mismatch)
"""

from __future__ import annotations


class TaskManagerError(Exception):
    """Base class for all task manager errors."""


class RemoteUnavailable(TaskManagerError):
    """The execution API could not be reached."""


class RemoteRejected(TaskManagerError):
    """The execution API rejected the request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class InvalidInput(TaskManagerError):
    """A run was requested with missing or unusable input."""


class StoreWriteFailed(TaskManagerError):
    """A persisted write did not apply."""
