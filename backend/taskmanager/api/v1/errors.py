"""Map task manager errors onto HTTP responses.

  InvalidInput           → 422
  IllegalTransitionError → 409
  StoreWriteFailed       → 409
  RemoteRejected         → 502  (run did not start)
  RemoteUnavailable      → 503  (run did not start)
"""

from __future__ import annotations

from fastapi import HTTPException

from taskmanager.runs.errors import (
    InvalidInput,
    RemoteRejected,
    RemoteUnavailable,
    StoreWriteFailed,
    TaskManagerError,
)
from taskmanager.runs.lifecycle import IllegalTransitionError


def to_http_exception(exc: Exception, action: str = "Request") -> HTTPException:
    if isinstance(exc, InvalidInput):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, (IllegalTransitionError, StoreWriteFailed)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, RemoteRejected):
        return HTTPException(status_code=502, detail=f"{action} did not start: {exc}")
    if isinstance(exc, RemoteUnavailable):
        return HTTPException(status_code=503, detail=f"{action} did not start: {exc}")
    if isinstance(exc, TaskManagerError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal server error.")
