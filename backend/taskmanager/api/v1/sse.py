"""SSE (Server-Sent Events) hub for real-time dashboard updates.

The poll schedulers run once per backend process and publish every task and
project-run change here; open dashboards subscribe instead of polling the
execution API themselves.

Events follow the RunEvent schema defined in taskmanager.models.events.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from taskmanager.middleware.auth import current_user_id
from taskmanager.models.events import RunEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["sse"])


class SSEHub:
    """Central hub for broadcasting run events to connected dashboards.

    Usage:
        hub = SSEHub()

        # In a poll scheduler:
        await hub.broadcast(RunEvent(
            event_type="task.updated",
            user_id=task.user_id,
            task_id=task.id,
            payload={"state": "running"},
        ))

        # In FastAPI:
        @router.get("/sse")
        async def sse_endpoint():
            return hub.create_response(user_id)
    """

    MAX_SUBSCRIBERS = 50  # Safety cap to prevent unbounded growth

    def __init__(self) -> None:
        # (owning user id or None for all users, queue)
        self._subscribers: list[tuple[str | None, asyncio.Queue[RunEvent | None]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, user_id: str | None = None) -> asyncio.Queue[RunEvent | None]:
        """Create a new subscriber queue.

        Args:
            user_id: Only deliver events owned by this user (None = all events).

        Returns:
            Queue that receives RunEvent objects. None signals disconnect.
        """
        if len(self._subscribers) >= self.MAX_SUBSCRIBERS:
            # Evict oldest subscriber before adding new one
            logger.warning(
                "SSE hub at capacity (%d/%d), evicting oldest subscriber",
                len(self._subscribers), self.MAX_SUBSCRIBERS,
            )
            _, oldest = self._subscribers.pop(0)
            try:
                oldest.put_nowait(None)
            except asyncio.QueueFull:
                pass

        queue: asyncio.Queue[RunEvent | None] = asyncio.Queue(maxsize=100)
        self._subscribers.append((user_id, queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RunEvent | None]) -> None:
        """Remove a subscriber queue."""
        self._subscribers = [(u, q) for u, q in self._subscribers if q is not queue]

    async def broadcast(self, event: RunEvent) -> int:
        """Send an event to every subscriber allowed to see it.

        Returns:
            Number of subscribers that received the event.
        """
        sent = 0
        dead_queues = []
        for user_id, queue in self._subscribers:
            if user_id is not None and event.user_id is not None and user_id != event.user_id:
                continue
            try:
                queue.put_nowait(event)
                sent += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # Clean up full/dead queues
        for q in dead_queues:
            self.unsubscribe(q)

        return sent

    async def publish(
        self,
        event_type: str,
        user_id: str | None = None,
        task_id: str | None = None,
        run_id: str | None = None,
        payload: dict | None = None,
    ) -> int:
        """Convenience method to broadcast from plain values."""
        event = RunEvent(
            event_type=event_type,  # type: ignore[arg-type]
            user_id=user_id,
            task_id=task_id,
            run_id=run_id,
            payload=payload or {},
        )
        return await self.broadcast(event)

    async def event_generator(
        self,
        queue: asyncio.Queue[RunEvent | None],
        heartbeat_interval: float = 30.0,
    ) -> AsyncGenerator[str, None]:
        """Generate SSE-formatted strings from a subscriber queue.

        Sends periodic heartbeat comments to detect disconnected clients.
        """
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                    if event is None:
                        break
                    yield _format_sse(event)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
        finally:
            self.unsubscribe(queue)

    def create_response(self, user_id: str | None = None) -> StreamingResponse:
        """Create a FastAPI StreamingResponse for SSE."""
        queue = self.subscribe(user_id)
        return StreamingResponse(
            self.event_generator(queue),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
            },
        )

    async def disconnect_all(self) -> None:
        """Disconnect all subscribers (used during shutdown)."""
        for _, queue in self._subscribers:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._subscribers.clear()


def _format_sse(event: RunEvent) -> str:
    """Format a RunEvent as a standard SSE string.

    Format:
        event: <event_type>
        data: <json_payload>

    """
    data = {
        "event_type": event.event_type,
        "task_id": event.task_id,
        "run_id": event.run_id,
        "payload": event.payload,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }
    return f"event: {event.event_type}\ndata: {json.dumps(data, default=str)}\n\n"


# === Singleton hub instance ===

sse_hub = SSEHub()


# === FastAPI endpoint ===


@router.get("/sse")
async def sse_endpoint(user_id: str = Depends(current_user_id)):
    """SSE endpoint for task and project-run updates of the calling user."""
    return sse_hub.create_response(user_id)
