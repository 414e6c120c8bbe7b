"""Poll schedulers — periodic status checks for in-flight remote jobs.

Two kinds of loop run on the application's event loop:

- TaskPollScheduler: one per process, started at startup and stopped at
  shutdown. Each tick re-reads every task that has a correlation id and is
  still pending/running, polls its remote status, and writes whatever the
  reconciler decides. It never stops on its own.
- ProjectPollScheduler: one per active project run. Each tick rewrites the
  run's subtask list and retires the run as soon as every subtask is
  terminal, at which point the loop ends and no further queries are issued.

Within a tick entries are polled one after another. A failure on one entry
is logged and leaves that entry untouched; it is simply polled again on the
next tick.

Usage:
    scheduler = TaskPollScheduler(store=store, client=ExecutionClient(), hub=sse_hub)
    await scheduler.start()
    # ... app runs ...
    scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from taskmanager.api.v1.sse import SSEHub
from taskmanager.db.store import TaskStore
from taskmanager.runs.client import ExecutionClient
from taskmanager.runs.errors import TaskManagerError
from taskmanager.runs.reconciler import (
    is_project_retired,
    project_status_changed,
    reconcile_task,
)

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    """What one task poll tick did."""

    checked: int = 0
    updated: int = 0
    failed: int = 0


class TaskPollScheduler:
    """Polls every in-flight task on a fixed interval."""

    def __init__(
        self,
        store: TaskStore,
        client: ExecutionClient,
        hub: SSEHub | None = None,
        interval_seconds: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.client = client
        self.hub = hub
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._task: asyncio.Task | None = None
        self._running = False
        self.ticks = 0

    async def start(self) -> None:
        """Start the task poller as a background task."""
        if not self.enabled:
            logger.info("Task poll scheduler disabled")
            return

        if self._running:
            logger.warning("Task poll scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Task poll scheduler started (interval: %.1fs)", self.interval_seconds)

    def stop(self) -> None:
        """Stop the task poller."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Task poll scheduler stopped")

    async def _loop(self) -> None:
        """Main scheduling loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Keep polling: a broken tick must not end the scheduler.
                logger.error("Task poll scheduler error: %s", e, exc_info=True)

    async def poll_once(self) -> TickSummary:
        """Run one tick over the current working set."""
        summary = TickSummary()
        tasks = self.store.list_in_flight_tasks()
        self.ticks += 1
        if tasks:
            logger.debug("Polling %d in-flight task(s)", len(tasks))

        for task in tasks:
            summary.checked += 1
            try:
                remote = await self.client.get_task_status(task.remote_job_id)
                update = reconcile_task(task, remote)
                if update is None:
                    continue
                # Only applies if the task was not re-run or deleted during the await
                updated = self.store.apply_task_status(
                    task.id,
                    update.state,
                    update.branch_name,
                    expected_job_id=task.remote_job_id,
                    expected_state=task.state,
                )
                if updated is None:
                    continue
                summary.updated += 1
                logger.info(
                    "Task %s (%s): %s → %s",
                    updated.sequence_code, task.remote_job_id, task.state, updated.state,
                )
                if self.hub is not None:
                    await self.hub.publish(
                        "task.updated",
                        user_id=updated.user_id,
                        task_id=updated.id,
                        payload={
                            "state": updated.state,
                            "branch_name": updated.branch_name,
                            "remote_status": remote.status,
                        },
                    )
            except TaskManagerError as e:
                summary.failed += 1
                logger.warning("Polling task %s failed: %s", task.id, e)
            except Exception as e:
                summary.failed += 1
                logger.error("Polling task %s failed: %s", task.id, e, exc_info=True)

        return summary

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        """Get scheduler status for health checks."""
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "ticks": self.ticks,
        }


class ProjectPollScheduler:
    """Polls one project run until all of its subtasks are terminal."""

    def __init__(
        self,
        run_id: str,
        store: TaskStore,
        client: ExecutionClient,
        hub: SSEHub | None = None,
        interval_seconds: float = 5.0,
    ) -> None:
        self.run_id = run_id
        self.store = store
        self.client = client
        self.hub = hub
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.retired = False

    async def start(self) -> None:
        if self._running or self.retired:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Project run %s: polling started", self.run_id)

    def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                if await self.poll_once():
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Project run %s poll error: %s", self.run_id, e, exc_info=True)
        self._running = False

    async def poll_once(self) -> bool:
        """Run one tick. Returns True once the run is retired."""
        if self.retired:
            return True

        run = self.store.get_project_run(self.run_id)
        if run is None or run.status == "retired":
            self._retire()
            return True

        try:
            remote = await self.client.get_project_status(run.remote_project_id)
        except TaskManagerError as e:
            logger.warning("Polling project run %s failed: %s", self.run_id, e)
            return False

        retired = is_project_retired(remote.subtasks)
        if not retired and not project_status_changed(run.subtasks, remote.subtasks):
            return False

        view = self.store.apply_project_status(
            self.run_id,
            remote.subtasks,
            remote_created_at=remote.created_at,
            remote_updated_at=remote.updated_at,
            retire=retired,
        )
        if self.hub is not None:
            await self.hub.publish(
                "project_run.retired" if retired else "project_run.updated",
                user_id=run.user_id,
                run_id=self.run_id,
                payload=view.model_dump(mode="json"),
            )
        if retired:
            logger.info(
                "Project run %s retired (%d subtasks terminal)", self.run_id, len(view.subtasks)
            )
            self._retire()
        return retired

    def _retire(self) -> None:
        self.retired = True
        self.stop()

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()


class ProjectPollRegistry:
    """Owns one ProjectPollScheduler per active project run."""

    def __init__(
        self,
        store: TaskStore,
        client: ExecutionClient,
        hub: SSEHub | None = None,
        interval_seconds: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.client = client
        self.hub = hub
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._schedulers: dict[str, ProjectPollScheduler] = {}

    async def watch(self, run_id: str) -> ProjectPollScheduler | None:
        """Start polling a project run (no-op if it is already watched)."""
        self._prune()
        if not self.enabled:
            logger.info("Project poll scheduler disabled; run %s not watched", run_id)
            return None
        existing = self._schedulers.get(run_id)
        if existing is not None:
            return existing
        scheduler = ProjectPollScheduler(
            run_id=run_id,
            store=self.store,
            client=self.client,
            hub=self.hub,
            interval_seconds=self.interval_seconds,
        )
        self._schedulers[run_id] = scheduler
        await scheduler.start()
        return scheduler

    async def resume_active(self) -> int:
        """Resume polling for every persisted active run (after a restart)."""
        runs = self.store.list_active_project_runs()
        for run in runs:
            await self.watch(run.id)
        if runs:
            logger.info("Resumed polling for %d active project run(s)", len(runs))
        return len(runs)

    def stop_all(self) -> None:
        for scheduler in self._schedulers.values():
            scheduler.stop()
        self._schedulers.clear()

    def _prune(self) -> None:
        for run_id in [r for r, s in self._schedulers.items() if s.retired or not s.is_running]:
            del self._schedulers[run_id]

    @property
    def active_runs(self) -> list[str]:
        self._prune()
        return list(self._schedulers)

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "active_runs": len(self.active_runs),
            "interval_seconds": self.interval_seconds,
        }
