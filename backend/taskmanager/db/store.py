"""Local store — persisted tasks, projects, agents and project runs.

Every user-facing read and write is scoped by the owning user id; projects
and agents are additionally filtered by their archived flag. The poll
schedulers read across users (one scheduler serves the whole process).

Returned rows are detached from their session, so callers may read them after
the session closes but must write back through the store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from taskmanager.models.agent import Agent
from taskmanager.models.project import Project
from taskmanager.models.run import (
    INITIAL_SUBTASK_DESCRIPTION,
    ProjectRun,
    ProjectRunView,
    ProjectSubtask,
    SubtaskView,
)
from taskmanager.models.task import (
    IN_FLIGHT_STATES,
    Task,
    TaskCounter,
    format_sequence_code,
    normalize_tags,
)
from taskmanager.runs import lifecycle
from taskmanager.runs.errors import StoreWriteFailed

logger = logging.getLogger(__name__)

_SEQUENCE_RETRIES = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _detach(session: Session, row):
    session.refresh(row)
    session.expunge(row)
    return row


class TaskStore:
    """Persistence facade over a SQLModel engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # === Sequence numbers ===

    def next_sequence_number(self, project_id: str) -> int:
        """Atomically issue the next task number for a project."""
        with Session(self.engine) as session:
            number = self._claim_sequence_number(session, project_id)
            session.commit()
        return number

    def _claim_sequence_number(self, session: Session, project_id: str) -> int:
        for _ in range(_SEQUENCE_RETRIES):
            result = session.exec(
                sa_update(TaskCounter)
                .where(TaskCounter.project_id == project_id)
                .values(last_value=TaskCounter.last_value + 1)
            )
            if result.rowcount == 1:
                return session.exec(
                    select(TaskCounter.last_value).where(TaskCounter.project_id == project_id)
                ).one()
            session.add(TaskCounter(project_id=project_id, last_value=1))
            try:
                session.flush()
                return 1
            except IntegrityError:
                # Another writer created the counter first; bump it instead.
                session.rollback()
        raise StoreWriteFailed(f"Could not issue a sequence number for project {project_id}")

    # === Tasks ===

    def create_task(
        self,
        user_id: str,
        project: Project,
        title: str,
        description: str = "",
        priority: str = "medium",
        agent_id: str | None = None,
        tags: list[str] | None = None,
    ) -> Task:
        """Insert a draft task, issuing its sequence code in the same transaction."""
        with Session(self.engine) as session:
            number = self._claim_sequence_number(session, project.id)
            task = Task(
                user_id=user_id,
                project_id=project.id,
                sequence_code=format_sequence_code(project.key, number),
                title=title,
                description=description,
                priority=priority,
                agent_id=agent_id,
                tags=normalize_tags(tags),
            )
            session.add(task)
            try:
                session.commit()
            except IntegrityError as e:
                raise StoreWriteFailed(f"Task insert rejected: {e.orig}") from e
            return _detach(session, task)

    def get_task(self, task_id: str, user_id: str | None = None) -> Task | None:
        with Session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None or (user_id is not None and task.user_id != user_id):
                return None
            session.expunge(task)
        return task

    def list_tasks(
        self,
        user_id: str,
        state: str | None = None,
        project_id: str | None = None,
        query: str | None = None,
    ) -> list[Task]:
        """List a user's tasks, newest first, with optional filters."""
        with Session(self.engine) as session:
            stmt = select(Task).where(Task.user_id == user_id)
            if state:
                stmt = stmt.where(Task.state == state)
            if project_id:
                stmt = stmt.where(Task.project_id == project_id)
            if query:
                pattern = f"%{query}%"
                stmt = stmt.where(
                    or_(
                        col(Task.title).ilike(pattern),
                        col(Task.description).ilike(pattern),
                        col(Task.sequence_code).ilike(pattern),
                    )
                )
            stmt = stmt.order_by(col(Task.created_at).desc())
            tasks = session.exec(stmt).all()
            for t in tasks:
                session.expunge(t)
        return list(tasks)

    def list_in_flight_tasks(self) -> list[Task]:
        """All tasks with a correlation id whose remote job is not yet terminal.

        Ordered by creation time, so poll ticks walk tasks in insertion order.
        """
        with Session(self.engine) as session:
            tasks = session.exec(
                select(Task)
                .where(col(Task.remote_job_id).isnot(None))
                .where(col(Task.state).in_(IN_FLIGHT_STATES))
                .order_by(col(Task.created_at))
            ).all()
            for t in tasks:
                session.expunge(t)
        return list(tasks)

    def update_task(self, task_id: str, user_id: str, changes: dict[str, Any]) -> Task:
        """Apply an edit-form update. State changes are rejected by the lifecycle."""
        with Session(self.engine) as session:
            task = self._owned(session, Task, task_id, user_id)
            lifecycle.check_manual_edit(task.state, changes.pop("state", None))
            if "tags" in changes:
                changes["tags"] = normalize_tags(changes["tags"])
            for key, value in changes.items():
                setattr(task, key, value)
            task.updated_at = _utcnow()
            session.add(task)
            session.commit()
            return _detach(session, task)

    def delete_task(self, task_id: str, user_id: str) -> bool:
        """Delete a task owned by user_id. Returns True if deleted."""
        with Session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None or task.user_id != user_id:
                return False
            session.delete(task)
            session.commit()
        logger.info("Deleted task %s", task_id)
        return True

    def record_task_run(
        self,
        task_id: str,
        user_id: str,
        remote_job_id: str,
        branch_name: str | None = None,
    ) -> Task:
        """Persist a started run: correlation id, state pending, branch if given.

        This single write hands the task over to the poll scheduler.
        """
        with Session(self.engine) as session:
            task = self._owned(session, Task, task_id, user_id)
            lifecycle.transition(task, "pending", "run")
            task.remote_job_id = remote_job_id
            if branch_name:
                task.branch_name = branch_name
            session.add(task)
            session.commit()
            return _detach(session, task)

    def apply_task_status(
        self,
        task_id: str,
        state: str,
        branch_name: str | None,
        expected_job_id: str | None = None,
        expected_state: str | None = None,
    ) -> Task | None:
        """Write a reconciled status as one atomic {state, branch_name, updated_at} update.

        With expected_job_id/expected_state the write only applies while the
        task still carries the polled job and the state that was read. If a
        re-run or a delete got there first, nothing is written and None is
        returned.
        """
        stmt = sa_update(Task).where(Task.id == task_id)
        if expected_job_id is not None:
            stmt = stmt.where(Task.remote_job_id == expected_job_id)
        if expected_state is not None:
            stmt = stmt.where(Task.state == expected_state)
        conditional = expected_job_id is not None or expected_state is not None

        with Session(self.engine) as session:
            result = session.exec(
                stmt.values(state=state, branch_name=branch_name, updated_at=_utcnow())
            )
            if result.rowcount != 1:
                if conditional:
                    logger.info("Status write for task %s superseded; skipped", task_id)
                    return None
                raise StoreWriteFailed(f"Task not found for status update: {task_id}")
            session.commit()
            task = session.get(Task, task_id)
            session.expunge(task)
        return task

    # === Projects ===

    def create_project(self, user_id: str, **fields: Any) -> Project:
        project = Project(user_id=user_id, **fields)
        with Session(self.engine) as session:
            session.add(project)
            session.commit()
            return _detach(session, project)

    def get_project(self, project_id: str, user_id: str | None = None) -> Project | None:
        with Session(self.engine) as session:
            project = session.get(Project, project_id)
            if project is None or (user_id is not None and project.user_id != user_id):
                return None
            session.expunge(project)
        return project

    def list_projects(self, user_id: str, include_archived: bool = False) -> list[Project]:
        with Session(self.engine) as session:
            stmt = select(Project).where(Project.user_id == user_id)
            if not include_archived:
                stmt = stmt.where(col(Project.archived).is_(False))
            projects = session.exec(stmt.order_by(col(Project.created_at))).all()
            for p in projects:
                session.expunge(p)
        return list(projects)

    def update_project(self, project_id: str, user_id: str, changes: dict[str, Any]) -> Project:
        if "key" in changes:
            raise StoreWriteFailed("Project key is immutable after creation")
        with Session(self.engine) as session:
            project = self._owned(session, Project, project_id, user_id)
            for key, value in changes.items():
                setattr(project, key, value)
            project.updated_at = _utcnow()
            session.add(project)
            session.commit()
            return _detach(session, project)

    def archive_project(self, project_id: str, user_id: str) -> Project:
        return self.update_project(project_id, user_id, {"archived": True})

    # === Agents ===

    def create_agent(self, user_id: str, **fields: Any) -> Agent:
        agent = Agent(user_id=user_id, **fields)
        with Session(self.engine) as session:
            session.add(agent)
            session.commit()
            return _detach(session, agent)

    def get_agent(self, agent_id: str, user_id: str | None = None) -> Agent | None:
        with Session(self.engine) as session:
            agent = session.get(Agent, agent_id)
            if agent is None or (user_id is not None and agent.user_id != user_id):
                return None
            session.expunge(agent)
        return agent

    def list_agents(self, user_id: str, include_archived: bool = False) -> list[Agent]:
        with Session(self.engine) as session:
            stmt = select(Agent).where(Agent.user_id == user_id)
            if not include_archived:
                stmt = stmt.where(col(Agent.archived).is_(False))
            agents = session.exec(stmt.order_by(col(Agent.created_at))).all()
            for a in agents:
                session.expunge(a)
        return list(agents)

    def update_agent(self, agent_id: str, user_id: str, changes: dict[str, Any]) -> Agent:
        with Session(self.engine) as session:
            agent = self._owned(session, Agent, agent_id, user_id)
            for key, value in changes.items():
                setattr(agent, key, value)
            agent.updated_at = _utcnow()
            session.add(agent)
            session.commit()
            return _detach(session, agent)

    def archive_agent(self, agent_id: str, user_id: str) -> Agent:
        return self.update_agent(agent_id, user_id, {"archived": True})

    # === Project runs ===

    def create_project_run(
        self,
        user_id: str,
        project_id: str,
        remote_project_id: str,
        subtask_ids: list[str],
    ) -> ProjectRunView:
        """Persist an active run seeded with one pending subtask per remote id."""
        run = ProjectRun(user_id=user_id, project_id=project_id, remote_project_id=remote_project_id)
        with Session(self.engine) as session:
            session.add(run)
            for position, subtask_id in enumerate(subtask_ids):
                session.add(
                    ProjectSubtask(
                        run_id=run.id,
                        subtask_id=subtask_id,
                        position=position,
                        status="pending",
                        description=INITIAL_SUBTASK_DESCRIPTION,
                        branch_name="",
                    )
                )
            session.commit()
            return self._run_view(session, run.id)

    def get_project_run(self, run_id: str, user_id: str | None = None) -> ProjectRunView | None:
        with Session(self.engine) as session:
            run = session.get(ProjectRun, run_id)
            if run is None or (user_id is not None and run.user_id != user_id):
                return None
            return self._run_view(session, run_id)

    def list_project_runs(self, project_id: str, user_id: str) -> list[ProjectRunView]:
        with Session(self.engine) as session:
            run_ids = session.exec(
                select(ProjectRun.id)
                .where(ProjectRun.project_id == project_id)
                .where(ProjectRun.user_id == user_id)
                .order_by(col(ProjectRun.created_at).desc())
            ).all()
            return [self._run_view(session, run_id) for run_id in run_ids]

    def list_active_project_runs(self) -> list[ProjectRunView]:
        with Session(self.engine) as session:
            run_ids = session.exec(
                select(ProjectRun.id)
                .where(ProjectRun.status == "active")
                .order_by(col(ProjectRun.created_at))
            ).all()
            return [self._run_view(session, run_id) for run_id in run_ids]

    def apply_project_status(
        self,
        run_id: str,
        subtasks: list[SubtaskView],
        remote_created_at: str | None = None,
        remote_updated_at: str | None = None,
        retire: bool = False,
    ) -> ProjectRunView:
        """Replace a run's subtask list with the remote one, in a single transaction."""
        with Session(self.engine) as session:
            run = session.get(ProjectRun, run_id)
            if run is None:
                raise StoreWriteFailed(f"Project run not found: {run_id}")
            existing = session.exec(
                select(ProjectSubtask).where(ProjectSubtask.run_id == run_id)
            ).all()
            for row in existing:
                session.delete(row)
            for position, sub in enumerate(subtasks):
                session.add(
                    ProjectSubtask(
                        run_id=run_id,
                        subtask_id=sub.subtask_id,
                        position=position,
                        status=sub.status,
                        description=sub.description,
                        branch_name=sub.branch_name,
                    )
                )
            if remote_created_at is not None:
                run.remote_created_at = remote_created_at
            if remote_updated_at is not None:
                run.remote_updated_at = remote_updated_at
            if retire:
                run.status = "retired"
            run.updated_at = _utcnow()
            session.add(run)
            session.commit()
            return self._run_view(session, run_id)

    # === Helpers ===

    @staticmethod
    def _owned(session: Session, model, row_id: str, user_id: str):
        row = session.get(model, row_id)
        if row is None or row.user_id != user_id:
            raise StoreWriteFailed(f"{model.__name__} not found for user: {row_id}")
        return row

    @staticmethod
    def _run_view(session: Session, run_id: str) -> ProjectRunView:
        run = session.get(ProjectRun, run_id)
        subtasks = session.exec(
            select(ProjectSubtask)
            .where(ProjectSubtask.run_id == run_id)
            .order_by(col(ProjectSubtask.position))
        ).all()
        return ProjectRunView(
            id=run.id,
            project_id=run.project_id,
            remote_project_id=run.remote_project_id,
            status=run.status,
            remote_created_at=run.remote_created_at,
            remote_updated_at=run.remote_updated_at,
            created_at=run.created_at,
            updated_at=run.updated_at,
            subtasks=[
                SubtaskView(
                    subtask_id=s.subtask_id,
                    status=s.status,
                    description=s.description,
                    branch_name=s.branch_name,
                )
                for s in subtasks
            ],
        )
