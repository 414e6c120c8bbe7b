"""Agent API endpoints — CRUD and archive.

GET    /api/v1/agents           — list (archived hidden unless ?include_archived=true)
GET    /api/v1/agents/{id}      — single agent
POST   /api/v1/agents           — create
PUT    /api/v1/agents/{id}      — edit
DELETE /api/v1/agents/{id}      — archive (tasks keep their assignment)
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from taskmanager.db.store import TaskStore
from taskmanager.middleware.auth import current_user_id
from taskmanager.models.agent import Agent

router = APIRouter(prefix="/api/v1", tags=["agents"])

_store: TaskStore | None = None


def set_store(store: TaskStore) -> None:
    """Wire up the store (called from main.py lifespan)."""
    global _store
    _store = store


def _get_store() -> TaskStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Task store not initialized.")
    return _store


class CreateAgentRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)


class UpdateAgentRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    url: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)


class AgentResponse(BaseModel):
    id: str
    name: str
    url: str
    description: str | None = None
    archived: bool
    created_at: datetime
    updated_at: datetime


def _to_response(agent: Agent) -> AgentResponse:
    return AgentResponse(
        id=agent.id,
        name=agent.name,
        url=agent.url,
        description=agent.description,
        archived=agent.archived,
        created_at=agent.created_at,
        updated_at=agent.updated_at,
    )


def _get_agent(store: TaskStore, agent_id: str, user_id: str) -> Agent:
    agent = store.get_agent(agent_id, user_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")
    return agent


@router.get("/agents", response_model=list[AgentResponse])
async def list_agents(
    include_archived: bool = False,
    user_id: str = Depends(current_user_id),
) -> list[AgentResponse]:
    return [_to_response(a) for a in _get_store().list_agents(user_id, include_archived)]


@router.get("/agents/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, user_id: str = Depends(current_user_id)) -> AgentResponse:
    return _to_response(_get_agent(_get_store(), agent_id, user_id))


@router.post("/agents", response_model=AgentResponse, status_code=201)
async def create_agent(
    request: CreateAgentRequest,
    user_id: str = Depends(current_user_id),
) -> AgentResponse:
    agent = _get_store().create_agent(
        user_id, name=request.name, url=request.url, description=request.description
    )
    return _to_response(agent)


@router.put("/agents/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: str,
    request: UpdateAgentRequest,
    user_id: str = Depends(current_user_id),
) -> AgentResponse:
    store = _get_store()
    _get_agent(store, agent_id, user_id)
    return _to_response(store.update_agent(agent_id, user_id, request.model_dump(exclude_unset=True)))


@router.delete("/agents/{agent_id}", response_model=AgentResponse)
async def archive_agent(agent_id: str, user_id: str = Depends(current_user_id)) -> AgentResponse:
    store = _get_store()
    _get_agent(store, agent_id, user_id)
    return _to_response(store.archive_agent(agent_id, user_id))
