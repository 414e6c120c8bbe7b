"""Tests for the execution API client with mocked HTTP responses."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from taskmanager.models.task import Task
from taskmanager.runs.client import ExecutionClient, normalize_remote_status, repository_name
from taskmanager.runs.errors import InvalidInput, RemoteRejected, RemoteUnavailable

BASE = "http://exec.test"


@pytest.fixture
def client():
    return ExecutionClient(base_url=BASE, timeout=5)


@pytest.fixture
def task():
    return Task(
        id="t1",
        user_id="user-1",
        project_id="p1",
        sequence_code="ABC-001",
        title="Add login",
        description="OAuth via GitHub",
    )


def _response(payload):
    resp = MagicMock()
    resp.raise_for_status = MagicMock()
    resp.json = MagicMock(return_value=payload)
    return resp


def _error_response(status_code, method="GET", url=f"{BASE}/api/tasks/X1"):
    request = httpx.Request(method, url)
    response = httpx.Response(status_code, request=request)
    resp = MagicMock()
    resp.raise_for_status = MagicMock(
        side_effect=httpx.HTTPStatusError("error", request=request, response=response)
    )
    return resp


def _patched(mock_http):
    mock_cls = patch("httpx.AsyncClient")
    started = mock_cls.start()
    started.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    started.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_cls


class TestHelpers:
    def test_repository_name_is_last_segment(self):
        assert repository_name("https://github.com/acme/api") == "api"
        assert repository_name("https://github.com/acme/api/") == "api"

    def test_normalize_remote_status(self):
        for status in ("pending", "running", "completed", "failed"):
            assert normalize_remote_status(status) == status
        assert normalize_remote_status("queued") == "unknown"
        assert normalize_remote_status(None) == "unknown"


class TestSubmitTask:
    @pytest.mark.asyncio
    async def test_submit_task_sends_job_description(self, client, task):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_response({"task_id": "X1", "branch_name": "feature/x"}))

        patcher = _patched(mock_http)
        try:
            result = await client.submit_task(task, "https://github.com/acme/api")
        finally:
            patcher.stop()

        assert result.remote_job_id == "X1"
        assert result.branch_name == "feature/x"
        args, kwargs = mock_http.request.call_args
        assert args == ("POST", f"{BASE}/api/tasks")
        assert kwargs["json"] == {
            "task_description": "ABC-001 Add login",
            "detailed_description": "OAuth via GitHub",
            "repo_url": "https://github.com/acme/api",
            "repo_name": "api",
        }

    @pytest.mark.asyncio
    async def test_submit_task_without_branch(self, client, task):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_response({"task_id": "X1"}))

        patcher = _patched(mock_http)
        try:
            result = await client.submit_task(task, "https://github.com/acme/api")
        finally:
            patcher.stop()

        assert result.branch_name is None

    @pytest.mark.asyncio
    async def test_submit_task_non_2xx_is_rejected(self, client, task):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_error_response(500, "POST", f"{BASE}/api/tasks"))

        patcher = _patched(mock_http)
        try:
            with pytest.raises(RemoteRejected) as exc_info:
                await client.submit_task(task, "https://github.com/acme/api")
        finally:
            patcher.stop()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_submit_task_transport_error_is_unavailable(self, client, task):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(side_effect=httpx.ConnectError("connection refused"))

        patcher = _patched(mock_http)
        try:
            with pytest.raises(RemoteUnavailable):
                await client.submit_task(task, "https://github.com/acme/api")
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_submit_task_missing_task_id_is_rejected(self, client, task):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_response({"detail": "ok"}))

        patcher = _patched(mock_http)
        try:
            with pytest.raises(RemoteRejected):
                await client.submit_task(task, "https://github.com/acme/api")
        finally:
            patcher.stop()


class TestSubmitProject:
    @pytest.mark.asyncio
    async def test_submit_project(self, client):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(
            return_value=_response({"project_id": "P1", "subtask_ids": ["s1", "s2"]})
        )

        patcher = _patched(mock_http)
        try:
            result = await client.submit_project("Backend for Acme", ["a.py", "b.py"])
        finally:
            patcher.stop()

        assert result.remote_project_id == "P1"
        assert result.subtask_ids == ["s1", "s2"]
        _, kwargs = mock_http.request.call_args
        assert kwargs["json"] == {"project_description": "Backend for Acme", "key_files": ["a.py", "b.py"]}

    @pytest.mark.asyncio
    async def test_submit_project_empty_key_files(self, client):
        with patch("httpx.AsyncClient") as mock_cls:
            with pytest.raises(InvalidInput):
                await client.submit_project("Backend", [])
        mock_cls.assert_not_called()


class TestStatus:
    @pytest.mark.asyncio
    async def test_get_task_status(self, client):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(
            return_value=_response({"status": "completed", "branch_name": "feature/x"})
        )

        patcher = _patched(mock_http)
        try:
            status = await client.get_task_status("X1")
        finally:
            patcher.stop()

        assert status.status == "completed"
        assert status.branch_name == "feature/x"
        args, _ = mock_http.request.call_args
        assert args == ("GET", f"{BASE}/api/tasks/X1")

    @pytest.mark.asyncio
    async def test_get_task_status_unknown_vocabulary(self, client):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_response({"status": "queued"}))

        patcher = _patched(mock_http)
        try:
            status = await client.get_task_status("X1")
        finally:
            patcher.stop()

        assert status.status == "unknown"
        assert status.branch_name is None

    @pytest.mark.asyncio
    async def test_get_task_status_404_is_rejected(self, client):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_error_response(404))

        patcher = _patched(mock_http)
        try:
            with pytest.raises(RemoteRejected) as exc_info:
                await client.get_task_status("X1")
        finally:
            patcher.stop()

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_get_task_status_timeout_is_unavailable(self, client):
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

        patcher = _patched(mock_http)
        try:
            with pytest.raises(RemoteUnavailable):
                await client.get_task_status("X1")
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_get_project_status(self, client):
        payload = {
            "project_id": "P1",
            "created_at": "2026-10-01T10:00:00Z",
            "updated_at": "2026-10-01T10:05:00Z",
            "subtasks": [
                {"task_id": "s1", "status": "completed", "task_description": "a.py", "branch_name": "b/a"},
                {"task_id": "s2", "status": "running", "task_description": "b.py", "branch_name": None},
            ],
        }
        mock_http = AsyncMock()
        mock_http.request = AsyncMock(return_value=_response(payload))

        patcher = _patched(mock_http)
        try:
            status = await client.get_project_status("P1")
        finally:
            patcher.stop()

        assert [s.subtask_id for s in status.subtasks] == ["s1", "s2"]
        assert status.subtasks[0].status == "completed"
        assert status.subtasks[0].branch_name == "b/a"
        assert status.subtasks[1].branch_name == ""
        assert status.subtasks[1].description == "b.py"
        assert status.created_at == "2026-10-01T10:00:00Z"
