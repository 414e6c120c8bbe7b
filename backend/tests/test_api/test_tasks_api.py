"""Tests for the task CRUD and run API endpoints."""

from taskmanager.runs.client import TaskSubmission
from taskmanager.runs.errors import RemoteRejected, RemoteUnavailable

USER = "user-1"


def _create_task(api, project_id, **overrides):
    payload = {"title": "Add login", "project_id": project_id, **overrides}
    resp = api.post("/api/v1/tasks", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


# === CRUD ===


def test_create_task_issues_sequence_code(api, project):
    first = _create_task(api, project.id)
    second = _create_task(api, project.id, title="Add logout", tags=["auth", " auth "])

    assert first["sequence_code"] == "ABC-001"
    assert first["state"] == "draft"
    assert first["remote_job_id"] is None
    assert second["sequence_code"] == "ABC-002"
    assert second["tags"] == ["auth"]


def test_create_task_unknown_project(api):
    resp = api.post("/api/v1/tasks", json={"title": "Orphan", "project_id": "nope"})
    assert resp.status_code == 422


def test_create_task_in_archived_project(api, store, project):
    store.archive_project(project.id, USER)
    resp = api.post("/api/v1/tasks", json={"title": "Late", "project_id": project.id})
    assert resp.status_code == 422


def test_create_task_with_archived_agent(api, store, project):
    agent = store.create_agent(USER, name="Coder", url="https://agents.test/coder")
    store.archive_agent(agent.id, USER)
    resp = api.post(
        "/api/v1/tasks", json={"title": "Assign", "project_id": project.id, "agent_id": agent.id}
    )
    assert resp.status_code == 422


def test_create_task_validation(api, project):
    assert api.post("/api/v1/tasks", json={"title": "", "project_id": project.id}).status_code == 422
    resp = api.post(
        "/api/v1/tasks", json={"title": "x", "project_id": project.id, "priority": "urgent"}
    )
    assert resp.status_code == 422


def test_get_task_scoped_to_user(api, project):
    created = _create_task(api, project.id)

    assert api.get(f"/api/v1/tasks/{created['id']}").status_code == 200
    resp = api.get(f"/api/v1/tasks/{created['id']}", headers={"X-User-Id": "someone-else"})
    assert resp.status_code == 404


def test_list_tasks_filters(api, project):
    _create_task(api, project.id, title="Add login page")
    _create_task(api, project.id, title="Fix logout")

    assert len(api.get("/api/v1/tasks").json()) == 2
    found = api.get("/api/v1/tasks", params={"q": "login"}).json()
    assert [t["title"] for t in found] == ["Add login page"]
    assert api.get("/api/v1/tasks", params={"state": "running"}).json() == []
    assert api.get("/api/v1/tasks", params={"state": "bogus"}).status_code == 422


def test_grouped_tasks_follow_lifecycle_order(api, store, project):
    draft = _create_task(api, project.id, title="draft one")
    failed = _create_task(api, project.id, title="failed one")
    store.record_task_run(failed["id"], USER, remote_job_id="X0")
    store.apply_task_status(failed["id"], "failed", None)

    grouped = api.get("/api/v1/tasks/grouped").json()

    assert list(grouped) == ["draft", "failed"]
    assert [t["id"] for t in grouped["draft"]] == [draft["id"]]


def test_update_task_fields(api, project):
    created = _create_task(api, project.id)
    resp = api.put(
        f"/api/v1/tasks/{created['id']}",
        json={"title": "Add OAuth login", "priority": "high", "tags": ["auth"]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Add OAuth login"
    assert data["priority"] == "high"
    assert data["sequence_code"] == "ABC-001"


def test_update_task_cannot_change_state(api, project):
    created = _create_task(api, project.id)
    resp = api.put(f"/api/v1/tasks/{created['id']}", json={"state": "complete"})
    assert resp.status_code == 409
    assert api.get(f"/api/v1/tasks/{created['id']}").json()["state"] == "draft"


def test_delete_task(api, project):
    created = _create_task(api, project.id)

    resp = api.delete(f"/api/v1/tasks/{created['id']}")

    assert resp.status_code == 204
    assert api.get(f"/api/v1/tasks/{created['id']}").status_code == 404
    assert api.get("/api/v1/tasks").json() == []


def test_delete_task_scoped_to_user(api, project):
    created = _create_task(api, project.id)

    resp = api.delete(f"/api/v1/tasks/{created['id']}", headers={"X-User-Id": "someone-else"})

    assert resp.status_code == 404
    assert api.get(f"/api/v1/tasks/{created['id']}").status_code == 200


def test_delete_missing_task(api):
    assert api.delete("/api/v1/tasks/nope").status_code == 404


# === Run ===


def test_run_task_marks_pending(api, project, mock_client):
    mock_client.submit_task.return_value = TaskSubmission(remote_job_id="X1", branch_name="feature/x")
    created = _create_task(api, project.id)

    resp = api.post(f"/api/v1/tasks/{created['id']}/run")

    assert resp.status_code == 200
    data = resp.json()
    assert data["state"] == "pending"
    assert data["remote_job_id"] == "X1"
    assert data["branch_name"] == "feature/x"


def test_run_task_without_repository(api, bare_project, mock_client):
    created = _create_task(api, bare_project.id)

    resp = api.post(f"/api/v1/tasks/{created['id']}/run")

    assert resp.status_code == 422
    mock_client.submit_task.assert_not_called()


def test_run_complete_task_conflicts(api, store, project, mock_client):
    created = _create_task(api, project.id)
    store.record_task_run(created["id"], USER, remote_job_id="X0")
    store.apply_task_status(created["id"], "complete", "feature/done")

    resp = api.post(f"/api/v1/tasks/{created['id']}/run")

    assert resp.status_code == 409
    mock_client.submit_task.assert_not_called()


def test_run_task_remote_unavailable(api, project, mock_client):
    mock_client.submit_task.side_effect = RemoteUnavailable("connection refused")
    created = _create_task(api, project.id)

    resp = api.post(f"/api/v1/tasks/{created['id']}/run")

    assert resp.status_code == 503
    assert "did not start" in resp.json()["detail"]
    assert api.get(f"/api/v1/tasks/{created['id']}").json()["state"] == "draft"


def test_run_task_remote_rejected(api, project, mock_client):
    mock_client.submit_task.side_effect = RemoteRejected("API error: 500", status_code=500)
    created = _create_task(api, project.id)

    resp = api.post(f"/api/v1/tasks/{created['id']}/run")

    assert resp.status_code == 502
    assert api.get(f"/api/v1/tasks/{created['id']}").json()["remote_job_id"] is None


def test_run_missing_task(api):
    assert api.post("/api/v1/tasks/nope/run").status_code == 404
