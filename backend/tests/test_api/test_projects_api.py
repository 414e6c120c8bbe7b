"""Tests for project CRUD, archive and project run endpoints."""

from taskmanager.runs.errors import RemoteUnavailable

USER = "user-1"


def _create_project(api, **overrides):
    payload = {
        "name": "Acme API",
        "key": "ACM",
        "repository_url": "https://github.com/acme/api",
        "key_files": "a.py\nb.py",
        **overrides,
    }
    resp = api.post("/api/v1/projects", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_project(api):
    data = _create_project(api, description="Backend for Acme")
    assert data["key"] == "ACM"
    assert data["archived"] is False
    assert data["description"] == "Backend for Acme"


def test_create_project_suggests_key(api):
    data = _create_project(api, name="Billing service", key=None)
    assert data["key"] == "BIL"


def test_create_project_without_derivable_key(api):
    resp = api.post("/api/v1/projects", json={"name": "42"})
    assert resp.status_code == 422


def test_create_project_rejects_bad_key(api):
    resp = api.post("/api/v1/projects", json={"name": "Acme", "key": "acme"})
    assert resp.status_code == 422


def test_project_key_cannot_be_edited(api):
    created = _create_project(api)
    resp = api.put(f"/api/v1/projects/{created['id']}", json={"key": "XYZ"})
    assert resp.status_code == 422

    resp = api.put(f"/api/v1/projects/{created['id']}", json={"name": "Acme Platform"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Acme Platform"
    assert resp.json()["key"] == "ACM"


def test_archive_hides_project(api):
    created = _create_project(api)

    resp = api.delete(f"/api/v1/projects/{created['id']}")

    assert resp.status_code == 200
    assert resp.json()["archived"] is True
    assert api.get("/api/v1/projects").json() == []
    archived = api.get("/api/v1/projects", params={"include_archived": True}).json()
    assert [p["id"] for p in archived] == [created["id"]]


def test_projects_scoped_to_user(api):
    created = _create_project(api)
    resp = api.get(f"/api/v1/projects/{created['id']}", headers={"X-User-Id": "someone-else"})
    assert resp.status_code == 404
    assert api.get("/api/v1/projects", headers={"X-User-Id": "someone-else"}).json() == []


# === Project runs ===


def test_run_project_returns_seeded_run(api, mock_client):
    created = _create_project(api)

    resp = api.post(f"/api/v1/projects/{created['id']}/run")

    assert resp.status_code == 201
    run = resp.json()
    assert run["status"] == "active"
    assert run["remote_project_id"] == "P1"
    assert [s["description"] for s in run["subtasks"]] == ["Initializing...", "Initializing..."]
    mock_client.submit_project.assert_awaited_once_with("Acme API", ["a.py", "b.py"])

    runs = api.get(f"/api/v1/projects/{created['id']}/runs").json()
    assert [r["id"] for r in runs] == [run["id"]]
    fetched = api.get(f"/api/v1/project-runs/{run['id']}").json()
    assert fetched["subtasks"][0]["subtask_id"] == "s1"


def test_run_project_without_key_files(api, mock_client):
    created = _create_project(api, key_files=" , \n")

    resp = api.post(f"/api/v1/projects/{created['id']}/run")

    assert resp.status_code == 422
    mock_client.submit_project.assert_not_called()


def test_run_project_remote_unavailable(api, mock_client):
    mock_client.submit_project.side_effect = RemoteUnavailable("down")
    created = _create_project(api)

    resp = api.post(f"/api/v1/projects/{created['id']}/run")

    assert resp.status_code == 503
    assert "Project run did not start" in resp.json()["detail"]
    assert api.get(f"/api/v1/projects/{created['id']}/runs").json() == []


def test_project_run_not_found(api):
    assert api.get("/api/v1/project-runs/nope").status_code == 404
