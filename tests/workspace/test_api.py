"""Integration tests for the workspace FastAPI application."""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from dayflow_tools.workspace import create_app
from dayflow_tools.workspace.service import WorkspaceSettings


def _create_client(tmp_path, **overrides) -> TestClient:
    settings = WorkspaceSettings(database_url=f"sqlite:///{tmp_path / 'api.db'}", **overrides)
    app = create_app(settings)
    app.state.database.create_all()
    return TestClient(app)


def _headers(user_id: uuid.UUID) -> dict:
    return {"X-User-ID": str(user_id)}


@pytest.fixture()
def client(tmp_path) -> TestClient:
    return _create_client(tmp_path)


@pytest.fixture()
def alice() -> dict:
    return _headers(uuid.uuid4())


@pytest.fixture()
def bob() -> dict:
    return _headers(uuid.uuid4())


def _shared_workspace(client: TestClient, owner: dict, member: dict) -> dict:
    created = client.post("/v1/workspaces", json={"title": "Team"}, headers=owner)
    assert created.status_code == 201
    workspace = created.json()
    invite = client.post(f"/v1/workspaces/{workspace['id']}/invite", headers=owner).json()
    accepted = client.post(f"/v1/invites/{invite['invite_token']}/accept", headers=member)
    assert accepted.status_code == 200
    return workspace


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_identity_are_rejected(client):
    missing = client.get("/v1/workspaces")
    assert missing.status_code == 401
    assert missing.json()["code"] == "UNAUTHENTICATED"

    malformed = client.get("/v1/workspaces", headers={"X-User-ID": "not-a-uuid"})
    assert malformed.status_code == 401


def test_profile_round_trip(client, alice):
    me = client.get("/v1/me", headers={**alice, "X-User-Email": "a@example.com"})
    assert me.status_code == 200
    assert me.json()["email"] == "a@example.com"

    updated = client.patch("/v1/me", json={"display_name": "Alice"}, headers=alice)
    assert updated.json()["display_name"] == "Alice"


def test_user_stats_endpoint(client, alice, bob):
    client.post("/v1/workspaces", json={"title": "Mine"}, headers=alice)

    stats = client.get(f"/v1/users/{alice['X-User-ID']}/stats", headers=bob)
    assert stats.status_code == 200
    body = stats.json()
    assert body["total_completed_cards"] == 0
    assert [w["title"] for w in body["workspace_stats"]] == ["Mine"]

    missing = client.get(f"/v1/users/{uuid.uuid4()}/stats", headers=bob)
    assert missing.status_code == 404


def test_workspace_snapshot_and_lock_flow(client, alice, bob):
    workspace = _shared_workspace(client, alice, bob)
    workspace_id = workspace["id"]
    todo_id = workspace["columns"][0]["id"]
    assert workspace["columns"][0]["title"] == "To Do"

    acquired = client.post(f"/v1/workspaces/{workspace_id}/lock", headers=alice)
    assert acquired.status_code == 200
    assert acquired.json()["editing_by"] == alice["X-User-ID"]

    conflict = client.post(f"/v1/workspaces/{workspace_id}/lock", headers=bob)
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "LOCK_CONFLICT"

    card = client.post(
        "/v1/cards",
        json={"type": "note", "title": "First", "column_id": todo_id},
        headers=alice,
    )
    assert card.status_code == 201
    card_id = card.json()["id"]

    denied = client.patch(f"/v1/cards/{card_id}", json={"title": "Mine"}, headers=bob)
    assert denied.status_code == 403
    assert denied.json()["code"] == "FORBIDDEN"
    assert denied.json()["reason"] == "held_by_other"

    moved = client.post(
        f"/v1/cards/{card_id}/move", json={"column_id": None, "order": 0}, headers=alice
    )
    assert moved.status_code == 200
    assert moved.json()["column_id"] is None

    snapshot = client.get(f"/v1/workspaces/{workspace_id}", headers=bob).json()
    assert snapshot["editing_by"] == alice["X-User-ID"]
    assert snapshot["columns"][0]["cards"] == []
    assert [c["id"] for c in snapshot["backlog"]] == [card_id]
    assert snapshot["invite_token"] is None

    released = client.delete(f"/v1/workspaces/{workspace_id}/lock", headers=alice)
    assert released.json()["editing_by"] is None

    status = client.get(f"/v1/workspaces/{workspace_id}/lock", headers=bob)
    assert status.json()["editing_by"] is None


def test_mutation_without_lease_reports_reason(client, alice):
    workspace = client.post("/v1/workspaces", json={"title": "Solo"}, headers=alice).json()

    response = client.post(
        f"/v1/workspaces/{workspace['id']}/columns", json={"title": "Later"}, headers=alice
    )

    assert response.status_code == 403
    assert response.json()["reason"] == "no_lease"


def test_invalid_target_is_a_bad_request(client, alice):
    workspace = client.post("/v1/workspaces", json={"title": "Solo"}, headers=alice).json()
    client.post(f"/v1/workspaces/{workspace['id']}/lock", headers=alice)
    card = client.post(
        "/v1/cards",
        json={"type": "note", "title": "x", "workspace_id": workspace["id"]},
        headers=alice,
    ).json()

    response = client.post(
        f"/v1/cards/{card['id']}/move",
        json={"column_id": str(uuid.uuid4()), "order": 0},
        headers=alice,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TARGET"


def test_outsiders_see_not_found(client, alice, bob):
    workspace = client.post("/v1/workspaces", json={"title": "Private"}, headers=alice).json()

    assert client.get(f"/v1/workspaces/{workspace['id']}", headers=bob).status_code == 404
    assert client.get(f"/v1/workspaces/{uuid.uuid4()}", headers=alice).status_code == 404


def test_list_workspaces_puts_pins_first(client, alice):
    first = client.post("/v1/workspaces", json={"title": "First"}, headers=alice).json()
    client.post("/v1/workspaces", json={"title": "Second"}, headers=alice)

    pinned = client.post(f"/v1/workspaces/{first['id']}/pin", headers=alice)
    assert pinned.json() == {"workspace_id": first["id"], "pinned": True}

    listing = client.get("/v1/workspaces", headers=alice).json()
    assert listing["total"] == 2
    assert listing["workspaces"][0]["id"] == first["id"]
    assert listing["workspaces"][0]["pinned"] is True


def test_roadmap_endpoints(client, alice):
    workspace = client.post("/v1/workspaces", json={"title": "Plan"}, headers=alice).json()
    client.post(f"/v1/workspaces/{workspace['id']}/lock", headers=alice)

    roadmap = client.post(
        f"/v1/workspaces/{workspace['id']}/roadmap", json={"title": "Q1"}, headers=alice
    )
    assert roadmap.status_code == 201
    roadmap_id = roadmap.json()["id"]

    parent = client.post(
        f"/v1/roadmaps/{roadmap_id}/nodes", json={"title": "Research"}, headers=alice
    ).json()
    client.post(
        f"/v1/roadmaps/{roadmap_id}/nodes",
        json={"title": "Read", "parent_id": parent["id"]},
        headers=alice,
    )

    tree = client.get(f"/v1/workspaces/{workspace['id']}/roadmap", headers=alice).json()
    assert tree["nodes"][0]["title"] == "Research"
    assert tree["nodes"][0]["children"][0]["title"] == "Read"

    deleted = client.delete(f"/v1/roadmap-nodes/{parent['id']}", headers=alice)
    assert deleted.status_code == 204
    tree = client.get(f"/v1/workspaces/{workspace['id']}/roadmap", headers=alice).json()
    assert tree["nodes"] == []


def test_rate_limit_returns_429(tmp_path, alice):
    client = _create_client(tmp_path, rate_limit_max_requests=2)

    for _ in range(2):
        assert client.post("/v1/workspaces", json={"title": "W"}, headers=alice).status_code == 201

    limited = client.post("/v1/workspaces", json={"title": "W"}, headers=alice)
    assert limited.status_code == 429
    assert limited.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(limited.headers["Retry-After"]) >= 1

    # Reads are not limited.
    assert client.get("/v1/workspaces", headers=alice).status_code == 200


def test_unexpected_errors_are_masked(tmp_path, alice, monkeypatch):
    settings = WorkspaceSettings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}", environment="production"
    )
    app = create_app(settings)
    app.state.database.create_all()
    client = TestClient(app, raise_server_exceptions=False)

    def explode(self, user_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(
        "dayflow_tools.workspace.service.WorkspaceService.workspace_list_response", explode
    )

    response = client.get("/v1/workspaces", headers=alice)
    assert response.status_code == 500
    assert response.json() == {"code": "INTERNAL", "detail": "Internal server error"}
