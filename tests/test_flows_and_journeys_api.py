from __future__ import annotations

from fastapi.testclient import TestClient

from web.backend.main import app


def test_journey_crud_and_newest_first(monkeypatch) -> None:
    monkeypatch.setenv("MOZART_DEFAULT_USER_ID", "user-1")
    with TestClient(app) as client:
        first = client.post("/api/journeys", json={"name": "Onboarding", "description": "first"})
        second = client.post("/api/journeys", json={"name": "Billing"})
        listing = client.get("/api/journeys").json()

        jid = first.json()["id"]
        updated = client.put(f"/api/journeys/{jid}", json={"name": "Signup"})
        fetched = client.get(f"/api/journeys/{jid}")
        deleted = client.delete(f"/api/journeys/{jid}")
        missing = client.get(f"/api/journeys/{jid}")

    assert first.status_code == 201
    assert first.json()["userId"] == "user-1"
    assert [j["name"] for j in listing] == ["Billing", "Onboarding"]
    assert second.json()["description"] == ""
    assert updated.json()["name"] == "Signup"
    assert updated.json()["description"] == "first"
    assert fetched.json()["name"] == "Signup"
    assert deleted.json() == {"status": "deleted", "id": jid}
    assert missing.status_code == 404


def test_create_flow_creates_empty_first_version() -> None:
    with TestClient(app) as client:
        created = client.post("/api/flows", json={"journeyId": "j1", "name": "Main"})
        flow_id = created.json()["id"]
        definition = client.get(f"/api/flow-definitions/{flow_id}")

    assert created.status_code == 201
    assert definition.status_code == 200
    assert definition.json()["version"] == 1
    assert definition.json()["nodes"] == []
    assert definition.json()["edges"] == []


def test_list_flows_filters_by_journey_and_sorts_by_position() -> None:
    with TestClient(app) as client:
        client.post("/api/flows", json={"journeyId": "j1", "name": "second", "position": 2})
        client.post("/api/flows", json={"journeyId": "j1", "name": "first", "position": 1})
        client.post("/api/flows", json={"journeyId": "j2", "name": "elsewhere", "position": 0})
        j1 = client.get("/api/flows", params={"journeyId": "j1"}).json()
        everything = client.get("/api/flows").json()

    assert [f["name"] for f in j1] == ["first", "second"]
    assert len(everything) == 3


def test_update_and_delete_flow_cascades_to_definitions() -> None:
    with TestClient(app) as client:
        flow_id = client.post("/api/flows", json={"journeyId": "j1", "name": "Main"}).json()["id"]
        client.put(f"/api/flow-definitions/{flow_id}", json={"nodes": [], "edges": []})

        updated = client.put(f"/api/flows/{flow_id}", json={"position": 4})
        deleted = client.delete(f"/api/flows/{flow_id}")
        gone = client.get(f"/api/flows/{flow_id}")
        definition = client.get(f"/api/flow-definitions/{flow_id}")
        again = client.delete(f"/api/flows/{flow_id}")

    assert updated.json()["position"] == 4
    assert updated.json()["name"] == "Main"
    assert deleted.json() == {"status": "deleted", "id": flow_id}
    assert gone.status_code == 404
    assert definition.status_code == 404
    assert again.status_code == 404
