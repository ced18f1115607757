"""Integration tests for connection API endpoints."""

from models import SyncJob
from tests.fixtures import TENANT_ID, create_connection, create_job


def test_list_connections_is_tenant_scoped(client, db, connection):
    create_connection(db, tenant_id="someone-else")

    response = client.get("/api/connections", params={"tenant_id": TENANT_ID})

    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [connection.id]


def test_list_connections_requires_tenant(client):
    assert client.get("/api/connections").status_code == 422


def test_get_connection(client, connection):
    response = client.get(f"/api/connections/{connection.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["provider_id"] == "tink"
    assert data["status"] == "active"
    assert data["sync_schedule"] == "daily"
    assert "access_token" not in data


def test_get_unknown_connection(client):
    assert client.get("/api/connections/nope").status_code == 404


def test_update_schedule_and_name(client, connection):
    response = client.patch(
        f"/api/connections/{connection.id}",
        json={"name": "Household ING", "sync_schedule": "hourly"},
    )

    assert response.status_code == 200
    assert response.json()["name"] == "Household ING"
    assert response.json()["sync_schedule"] == "hourly"


def test_update_rejects_unknown_schedule(client, connection):
    response = client.patch(f"/api/connections/{connection.id}", json={"sync_schedule": "sometimes"})
    assert response.status_code == 422


def test_health(client, db, connection):
    create_job(db, connection, "success", days_ago=1)
    create_job(db, connection, "failure", days_ago=2)

    response = client.get(f"/api/connections/{connection.id}/health")

    assert response.status_code == 200
    data = response.json()
    assert data["connection_id"] == connection.id
    assert data["short_window_jobs"] == 2
    assert data["band"] in {"excellent", "good", "fair", "poor", "critical"}
    assert isinstance(data["hints"], list)


def test_health_unknown_connection(client):
    assert client.get("/api/connections/nope/health").status_code == 404


def test_jobs_newest_first(client, db, connection):
    create_job(db, connection, "failure", days_ago=3)
    newest = create_job(db, connection, "success", days_ago=1)

    response = client.get(f"/api/connections/{connection.id}/jobs")

    assert response.status_code == 200
    jobs = response.json()
    assert len(jobs) == 2
    assert jobs[0]["id"] == newest.id


def test_disable_then_enable(client, db, connection):
    response = client.post(f"/api/connections/{connection.id}/disable")
    assert response.status_code == 200
    assert response.json()["status"] == "disabled"

    response = client.post(f"/api/connections/{connection.id}/enable")
    assert response.status_code == 200
    assert response.json()["status"] == "pending"

    events = client.get(f"/api/connections/{connection.id}/events").json()
    types = {e["event_type"] for e in events}
    assert {"disabled", "enabled", "status_changed"} <= types


def test_disabled_connection_is_skipped_by_sweep(client_with_mock_sync, db, connection):
    client_with_mock_sync.post(f"/api/connections/{connection.id}/disable")

    response = client_with_mock_sync.post("/api/sync/due")

    assert response.json() == []
    assert db.query(SyncJob).count() == 0
