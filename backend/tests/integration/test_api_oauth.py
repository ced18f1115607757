"""Integration tests for the OAuth authorization endpoints."""

from models import Connection, Credential
from tests.fixtures import TENANT_ID, create_connection


def test_authorize_returns_url_and_state(client):
    response = client.get("/api/oauth/tink/authorize", params={"tenant_id": TENANT_ID, "market": "NL"})

    assert response.status_code == 200
    data = response.json()
    assert data["state"]
    assert f"state={data['state']}" in data["url"]


def test_authorize_unconfigured_provider(client):
    response = client.get("/api/oauth/plaid/authorize", params={"tenant_id": TENANT_ID})
    assert response.status_code == 404


def test_callback_creates_connection(client, db):
    response = client.post("/api/oauth/tink/callback", json={
        "tenant_id": TENANT_ID, "code": "abc", "name": "ING", "market": "nl",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "pending"
    assert data["name"] == "ING"
    assert data["market"] == "NL"
    assert "access_token" not in data
    credential = db.query(Credential).filter_by(connection_id=data["id"]).one()
    assert credential.access_token == "access-abc"


def test_callback_rejected_code(client, db):
    response = client.post("/api/oauth/tink/callback", json={"tenant_id": TENANT_ID, "code": "bad-code"})

    assert response.status_code == 400
    assert db.query(Connection).count() == 0


def test_callback_reauthorizes_error_connection(client, db):
    connection = create_connection(db, status="error", consecutive_failures=2)

    response = client.post("/api/oauth/tink/callback", json={
        "tenant_id": TENANT_ID, "code": "again", "connection_id": connection.id,
    })

    assert response.status_code == 200
    assert response.json()["id"] == connection.id
    assert response.json()["status"] == "active"
    assert db.query(Connection).count() == 1


def test_callback_unknown_connection(client):
    response = client.post("/api/oauth/tink/callback", json={
        "tenant_id": TENANT_ID, "code": "x", "connection_id": "missing",
    })
    assert response.status_code == 404


def test_callback_requires_code(client):
    response = client.post("/api/oauth/tink/callback", json={"tenant_id": TENANT_ID, "code": ""})
    assert response.status_code == 422
