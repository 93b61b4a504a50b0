from fastapi.testclient import TestClient

from admarket.main import app

from conftest import login_test_user


def create_key(client, **overrides):
    payload = {"name": "Blog widget", "type": "publisher", "scopes": "read,ads"}
    payload.update(overrides)
    return client.post("/api/auth/api-keys", json=payload)


def test_create_key_returns_secret_once(client):
    login_test_user(client)
    resp = create_key(client)
    assert resp.status_code == 201
    key = resp.json()["apiKey"]
    assert key["key"].startswith("pub_")
    assert key["scopes"] == ["read", "ads"]

    listed = client.get("/api/auth/api-keys").json()["apiKeys"]
    assert [k["id"] for k in listed] == [key["id"]]
    assert "key" not in listed[0]


def test_create_key_requires_name(client):
    login_test_user(client)
    resp = create_key(client, name="  ")
    assert resp.status_code == 422
    assert resp.json()["message"] == "Name is required"


def test_invalid_scope_rejected(client):
    login_test_user(client)
    assert create_key(client, scopes="read,everything").status_code == 400


def test_bearer_key_authenticates_and_counts_usage(client):
    user = login_test_user(client)
    key = create_key(client, type="developer").json()["apiKey"]
    assert key["key"].startswith("dev_")

    anonymous = TestClient(app)
    me = anonymous.get("/api/auth/me", headers={"Authorization": f"Bearer {key['key']}"})
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user["id"]
    via_header = anonymous.get("/api/auth/me", headers={"X-API-Key": key["key"]})
    assert via_header.status_code == 200

    detail = client.get(f"/api/auth/api-keys/{key['id']}").json()["apiKey"]
    assert detail["usageCount"] == 2
    assert detail["lastUsed"] is not None


def test_deactivated_and_revoked_keys_stop_working(client):
    login_test_user(client)
    key = create_key(client).json()["apiKey"]
    anonymous = TestClient(app)
    headers = {"X-API-Key": key["key"]}

    patched = client.patch(f"/api/auth/api-keys/{key['id']}", json={"isActive": False})
    assert patched.json()["apiKey"]["isActive"] is False
    assert anonymous.get("/api/auth/me", headers=headers).status_code == 401

    client.patch(f"/api/auth/api-keys/{key['id']}", json={"isActive": True})
    assert anonymous.get("/api/auth/me", headers=headers).status_code == 200

    assert client.delete(f"/api/auth/api-keys/{key['id']}").status_code == 204
    assert anonymous.get("/api/auth/me", headers=headers).status_code == 401
    assert client.get(f"/api/auth/api-keys/{key['id']}").status_code == 404


def test_expired_key_rejected(client):
    login_test_user(client)
    key = create_key(client, expiresAt="2000-01-01T00:00:00Z").json()["apiKey"]
    resp = TestClient(app).get("/api/auth/me", headers={"X-API-Key": key["key"]})
    assert resp.status_code == 401


def test_keys_are_private_to_owner(client):
    login_test_user(client, "owner")
    key = create_key(client).json()["apiKey"]
    other = TestClient(app)
    login_test_user(other, "intruder")
    assert other.get(f"/api/auth/api-keys/{key['id']}").status_code == 404
    assert other.delete(f"/api/auth/api-keys/{key['id']}").status_code == 404
