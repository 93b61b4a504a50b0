from fastapi.testclient import TestClient

from admarket.config import settings
from admarket.main import app

from conftest import login_test_user


def test_session_cookie_name_and_flags(client):
    resp = client.post("/api/auth/login", json={"pubkey": "pk_test_cookie", "isTest": True})
    set_cookie = resp.headers.get("set-cookie", "")
    assert set_cookie.startswith(f"{settings.session_cookie_name}=")
    assert "samesite=strict" in set_cookie.lower()
    assert "httponly" in set_cookie.lower()
    # No secure flag expected when https_only is off (local http)
    assert "Secure" not in set_cookie


def test_challenge_is_stored_in_session_cookie(client):
    client.post("/api/auth/challenge")
    assert settings.session_cookie_name in client.cookies


def test_forged_cookie_is_ignored(client):
    login_test_user(client)
    forged = {"Cookie": f"{settings.session_cookie_name}=forged-value"}
    assert TestClient(app).get("/api/auth/check", headers=forged).json() == {"authenticated": False}
