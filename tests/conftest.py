import asyncio

import pytest
from ecdsa import SECP256k1, SigningKey
from fastapi.testclient import TestClient

from admarket.config import settings
from admarket.errors import error_service
from admarket.main import app, init_models
from admarket.nostr.event import sign_challenge
from admarket.nostr.key import derive_pubkey_hex
from admarket.wallet.lightning import reset_lightning_backend


@pytest.fixture(autouse=True)
def isolated_app(tmp_path, monkeypatch):
    # One sqlite file per test; init_models refuses anything without "test" in the name.
    monkeypatch.setenv("TEST_DATABASE_URL", f"sqlite:///{tmp_path}/test.db")
    monkeypatch.setattr(settings, "allow_test_mode", True)
    monkeypatch.setattr(settings, "debug", False)
    monkeypatch.setattr(settings, "admin_pubkeys", [])
    asyncio.run(init_models())
    reset_lightning_backend()
    error_service.clear()
    yield
    reset_lightning_backend()


@pytest.fixture()
def client():
    return TestClient(app)


def make_client() -> TestClient:
    return TestClient(app)


def login_test_user(client: TestClient, name: str = "alice") -> dict:
    resp = client.post("/api/auth/login", json={"pubkey": f"pk_test_{name}", "isTest": True})
    assert resp.status_code == 200, resp.text
    return client.get("/api/auth/me").json()["user"]


def signed_login(client: TestClient, sk: SigningKey | None = None) -> tuple[SigningKey, str]:
    sk = sk or SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    resp = client.post(
        "/api/auth/login",
        json={"pubkey": pubkey, "challenge": challenge, "signature": sign_challenge(sk, challenge)},
    )
    assert resp.status_code == 200, resp.text
    return sk, pubkey


def fund(client: TestClient, amount: int) -> int:
    """Deposit through the mock Lightning backend and settle it; returns the new balance."""
    deposit = client.post("/api/payments/lightning", json={"action": "deposit", "amount": amount})
    assert deposit.status_code == 200, deposit.text
    check = client.get("/api/payments/lightning", params={"transactionId": deposit.json()["transactionId"]})
    assert check.json()["status"] == "COMPLETED"
    return client.get("/api/wallet").json()["balance"]


def ad_payload(**overrides) -> dict:
    payload = {
        "title": "Stack sats daily",
        "description": "Automatic recurring bitcoin buys",
        "targetUrl": "https://example.com/dca",
        "budget": 1000,
        "dailyBudget": 100,
        "bidPerImpression": 2,
        "bidPerClick": 20,
        "format": "text",
        "targetInterests": ["bitcoin"],
    }
    payload.update(overrides)
    return payload


def space_payload(**overrides) -> dict:
    payload = {
        "name": "Sidebar",
        "description": "Right column on every article",
        "website": "https://blog.example.com",
        "dimensions": "300x250",
        "allowedAdTypes": ["text", "text-image"],
        "contentCategory": "technology",
        "contentTags": ["bitcoin", "nostr"],
    }
    payload.update(overrides)
    return payload
