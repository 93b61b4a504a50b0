import pytest
from ecdsa import SECP256k1, SigningKey

from admarket.config import settings
from admarket.nostr.event import build_auth_event_template, compute_event_id, serialize_event, sign_challenge, sign_event
from admarket.nostr.key import derive_pubkey_hex, encode_npub

from conftest import login_test_user, signed_login


def test_test_login_creates_user_with_test_roles(client):
    user = login_test_user(client)
    assert user["pubkey"] == "pk_test_alice"
    assert user["isTestUser"] is True
    assert user["currentRole"] == "viewer"
    assert set(user["roles"]) == {"viewer", "advertiser", "publisher"}


def test_login_response_shape(client):
    resp = client.post("/api/auth/login", json={"pubkey": "pk_test_bob", "isTest": True})
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Authentication successful"
    assert body["userId"]


def test_login_rejects_non_string_pubkey(client):
    resp = client.post("/api/auth/login", json={"pubkey": 12345})
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


def test_test_prefix_ignored_when_test_mode_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_test_mode", False)
    resp = client.post("/api/auth/login", json={"pubkey": "pk_test_mallory", "isTest": True})
    assert resp.status_code == 400


def test_signed_challenge_login(client):
    sk, pubkey = signed_login(client)
    check = client.get("/api/auth/check").json()
    assert check["authenticated"] is True
    assert check["pubkey"] == pubkey


def test_login_without_signature_is_rejected(client):
    pubkey = derive_pubkey_hex(SigningKey.generate(curve=SECP256k1))
    resp = client.post("/api/auth/login", json={"pubkey": pubkey})
    assert resp.status_code == 401
    assert resp.json()["details"]["code"] == "SIGNATURE_REQUIRED"


def test_challenge_is_single_use(client):
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    payload = {"pubkey": pubkey, "challenge": challenge, "signature": sign_challenge(sk, challenge)}
    assert client.post("/api/auth/login", json=payload).status_code == 200
    replay = client.post("/api/auth/login", json=payload)
    assert replay.status_code == 401
    assert replay.json()["details"]["code"] == "INVALID_CHALLENGE"


def test_login_accepts_npub(client):
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    resp = client.post(
        "/api/auth/login",
        json={"pubkey": encode_npub(pubkey), "challenge": challenge, "signature": sign_challenge(sk, challenge)},
    )
    assert resp.status_code == 200
    assert client.get("/api/auth/me").json()["user"]["pubkey"] == pubkey


def test_nostr_login_missing_fields(client):
    resp = client.post("/api/auth/nostr-login", json={"pubkey": "a" * 64})
    assert resp.status_code == 400
    fields = {f["field"] for f in resp.json()["details"]["fields"]}
    assert fields == {"signature", "challenge"}


def test_nostr_login_invalid_signature(client):
    sk = SigningKey.generate(curve=SECP256k1)
    other = SigningKey.generate(curve=SECP256k1)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    resp = client.post(
        "/api/auth/nostr-login",
        json={"pubkey": derive_pubkey_hex(sk), "challenge": challenge, "signature": sign_challenge(other, challenge)},
    )
    assert resp.status_code == 401
    assert resp.json()["details"]["code"] == "INVALID_SIGNATURE"


def test_nostr_login_with_signed_auth_event(client):
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    event = sign_event(sk, build_auth_event_template(pubkey, challenge))
    resp = client.post("/api/auth/nostr-login", json={"event": event})
    assert resp.status_code == 200
    assert resp.json()["user"]["pubkey"] == pubkey


def test_nostr_login_rejects_tampered_event(client):
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    event = sign_event(sk, build_auth_event_template(pubkey, challenge))
    event["tags"] = [["challenge", "something-else"]]
    assert client.post("/api/auth/nostr-login", json={"event": event}).status_code == 401


@pytest.mark.parametrize("field", ["sig", "pubkey"])
def test_nostr_login_rejects_non_string_key_material(client, field):
    sk = SigningKey.generate(curve=SECP256k1)
    challenge = client.post("/api/auth/challenge").json()["challenge"]
    event = sign_event(sk, build_auth_event_template(derive_pubkey_hex(sk), challenge))
    event[field] = 5
    event["id"] = compute_event_id(serialize_event(event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]))
    resp = client.post("/api/auth/nostr-login", json={"event": event})
    assert resp.status_code == 401
    assert resp.json()["details"]["code"] == "INVALID_SIGNATURE"


def test_nostr_login_ignores_malformed_tags(client):
    sk = SigningKey.generate(curve=SECP256k1)
    template = build_auth_event_template(derive_pubkey_hex(sk), "unused")
    template["tags"] = [5, "challenge"]
    resp = client.post("/api/auth/nostr-login", json={"event": sign_event(sk, template)})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Auth event has no challenge tag"


def test_logout_clears_session(client):
    login_test_user(client)
    assert client.get("/api/auth/check").json()["authenticated"] is True
    assert client.post("/api/auth/logout").json() == {"success": True}
    assert client.get("/api/auth/check").json() == {"authenticated": False}
    assert client.get("/api/auth/me").status_code == 401


def test_me_requires_authentication(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Not authenticated"
