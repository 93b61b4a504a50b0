import json
import time

import pytest
from ecdsa import SECP256k1, SigningKey

from admarket.nostr.event import (
    AUTH_KIND,
    NostrEventError,
    build_auth_event_template,
    parse_metadata_content,
    sign_challenge,
    sign_event,
    verify_challenge_signature,
    verify_event,
)
from admarket.nostr.key import NostrKeyError, decode_nip19, derive_pubkey_hex, encode_npub, normalize_pubkey
from admarket.nostr.relay_client import RelayBackoff, TTLCache, newest_profile, relay_client

from conftest import login_test_user


def test_npub_and_hex_normalize_to_same_key():
    pubkey = derive_pubkey_hex(SigningKey.generate(curve=SECP256k1))
    npub = encode_npub(pubkey)
    assert npub.startswith("npub1")
    assert decode_nip19(npub) == pubkey
    assert normalize_pubkey(npub) == pubkey
    assert normalize_pubkey(pubkey.upper()) == pubkey


@pytest.mark.parametrize("value", ["", "npub1notreal", "abc123", "g" * 64])
def test_normalize_pubkey_rejects_garbage(value):
    with pytest.raises(NostrKeyError):
        normalize_pubkey(value)


def test_auth_event_signing_and_verification():
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    event = sign_event(sk, build_auth_event_template(pubkey, "challenge-1"))
    assert event["kind"] == AUTH_KIND
    assert verify_event(event)

    tampered = dict(event, content="changed")
    assert not verify_event(tampered)
    other = derive_pubkey_hex(SigningKey.generate(curve=SECP256k1))
    assert not verify_event(dict(event, pubkey=other))
    assert not verify_event(dict(event, sig=5))
    assert not verify_event(dict(event, pubkey=None))


def test_challenge_signature():
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    signature = sign_challenge(sk, "abc")
    assert verify_challenge_signature(pubkey, "abc", signature)
    assert not verify_challenge_signature(pubkey, "abd", signature)
    assert not verify_challenge_signature(pubkey, "abc", "zz")
    assert not verify_challenge_signature(pubkey, "abc", "")


def test_parse_metadata_content():
    assert parse_metadata_content({"kind": 0, "content": json.dumps({"name": "satoshi"})}) == {"name": "satoshi"}
    with pytest.raises(NostrEventError):
        parse_metadata_content({"kind": 1, "content": "{}"})
    with pytest.raises(NostrEventError):
        parse_metadata_content({"kind": 0, "content": "[1, 2]"})


def metadata_event(sk, created_at: int, content: str) -> dict:
    template = {"pubkey": derive_pubkey_hex(sk), "created_at": created_at, "kind": 0, "tags": [], "content": content}
    return sign_event(sk, template)


def test_newest_profile_skips_malformed_and_foreign_events():
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    other = SigningKey.generate(curve=SECP256k1)
    events = [
        metadata_event(sk, 100, json.dumps({"name": "old"})),
        metadata_event(sk, 300, "not json"),
        metadata_event(sk, 200, json.dumps({"name": "new"})),
        dict(metadata_event(other, 400, json.dumps({"name": "someone else"})), pubkey=pubkey),
        "not an event",
    ]
    assert newest_profile(events, pubkey) == {"name": "new"}
    assert newest_profile([], pubkey) is None


def test_newest_profile_ignores_forged_metadata():
    sk = SigningKey.generate(curve=SECP256k1)
    pubkey = derive_pubkey_hex(sk)
    genuine = metadata_event(sk, 100, json.dumps({"name": "satoshi"}))
    forged = dict(genuine, created_at=500, content=json.dumps({"name": "impostor", "lud16": "thief@example.com"}))
    assert newest_profile([genuine, forged], pubkey) == {"name": "satoshi"}


def test_relay_backoff_doubles_and_caps():
    backoff = RelayBackoff()
    delays = [backoff.record_failure("wss://relay.example") for _ in range(7)]
    assert delays == [5, 10, 20, 40, 80, 120, 120]
    assert backoff.is_on_cooldown("wss://relay.example")
    backoff.record_success("wss://relay.example")
    assert not backoff.is_on_cooldown("wss://relay.example")


def test_ttl_cache_expires(monkeypatch):
    cache = TTLCache(ttl_seconds=10)
    cache.set("k", [1])
    assert cache.get("k") == [1]
    now = time.time()
    monkeypatch.setattr(time, "time", lambda: now + 11)
    assert cache.get("k") is None


def test_ttl_cache_prunes_expired_entries_on_write(monkeypatch):
    cache = TTLCache(ttl_seconds=10)
    for i in range(20):
        cache.set(f"profile-{i}", {"n": i})
    now = time.time()
    monkeypatch.setattr(time, "time", lambda: now + 11)
    cache.set("fresh", {"n": -1})
    assert len(cache) == 1


def test_ttl_cache_is_bounded():
    cache = TTLCache(ttl_seconds=60, max_entries=5)
    for i in range(12):
        cache.set(f"profile-{i}", i)
    assert len(cache) == 5
    assert cache.get("profile-6") is None
    assert cache.get("profile-11") == 11


async def test_relay_fetch_is_skipped_under_pytest():
    assert await relay_client.fetch_events([{"kinds": [0]}], ["wss://relay.example"]) == []


def test_profile_endpoint(client):
    pubkey = derive_pubkey_hex(SigningKey.generate(curve=SECP256k1))
    resp = client.get("/api/nostr/profile", params={"npub": encode_npub(pubkey)})
    assert resp.json() == {"profile": None, "pubkey": pubkey}
    assert client.get("/api/nostr/profile", params={"pubkey": "nope"}).status_code == 400
    assert client.get("/api/nostr/profile").status_code == 400


def test_profile_endpoint_defaults_to_session_pubkey(client):
    login_test_user(client)
    # test identities are not real keys
    assert client.get("/api/nostr/profile").status_code == 400
