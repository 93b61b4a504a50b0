import hashlib
import json
import time
from typing import Any, Dict, List

from ecdsa import SigningKey, BadSignatureError
from ecdsa.util import sigdecode_string

from admarket.nostr.key import verifying_keys

METADATA_KIND = 0
AUTH_KIND = 22242


class NostrEventError(Exception):
    pass


def serialize_event(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> str:
    data = [0, pubkey, created_at, kind, tags, content]
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def compute_event_id(serialized_event: str) -> str:
    return hashlib.sha256(serialized_event.encode("utf-8")).hexdigest()


def sign_event(sk: SigningKey, event: Dict[str, Any]) -> Dict[str, Any]:
    serialized = serialize_event(event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"])
    event_id = compute_event_id(serialized)
    signature = sk.sign_digest_deterministic(bytes.fromhex(event_id)).hex()
    event["id"] = event_id
    event["sig"] = signature
    return event


def _verify_digest(pubkey_hex: str, signature_hex: str, digest: bytes) -> bool:
    try:
        signature = bytes.fromhex(signature_hex)
        keys = verifying_keys(pubkey_hex)
    except (TypeError, ValueError):
        return False
    for vk in keys:
        try:
            if vk.verify_digest(signature, digest, sigdecode=sigdecode_string):
                return True
        except (BadSignatureError, ValueError, AssertionError):
            continue
    return False


def verify_event(event: Dict[str, Any]) -> bool:
    if not isinstance(event.get("pubkey"), str) or not isinstance(event.get("sig"), str):
        return False
    try:
        serialized = serialize_event(event["pubkey"], event["created_at"], event["kind"], event.get("tags", []), event.get("content", ""))
    except KeyError:
        return False
    event_id = compute_event_id(serialized)
    if event_id != event.get("id"):
        return False
    return _verify_digest(event["pubkey"], event["sig"], bytes.fromhex(event_id))


def challenge_digest(challenge: str) -> bytes:
    return hashlib.sha256(challenge.encode("utf-8")).digest()


def sign_challenge(sk: SigningKey, challenge: str) -> str:
    return sk.sign_digest_deterministic(challenge_digest(challenge)).hex()


def verify_challenge_signature(pubkey_hex: str, challenge: str, signature_hex: str) -> bool:
    """Check a secp256k1 signature over sha256(challenge) for the given pubkey."""
    if not pubkey_hex or not challenge or not signature_hex:
        return False
    return _verify_digest(pubkey_hex, signature_hex, challenge_digest(challenge))


def build_auth_event_template(pubkey: str, challenge: str) -> Dict[str, Any]:
    return {
        "pubkey": pubkey,
        "created_at": int(time.time()),
        "kind": AUTH_KIND,
        "tags": [["challenge", challenge]],
        "content": "",
    }


def parse_metadata_content(event: Dict[str, Any]) -> Dict[str, Any]:
    """Decode the JSON content of a kind-0 metadata event."""
    if event.get("kind") != METADATA_KIND:
        raise NostrEventError("Not a metadata event")
    try:
        content = json.loads(event.get("content") or "{}")
    except json.JSONDecodeError as exc:
        raise NostrEventError("Metadata content is not JSON") from exc
    if not isinstance(content, dict):
        raise NostrEventError("Metadata content must be an object")
    return content
