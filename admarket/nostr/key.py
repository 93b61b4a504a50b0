import re
from bech32 import bech32_decode, convertbits, bech32_encode
from ecdsa import SigningKey, VerifyingKey, SECP256k1

HEX_PUBKEY = re.compile(r"^[0-9a-f]{64}$")


class NostrKeyError(Exception):
    pass


def decode_nip19(value: str) -> str:
    hrp, data = bech32_decode(value)
    if hrp in {"nsec", "npub"} and data is not None:
        decoded = convertbits(data, 5, 8, False)
        if decoded is None or len(decoded) != 32:
            raise NostrKeyError("Failed to decode bech32 key")
        return bytes(decoded).hex()
    raise NostrKeyError("Invalid NIP-19 key")


def encode_npub(pubkey_hex: str) -> str:
    try:
        raw = bytes.fromhex(pubkey_hex)
    except ValueError as exc:
        raise NostrKeyError("Public key must be hex") from exc
    data = convertbits(raw, 8, 5, True)
    if data is None:
        raise NostrKeyError("Failed to encode npub")
    return bech32_encode("npub", list(data))


def normalize_pubkey(value: str) -> str:
    """Accept an npub or 64-char hex pubkey and return lowercase hex."""
    value = (value or "").strip()
    if value.lower().startswith("npub1"):
        return decode_nip19(value.lower())
    if HEX_PUBKEY.match(value.lower()):
        return value.lower()
    raise NostrKeyError("Invalid public key")


def derive_pubkey_hex(sk: SigningKey) -> str:
    """x-only public key, the form Nostr uses for identities."""
    return sk.get_verifying_key().to_string()[:32].hex()


def verifying_keys(pubkey_hex: str) -> list[VerifyingKey]:
    """Candidate curve points for a pubkey; x-only keys map to both parities."""
    raw = bytes.fromhex(pubkey_hex)
    if len(raw) == 32:
        candidates = [b"\x02" + raw, b"\x03" + raw]
    else:
        candidates = [raw]
    keys: list[VerifyingKey] = []
    for candidate in candidates:
        try:
            keys.append(VerifyingKey.from_string(candidate, curve=SECP256k1))
        except Exception:  # noqa: BLE001 - not a point on the curve
            continue
    return keys
