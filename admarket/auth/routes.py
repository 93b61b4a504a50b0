import logging

from fastapi import APIRouter, Depends, Request, Response, status

from admarket.auth.schemas import ApiKeyCreatePayload, ApiKeyUpdatePayload, LoginPayload, NostrLoginPayload
from admarket.auth.service import (
    clear_session,
    consume_challenge,
    create_session,
    get_current_user,
    is_test_login,
    issue_challenge,
    require_user,
)
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.errors import AuthenticationError, ValidationError
from admarket.nostr.event import AUTH_KIND, verify_challenge_signature, verify_event
from admarket.nostr.key import NostrKeyError, normalize_pubkey
from admarket.services.api_keys import ApiKeyService, serialize_api_key
from admarket.services.users import UserService, serialize_user

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _invalid_signature() -> AuthenticationError:
    return AuthenticationError("Invalid signature", code="INVALID_SIGNATURE")


@router.post("/challenge")
async def challenge(request: Request):
    return {"challenge": issue_challenge(request)}


@router.post("/login")
async def login(request: Request, payload: LoginPayload, session: AsyncSession = Depends(db_session)):
    if not isinstance(payload.pubkey, str) or not payload.pubkey.strip():
        raise ValidationError("Invalid pubkey", details={"field": "pubkey"})
    pubkey = payload.pubkey.strip()
    test_login = is_test_login(pubkey, payload.is_test)
    if not test_login:
        try:
            pubkey = normalize_pubkey(pubkey)
        except NostrKeyError as exc:
            raise ValidationError("Invalid pubkey", details={"field": "pubkey"}) from exc
        if not payload.signature or not payload.challenge:
            raise AuthenticationError("Signed challenge required", code="SIGNATURE_REQUIRED")
        if not consume_challenge(request, payload.challenge):
            raise AuthenticationError("Unknown or expired challenge", code="INVALID_CHALLENGE")
        if not verify_challenge_signature(pubkey, payload.challenge, payload.signature):
            raise _invalid_signature()
    user = await UserService(session).find_or_create(pubkey, is_test=test_login)
    create_session(request, user, is_test_mode=test_login)
    return {"success": True, "message": "Authentication successful", "userId": user.id}


@router.post("/nostr-login")
async def nostr_login(request: Request, payload: NostrLoginPayload, session: AsyncSession = Depends(db_session)):
    """Log in with either a signature over an issued challenge or a signed auth event."""
    if payload.event:
        pubkey, challenge_value = _verify_auth_event(payload.event)
    else:
        errors = [
            {"field": field, "message": f"{field} is required"}
            for field in ("pubkey", "signature", "challenge")
            if not getattr(payload, field)
        ]
        if errors:
            raise ValidationError("Missing required fields", details={"fields": errors})
        try:
            pubkey = normalize_pubkey(payload.pubkey)
        except NostrKeyError as exc:
            raise ValidationError("Invalid pubkey", details={"fields": [{"field": "pubkey", "message": "Invalid pubkey"}]}) from exc
        challenge_value = payload.challenge
        if not verify_challenge_signature(pubkey, challenge_value, payload.signature):
            raise _invalid_signature()
    if not consume_challenge(request, challenge_value):
        raise AuthenticationError("Unknown or expired challenge", code="INVALID_CHALLENGE")
    user = await UserService(session).find_or_create(pubkey)
    create_session(request, user)
    return {"user": serialize_user(user)}


def _verify_auth_event(event: dict) -> tuple[str, str]:
    if event.get("kind") != AUTH_KIND or not verify_event(event):
        raise _invalid_signature()
    challenge_value = next((t[1] for t in event.get("tags") or [] if isinstance(t, list) and len(t) >= 2 and t[0] == "challenge"), None)
    if not challenge_value:
        raise ValidationError("Auth event has no challenge tag")
    return event["pubkey"], challenge_value


@router.post("/logout")
async def logout(request: Request):
    clear_session(request)
    return {"success": True}


@router.get("/check")
async def check(request: Request, session: AsyncSession = Depends(db_session)):
    user = await get_current_user(request, session)
    if user is None:
        return {"authenticated": False}
    return {"authenticated": True, "pubkey": user.nostr_pubkey, "userId": user.id, "currentRole": user.current_role}


@router.get("/me")
async def me(user: models.User = Depends(require_user)):
    return {"user": serialize_user(user)}


@router.get("/api-keys")
async def list_api_keys(user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    keys = await ApiKeyService(session).list_for_user(user.id)
    return {"apiKeys": [serialize_api_key(k) for k in keys]}


@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
async def create_api_key(
    payload: ApiKeyCreatePayload, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    api_key, raw_key = await ApiKeyService(session).create(
        user.id,
        payload.name,
        description=payload.description,
        scopes=payload.scopes,
        key_type=payload.type,
        expires_at=payload.expires_at,
    )
    return {"apiKey": {**serialize_api_key(api_key), "key": raw_key}}


@router.get("/api-keys/{key_id}")
async def get_api_key(key_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    return {"apiKey": serialize_api_key(await ApiKeyService(session).get_owned(key_id, user.id))}


@router.patch("/api-keys/{key_id}")
async def update_api_key(
    key_id: str,
    payload: ApiKeyUpdatePayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    api_key = await ApiKeyService(session).update(key_id, user.id, **payload.model_dump(exclude_unset=True))
    return {"apiKey": serialize_api_key(api_key)}


@router.delete("/api-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(key_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    await ApiKeyService(session).revoke(key_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
