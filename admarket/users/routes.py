import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from admarket.auth.service import get_auth_session, require_user
from admarket.config import settings
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.errors import ValidationError
from admarket.nostr.key import NostrKeyError, normalize_pubkey
from admarket.nostr.relay_client import relay_client
from admarket.users.service import PreferencesPayload, PreferencesService, StatsService, serialize_preferences

router = APIRouter(prefix="/api", tags=["users"])
logger = logging.getLogger(__name__)


@router.get("/user/preferences")
async def get_preferences(user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    prefs = await PreferencesService(session).get_or_create(user)
    return {"preferences": serialize_preferences(prefs)}


@router.api_route("/user/preferences", methods=["PUT", "PATCH"])
async def update_preferences(
    payload: PreferencesPayload, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    prefs = await PreferencesService(session).update(user, payload)
    return {"preferences": serialize_preferences(prefs)}


@router.get("/stats/user")
async def user_stats(user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    return {"stats": await StatsService(session).for_user(user)}


@router.get("/nostr/profile")
async def nostr_profile(request: Request, pubkey: Optional[str] = None, npub: Optional[str] = None):
    raw = pubkey or npub
    if not raw:
        auth_session = get_auth_session(request)
        if auth_session is None:
            raise ValidationError("pubkey or npub is required")
        raw = auth_session.pubkey
    try:
        pubkey_hex = normalize_pubkey(raw)
    except NostrKeyError as exc:
        raise ValidationError("Invalid pubkey or npub", details={"field": "pubkey"}) from exc
    profile = await relay_client.fetch_profile(pubkey_hex, settings.relay_urls)
    if profile is None:
        logger.info("No profile found for %s", pubkey_hex[:8])
    return {"profile": profile, "pubkey": pubkey_hex}
