import datetime as dt
import logging
import secrets
from typing import Iterable, Optional

from fastapi import Depends, Request

from admarket.auth.schemas import SessionData
from admarket.config import settings
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.errors import AuthenticationError, AuthorizationError
from admarket.nostr.key import NostrKeyError, normalize_pubkey
from admarket.services.api_keys import ApiKeyService

logger = logging.getLogger(__name__)

TEST_PUBKEY_PREFIX = "pk_test_"
CHALLENGE_KEY = "auth_challenge"


def set_session(request: Request, data: SessionData) -> None:
    if settings.debug:
        logger.debug("Setting session keys %s", list(data.model_dump().keys()))
    request.session["session"] = data.model_dump(mode="json")


def clear_session(request: Request) -> None:
    request.session.pop("session", None)
    request.session.pop(CHALLENGE_KEY, None)


def get_auth_session(request: Request) -> Optional[SessionData]:
    raw = request.session.get("session") if "session" in request.scope else None
    if not raw:
        return None
    try:
        session = SessionData(**raw)
    except (TypeError, ValueError):
        clear_session(request)
        return None
    if session.is_expired():
        if settings.debug:
            logger.debug("Session expired for request %s", request.url.path)
        clear_session(request)
        return None
    return session


def create_session(request: Request, user: models.User, is_test_mode: bool = False) -> SessionData:
    expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=settings.session_cookie_max_age)
    session = SessionData(pubkey=user.nostr_pubkey, user_id=user.id, is_test_mode=is_test_mode, expires_at=expires_at)
    set_session(request, session)
    return session


def issue_challenge(request: Request) -> str:
    challenge = secrets.token_hex(32)
    request.session[CHALLENGE_KEY] = challenge
    return challenge


def consume_challenge(request: Request, challenge: str | None) -> bool:
    """True when ``challenge`` is the one issued to this browser session; single use."""
    expected = request.session.pop(CHALLENGE_KEY, None)
    return bool(expected and challenge and secrets.compare_digest(expected, challenge))


def is_test_login(pubkey: str, is_test: bool) -> bool:
    if not settings.allow_test_mode:
        return False
    return is_test or pubkey.startswith(TEST_PUBKEY_PREFIX)


def is_test_mode(request: Request) -> bool:
    if not settings.allow_test_mode:
        return False
    session = get_auth_session(request)
    return bool(session and session.is_test_mode)


def api_key_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.headers.get("x-api-key") or None


async def get_current_user(request: Request, session: AsyncSession) -> Optional[models.User]:
    raw_key = api_key_from_request(request)
    if raw_key:
        user = await ApiKeyService(session).authenticate(raw_key)
        if user is not None:
            request.state.auth_method = "api_key"
            return user
        logger.info("Rejected API key on %s", request.url.path)
        return None
    auth_session = get_auth_session(request)
    if not auth_session:
        return None
    user = await session.get(models.User, auth_session.user_id)
    if user is None or user.nostr_pubkey != auth_session.pubkey:
        clear_session(request)
        return None
    request.state.auth_method = "session"
    return user


async def require_user(request: Request, session: AsyncSession = Depends(db_session)) -> models.User:
    user = await get_current_user(request, session)
    if user is None:
        raise AuthenticationError("Not authenticated")
    request.state.user = user
    return user


def ensure_role(request: Request, user: models.User, roles: Iterable[str], action: str = "perform this action") -> None:
    """Allow when the user's current role is listed; test mode waives the check."""
    allowed = set(roles)
    if user.current_role in allowed or is_test_mode(request):
        return
    raise AuthorizationError(f"Your current role cannot {action}", details={"requiredRoles": sorted(allowed)})


def is_admin(request: Request, user: models.User) -> bool:
    if user.current_role == models.Role.admin.value and models.Role.admin.value in user.active_roles():
        return True
    return user.nostr_pubkey in admin_allowlist()


def admin_allowlist() -> set[str]:
    allowlist: set[str] = set()
    for value in settings.admin_pubkeys:
        try:
            allowlist.add(normalize_pubkey(value))
        except NostrKeyError:
            logger.warning("Ignoring invalid ADMIN_PUBKEYS entry %s", value[:12])
    return allowlist


async def require_admin(request: Request, user: models.User = Depends(require_user)) -> models.User:
    if not is_admin(request, user):
        raise AuthorizationError("Admin access required")
    return user
