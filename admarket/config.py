import logging
import os
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def get_env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value else None


def env_flag(name: str, default: str = "") -> bool:
    return (get_env(name) or default).lower() in TRUTHY


class Settings(BaseModel):
    database_url: str = get_env("DATABASE_URL") or "sqlite:///./admarket.db"
    relay_urls: list[str] = []
    session_secret: str = get_env("SESSION_SECRET") or "change-me-session-key"
    debug: bool = env_flag("DEBUG")
    allow_test_mode: bool = env_flag("ALLOW_TEST_MODE", get_env("DEBUG") or "")
    admin_pubkeys: list[str] = []
    session_cookie_name: str = get_env("SESSION_COOKIE_NAME") or "nostr_auth_session"
    session_cookie_same_site: str = get_env("SESSION_SAME_SITE") or "strict"
    session_cookie_max_age: int = int(get_env("SESSION_MAX_AGE") or 60 * 60 * 24 * 30)
    session_cookie_https_only: bool = env_flag("SESSION_HTTPS_ONLY")
    lightning_backend: str = (get_env("LIGHTNING_BACKEND") or "mock").lower()
    lnbits_url: str = get_env("LNBITS_URL") or "https://legend.lnbits.com"
    lnbits_api_key: str | None = get_env("LNBITS_API_KEY")
    log_level: str = (get_env("LOG_LEVEL") or "INFO").upper()


try:
    settings = Settings(
        relay_urls=[
            u
            for u in (get_env("NOSTR_RELAYS") or "wss://relay.damus.io,wss://relay.primal.net,wss://nos.lol").split(",")
            if u
        ],
        admin_pubkeys=[u.strip() for u in (get_env("ADMIN_PUBKEYS") or "").split(",") if u.strip()],
    )
except ValidationError:
    settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


if not settings.debug and settings.session_secret == "change-me-session-key":
    logger.warning("SESSION_SECRET is using the insecure default; set SESSION_SECRET to a strong value in production.")

if settings.debug and settings.session_cookie_https_only:
    logger.warning("SESSION_HTTPS_ONLY is enabled while DEBUG is true; cookies may be ignored on http://localhost.")

if settings.lightning_backend == "lnbits" and not settings.lnbits_api_key:
    logger.warning("LIGHTNING_BACKEND=lnbits but LNBITS_API_KEY is not set; payments will fail.")
