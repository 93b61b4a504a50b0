import datetime as dt
import hashlib
import logging
import secrets
from typing import Any, Optional

from sqlalchemy import select

from admarket.db import models
from admarket.db.models import ApiKeyType
from admarket.db.session import AsyncSession
from admarket.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

KEY_PREFIXES = {
    ApiKeyType.publisher.value: "pub_",
    ApiKeyType.advertiser.value: "adv_",
    ApiKeyType.developer.value: "dev_",
}
VALID_SCOPES = {"read", "write", "ads", "spaces", "analytics"}


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_key(key_type: str) -> str:
    return f"{KEY_PREFIXES[key_type]}{secrets.token_hex(16)}"


def normalize_scopes(scopes: str | None) -> str:
    items = [s.strip() for s in (scopes or "read").split(",") if s.strip()]
    unknown = [s for s in items if s not in VALID_SCOPES]
    if unknown:
        raise ValidationError("Invalid scopes", details={"scopes": unknown})
    return ",".join(dict.fromkeys(items)) or "read"


class ApiKeyService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_user(self, user_id: str) -> list[models.ApiKey]:
        result = await self.session.execute(
            select(models.ApiKey).where(models.ApiKey.user_id == user_id).order_by(models.ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def create(
        self,
        user_id: str,
        name: str | None,
        description: str | None = None,
        scopes: str | None = "read",
        key_type: str = ApiKeyType.publisher.value,
        expires_at: Optional[dt.datetime] = None,
    ) -> tuple[models.ApiKey, str]:
        """Create a key and return it with the raw secret; only the hash is stored."""
        if not name or not name.strip():
            raise ValidationError("Name is required", status_code=422)
        if key_type not in KEY_PREFIXES:
            raise ValidationError("Invalid key type", details={"allowed": sorted(KEY_PREFIXES)})
        raw_key = generate_key(key_type)
        api_key = models.ApiKey(
            user_id=user_id,
            key_hash=hash_key(raw_key),
            key_prefix=raw_key[:12],
            name=name.strip(),
            description=description,
            type=key_type,
            scopes=normalize_scopes(scopes),
            expires_at=expires_at,
        )
        self.session.add(api_key)
        await self.session.commit()
        await self.session.refresh(api_key)
        logger.info("API key %s created for user %s", api_key.key_prefix, user_id)
        return api_key, raw_key

    async def get_owned(self, key_id: str, user_id: str) -> models.ApiKey:
        api_key = await self.session.get(models.ApiKey, key_id)
        if api_key is None or api_key.user_id != user_id:
            raise NotFoundError("API key not found")
        return api_key

    async def update(self, key_id: str, user_id: str, **changes: Any) -> models.ApiKey:
        api_key = await self.get_owned(key_id, user_id)
        if "name" in changes and changes["name"] is not None:
            if not changes["name"].strip():
                raise ValidationError("Name is required", status_code=422)
            api_key.name = changes["name"].strip()
        if changes.get("description") is not None:
            api_key.description = changes["description"]
        if changes.get("scopes") is not None:
            api_key.scopes = normalize_scopes(changes["scopes"])
        if changes.get("is_active") is not None:
            api_key.is_active = bool(changes["is_active"])
        if changes.get("expires_at") is not None:
            api_key.expires_at = changes["expires_at"]
        await self.session.commit()
        await self.session.refresh(api_key)
        return api_key

    async def revoke(self, key_id: str, user_id: str) -> None:
        api_key = await self.get_owned(key_id, user_id)
        await self.session.delete(api_key)
        await self.session.commit()
        logger.info("API key %s revoked", api_key.key_prefix)

    async def authenticate(self, raw_key: str) -> Optional[models.User]:
        """Resolve an active, unexpired key to its owner and record the use."""
        result = await self.session.execute(select(models.ApiKey).where(models.ApiKey.key_hash == hash_key(raw_key)))
        api_key = result.scalars().first()
        if api_key is None or not api_key.is_active:
            return None
        now = dt.datetime.now(dt.timezone.utc)
        expires_at = models.as_utc(api_key.expires_at)
        if expires_at is not None and expires_at <= now:
            return None
        api_key.usage_count = (api_key.usage_count or 0) + 1
        api_key.last_used = now
        await self.session.commit()
        return await self.session.get(models.User, api_key.user_id)


def serialize_api_key(api_key: models.ApiKey) -> dict[str, Any]:
    return {
        "id": api_key.id,
        "name": api_key.name,
        "description": api_key.description,
        "type": api_key.type,
        "prefix": api_key.key_prefix,
        "scopes": api_key.scopes.split(",") if api_key.scopes else [],
        "isActive": bool(api_key.is_active),
        "usageCount": api_key.usage_count or 0,
        "lastUsed": models.as_utc(api_key.last_used).isoformat() if api_key.last_used else None,
        "expiresAt": models.as_utc(api_key.expires_at).isoformat() if api_key.expires_at else None,
        "createdAt": models.as_utc(api_key.created_at).isoformat() if api_key.created_at else None,
    }
