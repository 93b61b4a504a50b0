import logging
from typing import Any, Optional

from sqlalchemy import select

from admarket.db import models
from admarket.db.models import Role
from admarket.db.session import AsyncSession
from admarket.errors import NotFoundError, ValidationError
from admarket.nostr.key import NostrKeyError, normalize_pubkey
from admarket.services.audit import AuditEventService

logger = logging.getLogger(__name__)

TEST_ROLES = (Role.advertiser.value, Role.publisher.value)


class UserService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[models.User]:
        return await self.session.get(models.User, user_id)

    async def get_by_pubkey(self, pubkey: str) -> Optional[models.User]:
        result = await self.session.execute(select(models.User).where(models.User.nostr_pubkey == pubkey))
        return result.scalars().first()

    async def require_by_pubkey(self, pubkey: Optional[str]) -> models.User:
        """Look up by stored pubkey, then by its hex form when given an npub."""
        if not pubkey or not pubkey.strip():
            raise ValidationError("pubkey is required", details={"field": "pubkey"})
        user = await self.get_by_pubkey(pubkey.strip())
        if user is None:
            try:
                user = await self.get_by_pubkey(normalize_pubkey(pubkey))
            except NostrKeyError:
                user = None
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def find_or_create(self, pubkey: str, is_test: bool = False) -> models.User:
        """Return the user for ``pubkey``, creating it with the viewer role on first login.

        Test logins additionally carry test advertiser and publisher roles.
        """
        user = await self.get_by_pubkey(pubkey)
        created = user is None
        if user is None:
            user = models.User(nostr_pubkey=pubkey, current_role=Role.viewer.value, is_test_user=is_test, balance=0)
            user.roles = [models.UserRole(role=Role.viewer.value, is_active=True)]
            self.session.add(user)
        existing = {r.role for r in user.roles}
        if Role.viewer.value not in existing:
            user.roles.append(models.UserRole(role=Role.viewer.value, is_active=True))
        if is_test:
            user.is_test_user = True
            for role in TEST_ROLES:
                if role not in existing:
                    user.roles.append(models.UserRole(role=role, is_active=True, is_test_role=True))
        if created:
            AuditEventService(self.session).add_event(
                action="user_created",
                message="User registered",
                actor_pubkey=pubkey,
                metadata={"is_test": is_test},
            )
        await self.session.commit()
        await self.session.refresh(user)
        logger.info("Login for %s (new=%s, test=%s)", pubkey[:8], created, is_test)
        return user

    async def list_users(self, limit: int = 100) -> list[models.User]:
        result = await self.session.execute(select(models.User).order_by(models.User.created_at.desc()).limit(limit))
        return list(result.scalars().all())


def serialize_user(user: models.User) -> dict[str, Any]:
    roles = user.active_roles()
    return {
        "id": user.id,
        "pubkey": user.nostr_pubkey,
        "currentRole": user.current_role,
        "roles": roles,
        "isAdvertiser": Role.advertiser.value in roles,
        "isPublisher": Role.publisher.value in roles,
        "isAdmin": Role.admin.value in roles,
        "isTestUser": bool(user.is_test_user),
        "walletBalance": user.balance or 0,
        "createdAt": models.as_utc(user.created_at).isoformat() if user.created_at else None,
    }
