import logging
from typing import Optional

from admarket.db import models
from admarket.db.models import Role
from admarket.db.session import AsyncSession
from admarket.errors import AuthorizationError, ValidationError
from admarket.roles.permissions import ALL_ROLES, is_valid_role
from admarket.services.audit import AuditEventService

logger = logging.getLogger(__name__)

# Roles a user may grant or drop for themselves without an admin.
SELF_SERVICE_ROLES = {Role.viewer.value, Role.advertiser.value, Role.publisher.value}


def validate_role(role: Optional[str]) -> str:
    if not is_valid_role(role):
        raise ValidationError("Invalid role", details={"validRoles": list(ALL_ROLES)})
    return role


class RoleService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditEventService(session)

    @staticmethod
    def available_roles(user: models.User) -> list[str]:
        roles = [r for r in ALL_ROLES if r in set(user.active_roles())]
        if Role.viewer.value not in roles:
            roles.insert(0, Role.viewer.value)
        return roles

    def _find(self, user: models.User, role: str) -> Optional[models.UserRole]:
        for user_role in user.roles:
            if user_role.role == role:
                return user_role
        return None

    def _grant(self, user: models.User, role: str, is_test_role: bool = False) -> bool:
        existing = self._find(user, role)
        if existing is None:
            user.roles.append(models.UserRole(role=role, is_active=True, is_test_role=is_test_role))
            return True
        if not existing.is_active:
            existing.is_active = True
            return True
        return False

    async def set_current_role(self, user: models.User, role: Optional[str], test_mode: bool = False) -> models.User:
        role = validate_role(role)
        if role not in self.available_roles(user) and not test_mode:
            raise AuthorizationError(f"Role '{role}' is not available for this user")
        if test_mode:
            self._grant(user, role, is_test_role=True)
        previous = user.current_role
        user.current_role = role
        self.audit.add_event(
            action="role_switched",
            message=f"Current role changed from {previous} to {role}",
            actor_pubkey=user.nostr_pubkey,
            metadata={"from": previous, "to": role, "test_mode": test_mode},
        )
        await self.session.commit()
        await self.session.refresh(user)
        logger.info("User %s switched role %s -> %s", user.nostr_pubkey[:8], previous, role)
        return user

    async def add_role(self, user: models.User, role: Optional[str], actor_pubkey: Optional[str] = None) -> models.User:
        role = validate_role(role)
        if self._grant(user, role):
            self.audit.add_event(
                action="role_added",
                message=f"Role {role} granted",
                actor_pubkey=actor_pubkey or user.nostr_pubkey,
                metadata={"user": user.nostr_pubkey, "role": role},
            )
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def remove_role(self, user: models.User, role: Optional[str], actor_pubkey: Optional[str] = None) -> models.User:
        role = validate_role(role)
        if role == Role.viewer.value:
            raise ValidationError("The viewer role cannot be removed")
        existing = self._find(user, role)
        if existing is not None:
            user.roles.remove(existing)
            if user.current_role == role:
                user.current_role = Role.viewer.value
            self.audit.add_event(
                action="role_removed",
                message=f"Role {role} revoked",
                actor_pubkey=actor_pubkey or user.nostr_pubkey,
                metadata={"user": user.nostr_pubkey, "role": role},
            )
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def enable_all_roles(self, user: models.User, as_test_roles: bool = True, actor_pubkey: Optional[str] = None) -> models.User:
        """Grant every role and make admin current."""
        for role in ALL_ROLES:
            self._grant(user, role, is_test_role=as_test_roles)
        user.current_role = Role.admin.value
        if as_test_roles:
            user.is_test_user = True
        self.audit.add_event(
            action="roles_enabled",
            message="All roles enabled",
            actor_pubkey=actor_pubkey or user.nostr_pubkey,
            metadata={"user": user.nostr_pubkey, "test": as_test_roles},
        )
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def clear_roles(self, user: models.User, actor_pubkey: Optional[str] = None) -> models.User:
        """Drop everything but viewer."""
        dropped = [r.role for r in user.roles if r.role != Role.viewer.value]
        for user_role in list(user.roles):
            if user_role.role != Role.viewer.value:
                user.roles.remove(user_role)
        self._grant(user, Role.viewer.value)
        user.current_role = Role.viewer.value
        self.audit.add_event(
            action="roles_cleared",
            message="Roles reset to viewer",
            actor_pubkey=actor_pubkey or user.nostr_pubkey,
            metadata={"user": user.nostr_pubkey, "dropped": dropped},
        )
        await self.session.commit()
        await self.session.refresh(user)
        return user
