import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from admarket.auth.schemas import CamelModel
from admarket.auth.service import is_admin, is_test_mode, require_admin, require_user
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.errors import AuthorizationError
from admarket.roles.permissions import can_access_route, dashboard_path, permissions_for
from admarket.roles.service import SELF_SERVICE_ROLES, RoleService, validate_role
from admarket.services.users import UserService

router = APIRouter(prefix="/api", tags=["roles"])
logger = logging.getLogger(__name__)


class RolePayload(CamelModel):
    role: Optional[str] = None
    enabled: bool = True


class UserRolePayload(CamelModel):
    pubkey: Optional[str] = None
    role: Optional[str] = None


def role_summary(request: Request, user: models.User) -> dict:
    return {
        "currentRole": user.current_role,
        "availableRoles": RoleService.available_roles(user),
        "permissions": permissions_for(user.current_role),
        "dashboard": dashboard_path(user.current_role),
        "isTestMode": is_test_mode(request),
    }


@router.get("/roles")
async def get_roles(request: Request, user: models.User = Depends(require_user)):
    return role_summary(request, user)


@router.post("/roles/set-role")
async def set_role(
    request: Request,
    payload: RolePayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    user = await RoleService(session).set_current_role(user, payload.role, test_mode=is_test_mode(request))
    return {"success": True, **role_summary(request, user)}


@router.post("/users/set-role")
async def toggle_own_role(
    request: Request,
    payload: RolePayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    role = validate_role(payload.role)
    if role not in SELF_SERVICE_ROLES:
        raise AuthorizationError("This role can only be granted by an admin")
    service = RoleService(session)
    if payload.enabled:
        user = await service.add_role(user, role)
    else:
        user = await service.remove_role(user, role)
    return {"success": True, **role_summary(request, user)}


@router.get("/users/{pubkey}/roles")
async def user_roles(
    request: Request,
    pubkey: str,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    target = await UserService(session).require_by_pubkey(pubkey)
    if target.id != user.id and not is_admin(request, user):
        raise AuthorizationError("Not allowed to view roles for this user")
    return {
        "pubkey": target.nostr_pubkey,
        "currentRole": target.current_role,
        "roles": [
            {"role": r.role, "isActive": bool(r.is_active), "isTestRole": bool(r.is_test_role)} for r in target.roles
        ],
    }


@router.post("/users/roles")
async def grant_role(
    payload: UserRolePayload, admin: models.User = Depends(require_admin), session: AsyncSession = Depends(db_session)
):
    target = await UserService(session).require_by_pubkey(payload.pubkey)
    target = await RoleService(session).add_role(target, payload.role, actor_pubkey=admin.nostr_pubkey)
    return {"success": True, "pubkey": target.nostr_pubkey, "roles": RoleService.available_roles(target)}


@router.delete("/users/roles")
async def revoke_role(
    payload: UserRolePayload, admin: models.User = Depends(require_admin), session: AsyncSession = Depends(db_session)
):
    target = await UserService(session).require_by_pubkey(payload.pubkey)
    target = await RoleService(session).remove_role(target, payload.role, actor_pubkey=admin.nostr_pubkey)
    return {"success": True, "pubkey": target.nostr_pubkey, "roles": RoleService.available_roles(target)}


@router.post("/test-mode/enable-all-roles")
async def enable_all_roles(
    request: Request, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    if not is_test_mode(request):
        raise AuthorizationError("Test mode is not enabled for this session")
    user = await RoleService(session).enable_all_roles(user)
    logger.info("Test mode: all roles enabled for %s", user.nostr_pubkey[:8])
    return {"success": True, **role_summary(request, user)}


@router.post("/test-mode/reset-roles")
async def reset_roles(
    request: Request, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    """Leave test mode role-wise: back to a plain viewer."""
    if not is_test_mode(request):
        raise AuthorizationError("Test mode is not enabled for this session")
    user = await RoleService(session).clear_roles(user)
    logger.info("Test mode: roles reset for %s", user.nostr_pubkey[:8])
    return {"success": True, **role_summary(request, user)}


@router.get("/access/route")
async def route_access(path: str, user: models.User = Depends(require_user)):
    return {"path": path, "role": user.current_role, "allowed": can_access_route(path, user.current_role)}
