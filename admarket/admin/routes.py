from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from admarket.auth.schemas import CamelModel
from admarket.auth.service import require_admin
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.errors import error_service
from admarket.roles.service import RoleService
from admarket.services.audit import AuditEventService, serialize_event
from admarket.services.users import UserService, serialize_user

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


class EnableRolesPayload(CamelModel):
    pubkey: Optional[str] = None


@router.get("/users")
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    admin: models.User = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
):
    users = await UserService(session).list_users(limit=limit)
    return {"users": [serialize_user(u) for u in users]}


@router.post("/enable-roles")
async def enable_roles(
    payload: EnableRolesPayload, admin: models.User = Depends(require_admin), session: AsyncSession = Depends(db_session)
):
    target = await UserService(session).require_by_pubkey(payload.pubkey)
    target = await RoleService(session).enable_all_roles(target, as_test_roles=False, actor_pubkey=admin.nostr_pubkey)
    logger.info("Admin %s enabled all roles for %s", admin.nostr_pubkey[:8], target.nostr_pubkey[:8])
    return {"success": True, "user": serialize_user(target)}


@router.get("/events")
async def list_events(
    limit: int = Query(50, ge=1, le=500),
    action: Optional[str] = None,
    admin: models.User = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
):
    events = await AuditEventService(session).recent(limit=limit, action=action)
    return {"events": [serialize_event(e) for e in events]}


@router.get("/errors")
async def recent_errors(limit: int = Query(20, ge=1, le=100), admin: models.User = Depends(require_admin)):
    return {"errors": error_service.recent(limit)}
