from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from admarket.ads.service import serialize_placement
from admarket.auth.service import ensure_role, require_user
from admarket.db import models
from admarket.db.session import AsyncSession, db_session
from admarket.spaces.service import ApprovalPayload, PlacementService, SpacePayload, SpaceService, serialize_space

router = APIRouter(prefix="/api/spaces", tags=["spaces"])
publisher_router = APIRouter(prefix="/api/publisher", tags=["publisher"])

PUBLISHER_ROLES = ("publisher", "admin")


@router.get("")
async def list_spaces(
    limit: int = Query(50, ge=1, le=200),
    all: bool = False,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    spaces = await SpaceService(session).list_spaces(user, include_all=all, limit=limit)
    # Other publishers' placements are not ours to show.
    return {"spaces": [serialize_space(s, include_placements=s.publisher_id == user.id) for s in spaces]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_space(
    payload: SpacePayload, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    space = await SpaceService(session).create(user, payload)
    return {"space": serialize_space(space), "currentRole": user.current_role}


@router.get("/{space_id}")
async def get_space(space_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    space = await SpaceService(session).get_owned(space_id, user, "view")
    return {"space": serialize_space(space)}


@router.put("/{space_id}")
async def update_space(
    space_id: str,
    payload: SpacePayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    space = await SpaceService(session).update(space_id, user, payload)
    return {"space": serialize_space(space)}


@router.delete("/{space_id}")
async def delete_space(space_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    await SpaceService(session).delete(space_id, user)
    return {"success": True}


@publisher_router.get("/placements")
async def list_placements(
    request: Request,
    status: Optional[str] = None,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ensure_role(request, user, PUBLISHER_ROLES, "review placements")
    placements = await PlacementService(session).list_for_publisher(user, status=status)
    return {"placements": [serialize_placement(p, include_ad=True) for p in placements]}


@publisher_router.post("/approval-action")
async def approval_action(
    payload: ApprovalPayload, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    placement = await PlacementService(session).apply_action(user, payload)
    verb = "approved" if payload.action == "approve" else "rejected"
    return {
        "success": True,
        "message": f"Ad placement {verb} successfully",
        "placement": serialize_placement(placement, include_ad=True),
    }
