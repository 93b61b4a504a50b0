import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from admarket.ads.schemas import AdPayload, ClickPayload
from admarket.ads.service import AdService, serialize_ad, serialize_placement, serialize_served_ad
from admarket.auth.service import ensure_role, require_user
from admarket.db import models
from admarket.db.models import split_list
from admarket.db.session import AsyncSession, db_session

router = APIRouter(prefix="/api/ads", tags=["ads"])
logger = logging.getLogger(__name__)

ADVERTISER_ROLES = ("advertiser", "admin")


@router.get("")
async def list_ads(
    limit: int = Query(50, ge=1, le=200),
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ads = await AdService(session).list_for_advertiser(user.id, limit=limit)
    return {"ads": [serialize_ad(ad) for ad in ads]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ad(
    request: Request,
    payload: AdPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ensure_role(request, user, ADVERTISER_ROLES, "create ads")
    ad = await AdService(session).create(user, payload)
    return {"ad": serialize_ad(ad), "balance": user.balance}


@router.get("/serve")
async def serve_ad(
    format: str = "text-image",
    interests: Optional[str] = None,
    placement: Optional[str] = None,
    space_id: Optional[str] = Query(None, alias="spaceId"),
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ad = await AdService(session).select_ad(format, split_list(interests), space_id=space_id)
    if ad is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    logger.debug("Served ad %s for placement %s", ad.id, placement)
    return {"ad": serialize_served_ad(ad), "placement": placement}


@router.get("/{ad_id}")
async def get_ad(ad_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    ad = await AdService(session).get_owned(ad_id, user, "view")
    return {"ad": serialize_ad(ad)}


@router.api_route("/{ad_id}", methods=["PUT", "PATCH"])
async def update_ad(
    ad_id: str,
    payload: AdPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ad = await AdService(session).update(ad_id, user, payload)
    return {"ad": serialize_ad(ad)}


@router.delete("/{ad_id}")
async def delete_ad(ad_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    refunded = await AdService(session).delete(ad_id, user)
    return {"success": True, "refunded": refunded, "balance": user.balance}


@router.post("/{ad_id}/click")
async def click_ad(
    ad_id: str,
    payload: ClickPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    placement = await AdService(session).record_click(ad_id, payload.space_id)
    return {"success": True, "placement": serialize_placement(placement)}
