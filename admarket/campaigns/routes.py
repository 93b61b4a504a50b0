from fastapi import APIRouter, Depends, Request, Response, status

from admarket.auth.service import ensure_role, require_user
from admarket.campaigns.service import CampaignPayload, CampaignService, CampaignStatusPayload, serialize_campaign
from admarket.db import models
from admarket.db.session import AsyncSession, db_session

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])

VIEW_ROLES = ("advertiser", "publisher", "admin")
MANAGE_ROLES = ("advertiser", "admin")


@router.get("")
async def list_campaigns(request: Request, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    ensure_role(request, user, VIEW_ROLES, "view campaigns")
    campaigns = await CampaignService(session).list_for_advertiser(user.id)
    return {"campaigns": [serialize_campaign(c) for c in campaigns]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: Request,
    payload: CampaignPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ensure_role(request, user, MANAGE_ROLES, "create campaigns")
    campaign = await CampaignService(session).create(user, payload)
    return {"campaign": serialize_campaign(campaign)}


@router.get("/{campaign_id}")
async def get_campaign(
    request: Request, campaign_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    ensure_role(request, user, VIEW_ROLES, "view campaigns")
    campaign = await CampaignService(session).get_owned(campaign_id, user)
    return {"campaign": serialize_campaign(campaign)}


@router.put("/{campaign_id}")
async def update_campaign(
    request: Request,
    campaign_id: str,
    payload: CampaignPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ensure_role(request, user, MANAGE_ROLES, "edit campaigns")
    campaign = await CampaignService(session).update(campaign_id, user, payload)
    return {"campaign": serialize_campaign(campaign)}


@router.patch("/{campaign_id}")
async def set_campaign_status(
    request: Request,
    campaign_id: str,
    payload: CampaignStatusPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    ensure_role(request, user, MANAGE_ROLES, "edit campaigns")
    campaign = await CampaignService(session).set_status(campaign_id, user, payload.status)
    return {"campaign": serialize_campaign(campaign)}


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign(
    request: Request, campaign_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    ensure_role(request, user, MANAGE_ROLES, "delete campaigns")
    await CampaignService(session).delete(campaign_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{campaign_id}/metrics")
async def campaign_metrics(
    request: Request, campaign_id: str, user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)
):
    ensure_role(request, user, VIEW_ROLES, "view campaigns")
    campaign = await CampaignService(session).get_owned(campaign_id, user)
    return {"campaignId": campaign.id, "metrics": CampaignService.metrics(campaign)}
