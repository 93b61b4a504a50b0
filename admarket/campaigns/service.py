import datetime as dt
import logging
from typing import Any, Optional

from pydantic import Field
from sqlalchemy import select

from admarket.auth.schemas import CamelModel
from admarket.db import models
from admarket.db.models import CampaignStatus, join_list, split_list
from admarket.db.session import AsyncSession
from admarket.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CAMPAIGN_STATUSES = tuple(s.value for s in CampaignStatus)


class CampaignPayload(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[dt.datetime] = Field(default=None, alias="startDate")
    end_date: Optional[dt.datetime] = Field(default=None, alias="endDate")
    budget: Optional[int] = None
    daily_budget: Optional[int] = Field(default=None, alias="dailyBudget")
    target_location: Any = Field(default=None, alias="targetLocation")
    target_interests: Any = Field(default=None, alias="targetInterests")
    target_age: Optional[str] = Field(default=None, alias="targetAge")
    target_audience: Optional[str] = Field(default=None, alias="targetAudience")
    status: Optional[str] = None


class CampaignStatusPayload(CamelModel):
    status: Optional[str] = None


class CampaignService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_advertiser(self, advertiser_id: str) -> list[models.Campaign]:
        result = await self.session.execute(
            select(models.Campaign)
            .where(models.Campaign.advertiser_id == advertiser_id)
            .order_by(models.Campaign.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_owned(self, campaign_id: str, user: models.User) -> models.Campaign:
        campaign = await self.session.get(models.Campaign, campaign_id)
        if campaign is None or campaign.advertiser_id != user.id:
            raise NotFoundError("Campaign not found")
        return campaign

    @staticmethod
    def _validate(payload: CampaignPayload, start: Optional[dt.datetime], end: Optional[dt.datetime]) -> None:
        if payload.budget is not None and payload.budget <= 0:
            raise ValidationError("Budget must be positive", details={"field": "budget"})
        if payload.daily_budget is not None and payload.daily_budget <= 0:
            raise ValidationError("Daily budget must be positive", details={"field": "dailyBudget"})
        if start and end and models.as_utc(end) < models.as_utc(start):
            raise ValidationError("End date must be after start date", details={"field": "endDate"})

    async def create(self, user: models.User, payload: CampaignPayload) -> models.Campaign:
        if not payload.name or payload.start_date is None or payload.budget is None:
            raise ValidationError("Missing required fields: name, startDate, budget")
        self._validate(payload, payload.start_date, payload.end_date)
        status = CampaignStatus.DRAFT if (user.balance or 0) >= payload.budget else CampaignStatus.PENDING_FUNDING
        campaign = models.Campaign(
            advertiser_id=user.id,
            name=payload.name.strip(),
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            budget=payload.budget,
            daily_budget=payload.daily_budget,
            status=status.value,
            target_location=join_list(payload.target_location),
            target_interests=join_list(payload.target_interests),
            target_age=payload.target_age,
            target_audience=payload.target_audience,
        )
        self.session.add(campaign)
        await self.session.commit()
        await self.session.refresh(campaign)
        logger.info("Campaign %s created by %s (%s)", campaign.id, user.nostr_pubkey[:8], campaign.status)
        return campaign

    async def update(self, campaign_id: str, user: models.User, payload: CampaignPayload) -> models.Campaign:
        campaign = await self.get_owned(campaign_id, user)
        self._validate(payload, payload.start_date or campaign.start_date, payload.end_date or campaign.end_date)
        for field in ("description", "start_date", "end_date", "budget", "daily_budget", "target_age", "target_audience"):
            value = getattr(payload, field)
            if value is not None:
                setattr(campaign, field, value)
        if payload.name is not None:
            if not payload.name.strip():
                raise ValidationError("Name cannot be empty", details={"field": "name"})
            campaign.name = payload.name.strip()
        if payload.target_location is not None:
            campaign.target_location = join_list(payload.target_location)
        if payload.target_interests is not None:
            campaign.target_interests = join_list(payload.target_interests)
        if payload.status is not None:
            campaign.status = self._validate_status(payload.status)
        await self.session.commit()
        await self.session.refresh(campaign)
        return campaign

    @staticmethod
    def _validate_status(status: Optional[str]) -> str:
        if status not in CAMPAIGN_STATUSES:
            raise ValidationError("Invalid status", details={"allowed": list(CAMPAIGN_STATUSES)})
        return status

    async def set_status(self, campaign_id: str, user: models.User, status: Optional[str]) -> models.Campaign:
        campaign = await self.get_owned(campaign_id, user)
        campaign.status = self._validate_status(status)
        await self.session.commit()
        await self.session.refresh(campaign)
        logger.info("Campaign %s status -> %s", campaign.id, campaign.status)
        return campaign

    async def delete(self, campaign_id: str, user: models.User) -> None:
        campaign = await self.get_owned(campaign_id, user)
        # Ads outlive their campaign; the relationship nulls campaign_id on flush.
        await self.session.delete(campaign)
        await self.session.commit()

    @staticmethod
    def metrics(campaign: models.Campaign) -> dict[str, Any]:
        impressions = sum(p.impressions or 0 for ad in campaign.ads for p in ad.placements)
        clicks = sum(p.clicks or 0 for ad in campaign.ads for p in ad.placements)
        spent = sum(ad.spent or 0 for ad in campaign.ads)
        return {
            "impressions": impressions,
            "clicks": clicks,
            "conversions": 0,
            "ctr": round(clicks / impressions * 100, 2) if impressions else 0,
            "spentBudget": spent,
            "remainingBudget": max(0, (campaign.budget or 0) - spent),
        }


def serialize_campaign(campaign: models.Campaign, include_ads: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": campaign.id,
        "advertiserId": campaign.advertiser_id,
        "name": campaign.name,
        "description": campaign.description,
        "startDate": models.as_utc(campaign.start_date).isoformat() if campaign.start_date else None,
        "endDate": models.as_utc(campaign.end_date).isoformat() if campaign.end_date else None,
        "budget": campaign.budget,
        "dailyBudget": campaign.daily_budget,
        "status": campaign.status,
        "targetLocation": split_list(campaign.target_location),
        "targetInterests": split_list(campaign.target_interests),
        "targetAge": campaign.target_age,
        "targetAudience": campaign.target_audience,
        "createdAt": models.as_utc(campaign.created_at).isoformat() if campaign.created_at else None,
    }
    if include_ads:
        data["ads"] = [{"id": ad.id, "title": ad.title, "status": ad.status, "budget": ad.budget} for ad in campaign.ads]
    return data
