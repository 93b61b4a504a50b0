from typing import Any, Optional

from pydantic import Field
from sqlalchemy import func, select

from admarket.auth.schemas import CamelModel
from admarket.db import models
from admarket.db.models import AdStatus
from admarket.db.session import AsyncSession

PREFERENCE_FIELDS = ("share_location", "share_interests", "share_browsing", "share_age")


class PreferencesPayload(CamelModel):
    share_location: Optional[bool] = Field(default=None, alias="shareLocation")
    share_interests: Optional[bool] = Field(default=None, alias="shareInterests")
    share_browsing: Optional[bool] = Field(default=None, alias="shareBrowsing")
    share_age: Optional[bool] = Field(default=None, alias="shareAge")


class PreferencesService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create(self, user: models.User) -> models.UserPreferences:
        result = await self.session.execute(
            select(models.UserPreferences).where(models.UserPreferences.user_id == user.id)
        )
        prefs = result.scalars().first()
        if prefs is None:
            prefs = models.UserPreferences(user_id=user.id)
            self.session.add(prefs)
            await self.session.commit()
            await self.session.refresh(prefs)
        return prefs

    async def update(self, user: models.User, payload: PreferencesPayload) -> models.UserPreferences:
        prefs = await self.get_or_create(user)
        for field in PREFERENCE_FIELDS:
            value = getattr(payload, field)
            if value is not None:
                setattr(prefs, field, value)
        await self.session.commit()
        await self.session.refresh(prefs)
        return prefs


def serialize_preferences(prefs: models.UserPreferences) -> dict[str, Any]:
    return {
        "shareLocation": bool(prefs.share_location),
        "shareInterests": bool(prefs.share_interests),
        "shareBrowsing": bool(prefs.share_browsing),
        "shareAge": bool(prefs.share_age),
    }


class StatsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _count(self, stmt) -> int:
        return int(await self.session.scalar(stmt) or 0)

    async def for_user(self, user: models.User) -> dict[str, Any]:
        ad_count = await self._count(select(func.count(models.Ad.id)).where(models.Ad.advertiser_id == user.id))
        active = await self._count(
            select(func.count(models.Ad.id)).where(
                models.Ad.advertiser_id == user.id, models.Ad.status == AdStatus.ACTIVE.value
            )
        )
        campaigns = await self._count(
            select(func.count(models.Campaign.id)).where(models.Campaign.advertiser_id == user.id)
        )
        spaces = await self._count(select(func.count(models.AdSpace.id)).where(models.AdSpace.publisher_id == user.id))
        totals = await self.session.execute(
            select(
                func.coalesce(func.sum(models.AdPlacement.impressions), 0),
                func.coalesce(func.sum(models.AdPlacement.clicks), 0),
            )
            .join(models.Ad, models.AdPlacement.ad_id == models.Ad.id)
            .where(models.Ad.advertiser_id == user.id)
        )
        impressions, clicks = totals.one()
        spent = await self._count(
            select(func.coalesce(func.sum(models.Ad.spent), 0)).where(models.Ad.advertiser_id == user.id)
        )
        return {
            "adCount": ad_count,
            "activeAdCount": active,
            "campaignCount": campaigns,
            "spaceCount": spaces,
            "impressions": int(impressions),
            "clicks": int(clicks),
            "ctr": round(int(clicks) / int(impressions) * 100, 2) if impressions else 0,
            "spent": spent,
            "balance": user.balance or 0,
        }
