import json
import logging
import random
from typing import Any, Optional

from sqlalchemy import or_, select

from admarket.ads.schemas import AdPayload
from admarket.auth.schemas import camel_name
from admarket.db import models
from admarket.db.models import AdStatus, ApprovalStatus, CampaignStatus, TransactionType, join_list, split_list
from admarket.db.session import AsyncSession
from admarket.errors import AuthorizationError, NotFoundError, ValidationError
from admarket.wallet.service import WalletService

logger = logging.getLogger(__name__)

AD_FORMATS = ("text", "image", "text-image", "rich")
REQUIRED_FIELDS = ("title", "description", "target_url", "budget", "daily_budget", "bid_per_impression", "bid_per_click")
MONEY_FIELDS = ("budget", "daily_budget", "bid_per_impression", "bid_per_click")
REFUNDABLE = {AdStatus.PENDING.value, AdStatus.ACTIVE.value, AdStatus.PAUSED.value}
SERVE_POOL = 10

# Owner-driven status changes; approval moves PENDING ads to ACTIVE.
OWNER_TRANSITIONS = {
    AdStatus.ACTIVE.value: {AdStatus.PAUSED.value, AdStatus.COMPLETED.value},
    AdStatus.PAUSED.value: {AdStatus.ACTIVE.value, AdStatus.COMPLETED.value},
    AdStatus.PENDING.value: {AdStatus.COMPLETED.value},
}


def _url_parameters(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def formats_for_request(fmt: str) -> list[str]:
    """Ad formats a slot can show; a text-image slot also takes plain text ads."""
    if fmt == "text-image":
        return ["text-image", "text"]
    return [fmt]


def interests_overlap(ad: models.Ad, wanted: list[str]) -> bool:
    targeted = {i.lower() for i in ad.interests()}
    if not targeted or not wanted:
        return True
    return bool(targeted & {w.lower() for w in wanted})


class AdService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.wallet = WalletService(session)

    async def list_for_advertiser(self, advertiser_id: str, limit: int = 50) -> list[models.Ad]:
        result = await self.session.execute(
            select(models.Ad)
            .where(models.Ad.advertiser_id == advertiser_id)
            .order_by(models.Ad.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, ad_id: str) -> models.Ad:
        ad = await self.session.get(models.Ad, ad_id)
        if ad is None:
            raise NotFoundError("Ad not found")
        return ad

    async def get_owned(self, ad_id: str, user: models.User, action: str = "access") -> models.Ad:
        ad = await self.get(ad_id)
        if ad.advertiser_id != user.id:
            raise AuthorizationError(f"You do not have permission to {action} this ad")
        return ad

    async def _owned_campaign(self, campaign_id: Optional[str], user: models.User) -> Optional[models.Campaign]:
        if not campaign_id:
            return None
        campaign = await self.session.get(models.Campaign, campaign_id)
        if campaign is None or campaign.advertiser_id != user.id:
            raise NotFoundError("Campaign not found")
        return campaign

    @staticmethod
    def _validate_money(payload: AdPayload, fields: tuple[str, ...]) -> None:
        bad = [camel_name(f) for f in fields if getattr(payload, f) is not None and getattr(payload, f) <= 0]
        if bad:
            raise ValidationError("Budget values must be positive", details={"fields": bad})
        if payload.budget is not None and payload.daily_budget is not None and payload.daily_budget > payload.budget:
            raise ValidationError("Daily budget cannot exceed total budget", details={"fields": ["dailyBudget"]})

    @staticmethod
    def _validate_format(fmt: Optional[str]) -> str:
        fmt = fmt or "text"
        if fmt not in AD_FORMATS:
            raise ValidationError("Invalid ad format", details={"field": "format", "allowed": list(AD_FORMATS)})
        return fmt

    async def create(self, user: models.User, payload: AdPayload) -> models.Ad:
        """Create a PENDING ad, paying its whole budget from the wallet in one commit."""
        if payload.target_url is None and payload.final_destination_url:
            payload.target_url = payload.final_destination_url
        missing = [camel_name(f) for f in REQUIRED_FIELDS if getattr(payload, f) in (None, "")]
        if missing:
            raise ValidationError("Missing required fields", details={"fields": missing})
        self._validate_money(payload, MONEY_FIELDS)
        fmt = self._validate_format(payload.format)
        campaign = await self._owned_campaign(payload.campaign_id, user)

        if (user.balance or 0) < payload.budget:
            raise ValidationError(
                "Insufficient balance to create this ad", details={"balance": user.balance or 0, "required": payload.budget}
            )
        ad = models.Ad(
            advertiser_id=user.id,
            campaign_id=campaign.id if campaign else None,
            title=payload.title.strip(),
            description=payload.description,
            image_url=payload.image_url,
            target_url=payload.target_url,
            url_parameters=_url_parameters(payload.url_parameters),
            budget=payload.budget,
            daily_budget=payload.daily_budget,
            bid_per_impression=payload.bid_per_impression,
            bid_per_click=payload.bid_per_click,
            spent=0,
            status=AdStatus.PENDING.value,
            format=fmt,
            freq_cap_views=payload.freq_cap_views,
            freq_cap_hours=payload.freq_cap_hours,
            target_location=join_list(payload.target_location),
            target_interests=join_list(payload.target_interests),
            target_age=payload.target_age,
        )
        self.session.add(ad)
        await self.session.flush()
        try:
            await self.wallet.debit(
                user, payload.budget, TransactionType.AD_PAYMENT, f"Budget for ad: {ad.title}"
            )
        except ValidationError as exc:
            await self.session.rollback()
            raise ValidationError("Insufficient balance to create this ad", details=exc.details) from exc
        for space_id in dict.fromkeys(payload.targeted_ad_spaces):
            if await self.session.get(models.AdSpace, space_id) is None:
                logger.info("Skipping unknown ad space %s for ad %s", space_id, ad.id)
                continue
            self.session.add(models.AdPlacement(ad_id=ad.id, space_id=space_id, approval_status=ApprovalStatus.PENDING.value))
        await self.session.commit()
        await self.session.refresh(ad)
        logger.info("Ad %s created by %s with budget %d", ad.id, user.nostr_pubkey[:8], ad.budget)
        return ad

    async def update(self, ad_id: str, user: models.User, payload: AdPayload) -> models.Ad:
        ad = await self.get_owned(ad_id, user, "update")
        if payload.target_url is None and payload.final_destination_url:
            payload.target_url = payload.final_destination_url
        self._validate_money(payload, MONEY_FIELDS)
        if payload.daily_budget is not None and payload.budget is None and payload.daily_budget > ad.budget:
            raise ValidationError("Daily budget cannot exceed total budget", details={"fields": ["dailyBudget"]})

        for field in ("title", "description", "image_url", "target_url", "target_age", "freq_cap_views", "freq_cap_hours"):
            value = getattr(payload, field)
            if value is not None:
                setattr(ad, field, value)
        for field in ("daily_budget", "bid_per_impression", "bid_per_click"):
            value = getattr(payload, field)
            if value is not None:
                setattr(ad, field, value)
        if payload.url_parameters is not None:
            ad.url_parameters = _url_parameters(payload.url_parameters)
        if payload.format is not None:
            ad.format = self._validate_format(payload.format)
        if payload.target_location is not None:
            ad.target_location = join_list(payload.target_location)
        if payload.target_interests is not None:
            ad.target_interests = join_list(payload.target_interests)
        if payload.campaign_id is not None:
            campaign = await self._owned_campaign(payload.campaign_id, user)
            ad.campaign_id = campaign.id if campaign else None
        if payload.status is not None and payload.status != ad.status:
            if payload.status not in OWNER_TRANSITIONS.get(ad.status, set()):
                raise ValidationError(
                    f"Cannot change ad status from {ad.status} to {payload.status}", details={"field": "status"}
                )
            ad.status = payload.status
        if payload.budget is not None and payload.budget != ad.budget:
            await self._rebudget(ad, user, payload.budget)
        await self.session.commit()
        await self.session.refresh(ad)
        return ad

    async def _rebudget(self, ad: models.Ad, user: models.User, new_budget: int) -> None:
        if new_budget < (ad.spent or 0):
            raise ValidationError("Budget cannot be lower than the amount already spent", details={"spent": ad.spent})
        delta = new_budget - ad.budget
        if delta > 0:
            try:
                await self.wallet.debit(user, delta, TransactionType.AD_PAYMENT, f"Budget increase for ad: {ad.title}")
            except ValidationError as exc:
                await self.session.rollback()
                raise ValidationError("Insufficient balance to increase the budget", details=exc.details) from exc
        else:
            await self.wallet.record_credit(user, -delta, TransactionType.REFUND, f"Budget decrease for ad: {ad.title}")
        ad.budget = new_budget

    async def delete(self, ad_id: str, user: models.User) -> int:
        """Delete an ad, refunding its unspent budget; returns the refunded amount."""
        ad = await self.get_owned(ad_id, user, "delete")
        refund = 0
        if ad.status in REFUNDABLE:
            refund = max(0, (ad.budget or 0) - (ad.spent or 0))
        if refund:
            await self.wallet.record_credit(user, refund, TransactionType.REFUND, f"Refund for deleted ad: {ad.title}")
        await self.session.delete(ad)
        await self.session.commit()
        logger.info("Ad %s deleted by %s (refund %d)", ad_id, user.nostr_pubkey[:8], refund)
        return refund

    async def select_ad(self, fmt: str, interests: list[str], space_id: Optional[str] = None) -> Optional[models.Ad]:
        """Pick one eligible ad at random from the newest matches, or None."""
        if fmt not in AD_FORMATS:
            raise ValidationError(
                "Invalid ad format", details={"fields": [{"field": "format", "message": f"Must be one of {', '.join(AD_FORMATS)}"}]}
            )
        stmt = (
            select(models.Ad)
            .outerjoin(models.Campaign, models.Ad.campaign_id == models.Campaign.id)
            .where(models.Ad.status == AdStatus.ACTIVE.value)
            .where(or_(models.Ad.campaign_id.is_(None), models.Campaign.status == CampaignStatus.ACTIVE.value))
            .where(models.Ad.format.in_(formats_for_request(fmt)))
            .order_by(models.Ad.created_at.desc())
        )
        if interests:
            clauses = [models.Ad.target_interests.is_(None), models.Ad.target_interests == ""]
            clauses.extend(models.Ad.target_interests.ilike(f"%{i}%") for i in interests)
            stmt = stmt.where(or_(*clauses))
        result = await self.session.execute(stmt.limit(SERVE_POOL * 5))
        pool = [ad for ad in result.scalars().unique().all() if interests_overlap(ad, interests)][:SERVE_POOL]
        if not pool:
            return None
        ad = random.choice(pool)
        await self.record_impression(ad, space_id)
        return ad

    async def _approved_placement(self, ad_id: str, space_id: Optional[str]) -> Optional[models.AdPlacement]:
        if not space_id:
            return None
        result = await self.session.execute(
            select(models.AdPlacement).where(
                models.AdPlacement.ad_id == ad_id,
                models.AdPlacement.space_id == space_id,
                models.AdPlacement.approval_status == ApprovalStatus.APPROVED.value,
            )
        )
        return result.scalars().first()

    async def record_impression(self, ad: models.Ad, space_id: Optional[str]) -> None:
        placement = await self._approved_placement(ad.id, space_id)
        if placement is None:
            logger.debug("Impression for ad %s outside an approved placement", ad.id)
            return
        placement.impressions = (placement.impressions or 0) + 1
        await self.session.commit()

    async def record_click(self, ad_id: str, space_id: Optional[str]) -> models.AdPlacement:
        await self.get(ad_id)
        placement = await self._approved_placement(ad_id, space_id)
        if placement is None:
            raise NotFoundError("No approved placement for this ad and space")
        placement.clicks = (placement.clicks or 0) + 1
        await self.session.commit()
        await self.session.refresh(placement)
        return placement


def serialize_placement(placement: models.AdPlacement, include_ad: bool = False, include_space: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": placement.id,
        "adId": placement.ad_id,
        "spaceId": placement.space_id,
        "approvalStatus": placement.approval_status,
        "approvedAt": models.as_utc(placement.approved_at).isoformat() if placement.approved_at else None,
        "rejectionReason": placement.rejection_reason,
        "impressions": placement.impressions or 0,
        "clicks": placement.clicks or 0,
    }
    if include_space and placement.space is not None:
        data["space"] = {
            "id": placement.space.id,
            "name": placement.space.name,
            "website": placement.space.website,
            "publisherId": placement.space.publisher_id,
        }
    if include_ad and placement.ad is not None:
        data["ad"] = {
            "id": placement.ad.id,
            "title": placement.ad.title,
            "advertiserId": placement.ad.advertiser_id,
            "status": placement.ad.status,
        }
    return data


def serialize_ad(ad: models.Ad, include_placements: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": ad.id,
        "advertiserId": ad.advertiser_id,
        "campaignId": ad.campaign_id,
        "title": ad.title,
        "description": ad.description,
        "imageUrl": ad.image_url,
        "targetUrl": ad.target_url,
        "urlParameters": ad.url_parameters,
        "budget": ad.budget,
        "dailyBudget": ad.daily_budget,
        "bidPerImpression": ad.bid_per_impression,
        "bidPerClick": ad.bid_per_click,
        "spent": ad.spent or 0,
        "status": ad.status,
        "format": ad.format,
        "freqCapViews": ad.freq_cap_views,
        "freqCapHours": ad.freq_cap_hours,
        "targetLocation": split_list(ad.target_location),
        "targetInterests": split_list(ad.target_interests),
        "targetAge": ad.target_age,
        "createdAt": models.as_utc(ad.created_at).isoformat() if ad.created_at else None,
        "updatedAt": models.as_utc(ad.updated_at).isoformat() if ad.updated_at else None,
    }
    if include_placements:
        data["placements"] = [serialize_placement(p) for p in ad.placements]
    return data


def serialize_served_ad(ad: models.Ad) -> dict[str, Any]:
    """Public view of a served ad; performance numbers are not exposed."""
    data = serialize_ad(ad, include_placements=False)
    for private in ("budget", "dailyBudget", "spent", "advertiserId", "campaignId"):
        data.pop(private, None)
    data.update({"impressions": 0, "clicks": 0, "ctr": 0, "spend": 0})
    return data
