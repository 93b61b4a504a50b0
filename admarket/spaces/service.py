import datetime as dt
import logging
from typing import Any, Optional

from pydantic import Field
from sqlalchemy import select

from admarket.auth.schemas import CamelModel, camel_name
from admarket.db import models
from admarket.db.models import AdStatus, ApprovalStatus, join_list, split_list
from admarket.db.session import AsyncSession
from admarket.errors import AuthorizationError, NotFoundError, ValidationError
from admarket.services.audit import AuditEventService

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "description", "website", "dimensions", "allowed_ad_types", "content_category")


class SpacePayload(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    min_bid_per_impression: Optional[int] = Field(default=None, alias="minBidPerImpression")
    min_bid_per_click: Optional[int] = Field(default=None, alias="minBidPerClick")
    dimensions: Optional[str] = None
    allowed_ad_types: Any = Field(default=None, alias="allowedAdTypes")
    content_category: Optional[str] = Field(default=None, alias="contentCategory")
    content_tags: Any = Field(default=None, alias="contentTags")


class ApprovalPayload(CamelModel):
    placement_id: Optional[str] = Field(default=None, alias="placementId")
    action: Optional[str] = None
    reason: Optional[str] = None


class SpaceService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_spaces(self, user: models.User, include_all: bool = False, limit: int = 50) -> list[models.AdSpace]:
        stmt = select(models.AdSpace).order_by(models.AdSpace.created_at.desc()).limit(limit)
        if not include_all:
            stmt = stmt.where(models.AdSpace.publisher_id == user.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, space_id: str) -> models.AdSpace:
        space = await self.session.get(models.AdSpace, space_id)
        if space is None:
            raise NotFoundError("Ad space not found")
        return space

    async def get_owned(self, space_id: str, user: models.User, action: str = "access") -> models.AdSpace:
        space = await self.get(space_id)
        if space.publisher_id != user.id:
            raise AuthorizationError(f"You do not have permission to {action} this ad space")
        return space

    @staticmethod
    def _validate_bids(payload: SpacePayload) -> None:
        bad = [
            camel_name(f)
            for f in ("min_bid_per_impression", "min_bid_per_click")
            if getattr(payload, f) is not None and getattr(payload, f) <= 0
        ]
        if bad:
            raise ValidationError("Minimum bids must be positive", details={"fields": bad})

    async def create(self, user: models.User, payload: SpacePayload) -> models.AdSpace:
        """Create a space; the owner gains the publisher role and it becomes current."""
        missing = [camel_name(f) for f in REQUIRED_FIELDS if not getattr(payload, f)]
        if missing:
            raise ValidationError("Missing required fields", details={"fields": missing})
        self._validate_bids(payload)
        space = models.AdSpace(
            publisher_id=user.id,
            name=payload.name.strip(),
            description=payload.description,
            website=payload.website,
            min_bid_per_impression=payload.min_bid_per_impression or 0,
            min_bid_per_click=payload.min_bid_per_click or 0,
            dimensions=payload.dimensions,
            allowed_ad_types=join_list(payload.allowed_ad_types),
            content_category=payload.content_category,
            content_tags=join_list(payload.content_tags),
        )
        self.session.add(space)
        if models.Role.publisher.value not in {r.role for r in user.roles}:
            user.roles.append(models.UserRole(role=models.Role.publisher.value, is_active=True))
        else:
            for user_role in user.roles:
                if user_role.role == models.Role.publisher.value:
                    user_role.is_active = True
        user.current_role = models.Role.publisher.value
        await self.session.commit()
        await self.session.refresh(space)
        logger.info("Ad space %s created by %s", space.id, user.nostr_pubkey[:8])
        return space

    async def update(self, space_id: str, user: models.User, payload: SpacePayload) -> models.AdSpace:
        space = await self.get_owned(space_id, user, "update")
        self._validate_bids(payload)
        for field in ("description", "website", "min_bid_per_impression", "min_bid_per_click", "dimensions", "content_category"):
            value = getattr(payload, field)
            if value is not None:
                setattr(space, field, value)
        if payload.name is not None:
            if not payload.name.strip():
                raise ValidationError("Name cannot be empty", details={"field": "name"})
            space.name = payload.name.strip()
        if payload.allowed_ad_types is not None:
            space.allowed_ad_types = join_list(payload.allowed_ad_types)
        if payload.content_tags is not None:
            space.content_tags = join_list(payload.content_tags)
        await self.session.commit()
        await self.session.refresh(space)
        return space

    async def delete(self, space_id: str, user: models.User) -> None:
        space = await self.get_owned(space_id, user, "delete")
        # Placements go with the space through the delete-orphan cascade.
        await self.session.delete(space)
        await self.session.commit()
        logger.info("Ad space %s deleted", space_id)


class PlacementService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_publisher(self, user: models.User, status: Optional[str] = None) -> list[models.AdPlacement]:
        stmt = (
            select(models.AdPlacement)
            .join(models.AdSpace, models.AdPlacement.space_id == models.AdSpace.id)
            .where(models.AdSpace.publisher_id == user.id)
            .order_by(models.AdPlacement.created_at.desc())
        )
        if status:
            if status not in {s.value for s in ApprovalStatus}:
                raise ValidationError("Invalid approval status", details={"allowed": [s.value for s in ApprovalStatus]})
            stmt = stmt.where(models.AdPlacement.approval_status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def apply_action(self, user: models.User, payload: ApprovalPayload) -> models.AdPlacement:
        if not payload.placement_id or payload.action not in {"approve", "reject"}:
            raise ValidationError("placementId and action (approve or reject) are required")
        placement = await self.session.get(models.AdPlacement, payload.placement_id)
        if placement is None:
            raise NotFoundError("Placement not found")
        if placement.space.publisher_id != user.id:
            raise AuthorizationError("You do not own the ad space for this placement")
        if payload.action == "approve":
            placement.approval_status = ApprovalStatus.APPROVED.value
            placement.approved_at = dt.datetime.now(dt.timezone.utc)
            placement.rejection_reason = None
            if placement.ad.status == AdStatus.PENDING.value:
                placement.ad.status = AdStatus.ACTIVE.value
        else:
            placement.approval_status = ApprovalStatus.REJECTED.value
            placement.approved_at = None
            placement.rejection_reason = payload.reason
        AuditEventService(self.session).add_event(
            action=f"placement_{payload.action}",
            message=f"Placement {payload.action}d by publisher",
            actor_pubkey=user.nostr_pubkey,
            metadata={"placement": placement.id, "ad": placement.ad_id, "space": placement.space_id},
        )
        await self.session.commit()
        await self.session.refresh(placement)
        logger.info("Placement %s %sd by %s", placement.id, payload.action, user.nostr_pubkey[:8])
        return placement


def serialize_space(space: models.AdSpace, include_placements: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": space.id,
        "publisherId": space.publisher_id,
        "name": space.name,
        "description": space.description,
        "website": space.website,
        "minBidPerImpression": space.min_bid_per_impression,
        "minBidPerClick": space.min_bid_per_click,
        "dimensions": space.dimensions,
        "allowedAdTypes": split_list(space.allowed_ad_types),
        "contentCategory": space.content_category,
        "contentTags": split_list(space.content_tags),
        "createdAt": models.as_utc(space.created_at).isoformat() if space.created_at else None,
    }
    if include_placements:
        data["placements"] = [
            {
                "id": p.id,
                "adId": p.ad_id,
                "approvalStatus": p.approval_status,
                "impressions": p.impressions or 0,
                "clicks": p.clicks or 0,
                "ad": {"id": p.ad.id, "title": p.ad.title, "advertiserId": p.ad.advertiser_id} if p.ad else None,
            }
            for p in space.placements
        ]
    return data
