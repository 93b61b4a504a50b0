import datetime as dt
import json
from typing import Any, Optional

from sqlalchemy import select

from admarket.db import models
from admarket.db.session import AsyncSession


class AuditEventService:
    """Role grants, allowlist changes and placement decisions, kept for the admin console."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def add_event(
        self,
        action: str,
        message: str,
        level: str = "info",
        actor_pubkey: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> models.AuditEvent:
        # Staged only; committed together with the change it describes.
        row = models.AuditEvent(
            created_at=dt.datetime.now(dt.timezone.utc),
            level=level,
            action=action,
            actor_pubkey=actor_pubkey,
            message=message,
            metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
        )
        self.session.add(row)
        return row

    async def recent(self, limit: int = 50, action: Optional[str] = None) -> list[models.AuditEvent]:
        query = select(models.AuditEvent)
        if action:
            query = query.where(models.AuditEvent.action == action)
        query = query.order_by(models.AuditEvent.created_at.desc(), models.AuditEvent.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())


def serialize_event(event: models.AuditEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "createdAt": models.as_utc(event.created_at).isoformat() if event.created_at else None,
        "level": event.level,
        "action": event.action,
        "actorPubkey": event.actor_pubkey,
        "message": event.message,
        "metadata": json.loads(event.metadata_json) if event.metadata_json else None,
    }
