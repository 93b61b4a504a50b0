from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionData(BaseModel):
    pubkey: str
    user_id: str
    is_test_mode: bool = False
    expires_at: Optional[dt.datetime] = Field(default=None, description="UTC expiration timestamp")

    def is_expired(self) -> bool:
        if not self.expires_at:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=dt.timezone.utc)
        return dt.datetime.now(dt.timezone.utc) >= expires_at


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LoginPayload(CamelModel):
    pubkey: Any = None
    is_test: bool = Field(default=False, alias="isTest")
    signature: Optional[str] = None
    challenge: Optional[str] = None


class NostrLoginPayload(CamelModel):
    pubkey: Optional[str] = None
    signature: Optional[str] = None
    challenge: Optional[str] = None
    event: Optional[dict[str, Any]] = None


class ApiKeyCreatePayload(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    expires_at: Optional[dt.datetime] = Field(default=None, alias="expiresAt")
    scopes: str = "read"
    type: str = "publisher"


class ApiKeyUpdatePayload(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    scopes: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    expires_at: Optional[dt.datetime] = Field(default=None, alias="expiresAt")


def camel_name(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)
