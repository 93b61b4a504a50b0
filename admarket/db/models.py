import datetime as dt
import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Role(str, Enum):
    viewer = "viewer"
    advertiser = "advertiser"
    publisher = "publisher"
    admin = "admin"
    stakeholder = "stakeholder"


class AdStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    AD_PAYMENT = "AD_PAYMENT"
    PUBLISHER_EARNING = "PUBLISHER_EARNING"
    USER_EARNING = "USER_EARNING"
    REFUND = "REFUND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_FUNDING = "PENDING_FUNDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ApiKeyType(str, Enum):
    publisher = "publisher"
    advertiser = "advertiser"
    developer = "developer"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    nostr_pubkey = Column(String(128), unique=True, index=True, nullable=False)
    current_role = Column(String(32), default=Role.viewer.value, nullable=False)
    is_test_user = Column(Boolean, default=False, nullable=False)
    balance = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan", lazy="selectin")
    preferences = relationship("UserPreferences", back_populates="user", cascade="all, delete-orphan", uselist=False)
    ads = relationship("Ad", back_populates="advertiser", cascade="all, delete-orphan")
    campaigns = relationship("Campaign", back_populates="advertiser", cascade="all, delete-orphan")
    spaces = relationship("AdSpace", back_populates="publisher", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="user", cascade="all, delete-orphan")

    def active_roles(self) -> list[str]:
        return [r.role for r in self.roles if r.is_active]


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    role = Column(String(32), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_test_role = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now)

    user = relationship("User", back_populates="roles")

    __table_args__ = (UniqueConstraint("user_id", "role", name="uix_user_roles_user_role"),)


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    share_location = Column(Boolean, default=False, nullable=False)
    share_interests = Column(Boolean, default=False, nullable=False)
    share_browsing = Column(Boolean, default=False, nullable=False)
    share_age = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    user = relationship("User", back_populates="preferences")


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)
    advertiser_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    budget = Column(Integer, nullable=False)
    daily_budget = Column(Integer)
    status = Column(String(32), default=CampaignStatus.DRAFT.value, nullable=False)
    target_location = Column(Text)
    target_interests = Column(Text)
    target_age = Column(String(64))
    target_audience = Column(Text)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    advertiser = relationship("User", back_populates="campaigns")
    ads = relationship("Ad", back_populates="campaign", lazy="selectin")


class Ad(Base):
    __tablename__ = "ads"

    id = Column(String(36), primary_key=True, default=_uuid)
    advertiser_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="SET NULL"), index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    image_url = Column(Text)
    target_url = Column(Text, nullable=False)
    url_parameters = Column(Text)
    budget = Column(Integer, nullable=False)
    daily_budget = Column(Integer, nullable=False)
    bid_per_impression = Column(Integer, nullable=False)
    bid_per_click = Column(Integer, nullable=False)
    spent = Column(Integer, default=0, nullable=False)
    status = Column(String(32), default=AdStatus.PENDING.value, index=True, nullable=False)
    format = Column(String(32), default="text", nullable=False)
    freq_cap_views = Column(Integer)
    freq_cap_hours = Column(Integer)
    target_location = Column(Text)
    target_interests = Column(Text)
    target_age = Column(String(64))
    created_at = Column(DateTime, default=_now, index=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    advertiser = relationship("User", back_populates="ads")
    campaign = relationship("Campaign", back_populates="ads")
    placements = relationship("AdPlacement", back_populates="ad", cascade="all, delete-orphan", lazy="selectin")

    def interests(self) -> list[str]:
        return split_list(self.target_interests)


class AdSpace(Base):
    __tablename__ = "ad_spaces"

    id = Column(String(36), primary_key=True, default=_uuid)
    publisher_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    website = Column(Text, nullable=False)
    min_bid_per_impression = Column(Integer, default=0, nullable=False)
    min_bid_per_click = Column(Integer, default=0, nullable=False)
    dimensions = Column(String(64), nullable=False)
    allowed_ad_types = Column(Text, nullable=False)
    content_category = Column(String(128), nullable=False)
    content_tags = Column(Text)
    created_at = Column(DateTime, default=_now, index=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    publisher = relationship("User", back_populates="spaces")
    placements = relationship("AdPlacement", back_populates="space", cascade="all, delete-orphan", lazy="selectin")


class AdPlacement(Base):
    __tablename__ = "ad_placements"

    id = Column(String(36), primary_key=True, default=_uuid)
    ad_id = Column(String(36), ForeignKey("ads.id", ondelete="CASCADE"), index=True, nullable=False)
    space_id = Column(String(36), ForeignKey("ad_spaces.id", ondelete="CASCADE"), index=True, nullable=False)
    approval_status = Column(String(32), default=ApprovalStatus.PENDING.value, nullable=False)
    approved_at = Column(DateTime)
    rejection_reason = Column(Text)
    impressions = Column(Integer, default=0, nullable=False)
    clicks = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    ad = relationship("Ad", back_populates="placements", lazy="joined")
    space = relationship("AdSpace", back_populates="placements", lazy="joined")

    __table_args__ = (UniqueConstraint("ad_id", "space_id", name="uix_ad_placements_ad_space"),)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(String(32), nullable=False)
    status = Column(String(32), default=TransactionStatus.PENDING.value, nullable=False)
    description = Column(Text)
    lightning_invoice = Column(Text)
    payment_hash = Column(String(128), index=True)
    balance_before = Column(Integer)
    balance_after = Column(Integer)
    created_at = Column(DateTime, default=_now, index=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    user = relationship("User", back_populates="transactions")


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    key_hash = Column(String(128), unique=True, index=True, nullable=False)
    key_prefix = Column(String(16), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(32), default=ApiKeyType.publisher.value, nullable=False)
    scopes = Column(Text, default="read", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    last_used = Column(DateTime)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=_now)

    user = relationship("User", back_populates="api_keys")


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime, default=_now, index=True)
    level = Column(String(16), default="info", nullable=False)
    action = Column(String(64), nullable=False)
    actor_pubkey = Column(String(128))
    message = Column(Text, nullable=False)
    metadata_json = Column(Text)


def split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def join_list(values) -> str | None:
    if values is None:
        return None
    if isinstance(values, str):
        values = values.split(",")
    cleaned = [str(v).strip() for v in values if str(v).strip()]
    return ",".join(cleaned) if cleaned else None


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value
