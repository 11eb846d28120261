"""
SQLModel database models for SocialBridge
"""

from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import UUID, uuid4
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, Text, UniqueConstraint


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores UTC without tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccountStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    RATE_LIMITED = "rate_limited"
    REVOKED = "revoked"


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class PlatformAccount(SQLModel, table=True):
    __tablename__ = "platform_accounts"
    __table_args__ = (
        UniqueConstraint("site_id", "platform", "external_account_id", name="uq_account_site_platform_external"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    site_id: str = Field(index=True, max_length=64)
    tenant_id: Optional[str] = Field(default=None, max_length=64)
    created_by: Optional[str] = Field(default=None, max_length=64)
    platform: str = Field(max_length=32, index=True)
    external_account_id: str = Field(max_length=255)
    handle: Optional[str] = Field(default=None, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    avatar_url: Optional[str] = Field(default=None)
    account_url: Optional[str] = Field(default=None)

    # Opaque secrets; never logged or returned by the API
    access_token: str = Field(sa_column=Column(Text, nullable=False))
    refresh_token: Optional[str] = Field(default=None, sa_column=Column(Text))
    token_expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    scopes: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    followers_count: int = Field(default=0)
    following_count: int = Field(default=0)
    posts_count: int = Field(default=0)

    status: str = Field(default=AccountStatus.ACTIVE.value, max_length=20)  # active, expired, rate_limited, revoked
    health_score: int = Field(default=100)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    last_error_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    rate_limited_until: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # e.g. Pinterest default_board_id, Mastodon instance, Bluesky did
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class OAuthSession(SQLModel, table=True):
    __tablename__ = "oauth_sessions"

    state: str = Field(primary_key=True, max_length=128)
    platform: str = Field(max_length=32)
    site_id: str = Field(max_length=64)
    user_id: str = Field(max_length=64)
    tenant_id: Optional[str] = Field(default=None, max_length=64)
    redirect_uri: str
    code_verifier: Optional[str] = Field(default=None, max_length=128)
    instance: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    expires_at: datetime = Field(index=True, sa_type=DateTime)


class MastodonApp(SQLModel, table=True):
    __tablename__ = "mastodon_apps"

    instance: str = Field(primary_key=True, max_length=255)
    client_id: str
    client_secret: str = Field(sa_column=Column(Text, nullable=False))
    redirect_uri: str
    scopes: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    site_id: str = Field(index=True, max_length=64)
    tenant_id: Optional[str] = Field(default=None, max_length=64)
    created_by: Optional[str] = Field(default=None, max_length=64)
    content: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    media: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    # Per-platform overrides: {"twitter": {"content": "..."}}
    platform_content: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    link_url: Optional[str] = Field(default=None)
    target_account_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: str = Field(default=PostStatus.DRAFT.value, max_length=20, index=True)
    scheduled_at: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)
    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    total_impressions: int = Field(default=0)
    total_engagement: int = Field(default=0)
    total_clicks: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class PublishAttempt(SQLModel, table=True):
    __tablename__ = "publish_attempts"
    __table_args__ = (
        UniqueConstraint("post_id", "account_id", name="uq_attempt_post_account"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    post_id: UUID = Field(foreign_key="posts.id", index=True)
    account_id: UUID = Field(foreign_key="platform_accounts.id", index=True)
    platform: str = Field(max_length=32)
    platform_content_id: Optional[str] = Field(default=None, max_length=255)
    platform_url: Optional[str] = Field(default=None)
    attempt_count: int = Field(default=0)
    max_attempts: int = Field(default=3)
    status: str = Field(default=AttemptStatus.PENDING.value, max_length=20, index=True)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    error_kind: Optional[str] = Field(default=None, max_length=20)  # transient, permanent
    next_retry_at: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    published_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class DailyAnalyticsSnapshot(SQLModel, table=True):
    __tablename__ = "analytics_daily"
    __table_args__ = (
        UniqueConstraint("account_id", "date", name="uq_daily_account_date"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="platform_accounts.id", index=True)
    date: date_type
    followers_count: int = Field(default=0)
    followers_change: int = Field(default=0)
    following_count: int = Field(default=0)
    posts_count: int = Field(default=0)
    impressions: int = Field(default=0)
    reach: int = Field(default=0)
    engagement: int = Field(default=0)
    likes: int = Field(default=0)
    comments: int = Field(default=0)
    shares: int = Field(default=0)
    clicks: int = Field(default=0)
    engagement_rate: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class PostAnalytics(SQLModel, table=True):
    __tablename__ = "post_analytics"
    __table_args__ = (
        UniqueConstraint("post_id", "account_id", name="uq_post_analytics_post_account"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    post_id: UUID = Field(foreign_key="posts.id", index=True)
    account_id: UUID = Field(foreign_key="platform_accounts.id", index=True)
    platform_content_id: Optional[str] = Field(default=None, max_length=255)
    impressions: int = Field(default=0)
    reach: int = Field(default=0)
    engagement: int = Field(default=0)
    likes: int = Field(default=0)
    comments: int = Field(default=0)
    shares: int = Field(default=0)
    clicks: int = Field(default=0)
    engagement_rate: float = Field(default=0.0)
    synced_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class OptimalTimeSlot(SQLModel, table=True):
    __tablename__ = "optimal_times"
    __table_args__ = (
        UniqueConstraint("account_id", "day_of_week", "hour", name="uq_optimal_account_slot"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="platform_accounts.id", index=True)
    day_of_week: int = Field(ge=0, le=6)  # 0 = Sunday
    hour: int = Field(ge=0, le=23)
    engagement_score: float = Field(default=0.0)
    reach_score: float = Field(default=0.0)
    combined_score: float = Field(default=0.0)
    confidence: float = Field(default=0.0)
    sample_size: int = Field(default=0)
    is_default: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
