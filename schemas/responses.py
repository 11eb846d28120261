"""
Response schemas for all API endpoints
"""

from datetime import date as date_type, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from schemas.social_media import ContentConstraints


class PlatformResponse(BaseModel):
    """A platform that can be connected"""
    platform: str = Field(..., description="Platform name")
    display_name: str
    auth_type: str
    scopes: List[str] = Field(default_factory=list)
    constraints: ContentConstraints


class ConnectResponse(BaseModel):
    """OAuth connection start"""
    auth_url: str = Field(..., description="OAuth authorization URL")
    state: str = Field(..., description="OAuth state parameter")
    platform: str = Field(..., description="Platform name")


class MastodonAppResponse(BaseModel):
    instance: str
    registered_at: datetime


class AccountResponse(BaseModel):
    """Connected account; tokens are never returned"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform: str
    external_account_id: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    account_url: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    status: str
    health_score: int
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    rate_limited_until: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    created_at: datetime


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    platform: str
    status: str
    attempt_count: int
    max_attempts: int
    platform_content_id: Optional[str] = None
    platform_url: Optional[str] = None
    last_error: Optional[str] = None
    error_kind: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    published_at: Optional[datetime] = None


class PostResponse(BaseModel):
    """Post with its per-target attempts"""
    id: UUID
    content: str
    media: List[Dict[str, Any]] = Field(default_factory=list)
    link_url: Optional[str] = None
    platform_content: Dict[str, Any] = Field(default_factory=dict)
    target_account_ids: List[UUID] = Field(default_factory=list)
    status: str
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    total_impressions: int = 0
    total_engagement: int = 0
    total_clicks: int = 0
    attempts: List[AttemptResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class DailySnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date_type
    followers_count: int
    followers_change: int
    following_count: int
    posts_count: int
    impressions: int
    reach: int
    engagement: int
    likes: int
    comments: int
    shares: int
    clicks: int
    engagement_rate: float


class OptimalTimeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    day_of_week: int = Field(..., description="0 = Sunday")
    hour: int = Field(..., description="Hour of day, UTC")
    engagement_score: float
    reach_score: float
    combined_score: float
    confidence: float
    sample_size: int
    is_default: bool


class SyncResponse(BaseModel):
    accounts_synced: int
    accounts_failed: int
    posts_synced: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)


class QueuedJobResponse(BaseModel):
    """Accepted background job"""
    job_id: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    services: Dict[str, str] = Field(..., description="Individual service statuses")
    version: str = Field(..., description="API version")
