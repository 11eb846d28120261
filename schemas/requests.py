"""
Request schemas for all API endpoints
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from schemas.social_media import MediaItem


class ConnectRequest(BaseModel):
    """Start an OAuth connection"""
    redirect_uri: Optional[str] = Field(None, description="Override of the configured OAuth redirect URI")
    instance: Optional[str] = Field(None, description="Mastodon instance domain")


class BlueskySessionRequest(BaseModel):
    """App-password connection for Bluesky"""
    identifier: str = Field(..., min_length=1, description="Handle or email")
    app_password: str = Field(..., min_length=1, description="Bluesky app password")
    service_url: Optional[str] = Field(None, description="PDS URL when not bsky.social")

    @field_validator('identifier')
    @classmethod
    def strip_handle(cls, v):
        v = v.strip().lstrip("@")
        if not v:
            raise ValueError("Identifier cannot be empty")
        return v


class MastodonRegisterRequest(BaseModel):
    """Register SocialBridge with a Mastodon instance"""
    instance: str = Field(..., min_length=1, max_length=255, description="Instance domain, e.g. mastodon.social")


class PostCreateRequest(BaseModel):
    """Create a draft or scheduled post"""
    content: str = Field("", max_length=10000, description="Base text for every target")
    media: List[MediaItem] = Field(default_factory=list, max_length=10)
    link_url: Optional[str] = Field(None, description="Link attached to the post")
    platform_content: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Overrides keyed by platform or account id: content, media, link_url, title",
    )
    target_account_ids: List[UUID] = Field(..., min_length=1, description="Accounts to publish to")
    scheduled_at: Optional[datetime] = Field(None, description="UTC time to publish; omit for a draft")

    @model_validator(mode="after")
    def require_content(self):
        if not self.content.strip() and not self.media and not self.platform_content:
            raise ValueError("Post needs content, media or per-platform content")
        return self


class PostUpdateRequest(BaseModel):
    """Edit a post that has not started publishing"""
    content: Optional[str] = Field(None, max_length=10000)
    media: Optional[List[MediaItem]] = Field(None, max_length=10)
    link_url: Optional[str] = None
    platform_content: Optional[Dict[str, Dict[str, Any]]] = None
    target_account_ids: Optional[List[UUID]] = Field(None, min_length=1)
    scheduled_at: Optional[datetime] = None
    unschedule: bool = Field(False, description="Return a scheduled post to draft")


class SyncRequest(BaseModel):
    """On-demand analytics sync"""
    account_ids: Optional[List[UUID]] = Field(None, description="Defaults to every account of the site")
    day: Optional[date] = Field(None, description="Snapshot date, defaults to today (UTC)")
    include_post_metrics: bool = Field(True)
