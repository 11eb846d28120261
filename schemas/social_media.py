"""
Schemas shared by the platform adapters, OAuth flows and publishing engine
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AuthType(str, Enum):
    OAUTH2 = "oauth2"
    OAUTH2_PKCE = "oauth2_pkce"
    APP_PASSWORD = "app_password"
    DYNAMIC_REGISTRATION = "dynamic_registration"


class MediaItem(BaseModel):
    """A media file already hosted at a public URL"""
    url: str
    type: str = Field("image", pattern="^(image|video|gif|audio)$")
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    duration_seconds: Optional[float] = Field(None, ge=0)
    alt_text: Optional[str] = None

    @property
    def aspect_ratio(self) -> Optional[float]:
        if self.width and self.height:
            return self.width / self.height
        return None


class ContentConstraints(BaseModel):
    """Per-platform limits enforced when content is translated for publishing"""
    max_chars: int
    truncate_text: bool = False
    max_media: int = 0
    requires_media: Optional[str] = None  # "image", "video" or "any"
    media_types: List[str] = Field(default_factory=list)
    max_image_bytes: Optional[int] = None
    max_video_bytes: Optional[int] = None
    max_video_seconds: Optional[int] = None
    min_aspect_ratio: Optional[float] = None
    max_aspect_ratio: Optional[float] = None


class PlatformConfig(BaseModel):
    """Registry entry: endpoints, credentials and constraints for one platform"""
    platform: str
    display_name: str
    auth_type: AuthType
    authorize_url: Optional[str] = None
    token_url: Optional[str] = None
    revoke_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    api_base_url: str
    constraints: ContentConstraints
    tokens_expire: bool = True
    rotates_refresh_token: bool = False

    @property
    def is_configured(self) -> bool:
        """App-password and per-instance platforms carry no app credentials"""
        if self.auth_type in (AuthType.APP_PASSWORD, AuthType.DYNAMIC_REGISTRATION):
            return True
        return bool(self.client_id and self.client_secret)

    @property
    def uses_pkce(self) -> bool:
        return self.auth_type == AuthType.OAUTH2_PKCE


class TokenSet(BaseModel):
    """Result of a code exchange, password exchange or refresh"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def expiry(self, now: datetime) -> Optional[datetime]:
        if self.expires_at is not None:
            return self.expires_at
        if self.expires_in:
            return now + timedelta(seconds=int(self.expires_in))
        return None


class ProfileData(BaseModel):
    """Normalized profile returned by each platform's profile endpoint"""
    external_account_id: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    account_url: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    settings: Dict[str, Any] = Field(default_factory=dict)


class PostPayload(BaseModel):
    """Platform-agnostic content for one target, overrides already applied"""
    content: str = ""
    media: List[MediaItem] = Field(default_factory=list)
    link_url: Optional[str] = None
    title: Optional[str] = None


class PreparedContent(BaseModel):
    """Content after constraint enforcement for a specific platform"""
    text: str
    media: List[MediaItem] = Field(default_factory=list)
    link_url: Optional[str] = None
    title: Optional[str] = None
    truncated: bool = False


class PublishResult(BaseModel):
    platform_content_id: str
    platform_url: Optional[str] = None


class AccountMetrics(BaseModel):
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    impressions: int = 0
    reach: int = 0
    engagement: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    clicks: int = 0


class PostMetrics(BaseModel):
    impressions: int = 0
    reach: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    clicks: int = 0
    saves: int = 0

    @property
    def engagement(self) -> int:
        return self.likes + self.comments + self.shares + self.saves

    @property
    def engagement_rate(self) -> float:
        """Engagement as a percentage of impressions (reach when impressions are unknown)"""
        base = self.impressions or self.reach
        if not base:
            return 0.0
        return round(self.engagement / base * 100, 4)


class AuthorizationStart(BaseModel):
    """Where to send the user, and the state token that will come back"""
    auth_url: str
    state: str
