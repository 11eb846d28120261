"""
YouTube adapter (Google OAuth + YouTube Data API v3)
"""

from typing import Dict

from models.database import PlatformAccount
from schemas.social_media import (
    ContentConstraints,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
)
from utils.exceptions import PlatformAPIError
from .base import ApiSession, PlatformAdapter

API_URL = "https://www.googleapis.com/youtube/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
MAX_TITLE_CHARS = 100


class YouTubeAdapter(PlatformAdapter):
    """Video uploads through the resumable upload protocol"""

    platform = "youtube"
    display_name = "YouTube"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    revoke_url = "https://oauth2.googleapis.com/revoke"
    api_base_url = API_URL
    default_scopes = [
        "https://www.googleapis.com/auth/youtube.upload",
        "https://www.googleapis.com/auth/youtube.readonly",
    ]
    constraints = ContentConstraints(
        max_chars=5000,
        max_media=1,
        requires_media="video",
        media_types=["video"],
        max_video_bytes=256 * 1024 * 1024 * 1024,
        max_video_seconds=12 * 60 * 60,
    )

    def authorization_params(self, config: PlatformConfig) -> Dict[str, str]:
        # Google only issues a refresh token for offline access with consent
        return {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"}

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        token = account.refresh_token or account.access_token
        response = await self.client.post(config.revoke_url, data={"token": token})
        return response.is_success

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(f"{API_URL}/channels", params={"part": "snippet,statistics", "mine": "true"})
        items = data.get("items") or []
        if not items:
            raise PlatformAPIError("No YouTube channel exists for this Google account", status_code=404)
        channel = items[0]
        snippet = channel.get("snippet", {})
        stats = channel.get("statistics", {})
        handle = snippet.get("customUrl")
        return ProfileData(
            external_account_id=channel["id"],
            handle=handle or snippet.get("title"),
            display_name=snippet.get("title"),
            avatar_url=(snippet.get("thumbnails", {}).get("default") or {}).get("url"),
            account_url=f"https://www.youtube.com/channel/{channel['id']}",
            followers_count=int(stats.get("subscriberCount", 0)),
            posts_count=int(stats.get("videoCount", 0)),
        )

    def _title(self, content: PreparedContent) -> str:
        title = content.title or (content.text.splitlines()[0] if content.text else "") or "Untitled"
        return title[:MAX_TITLE_CHARS]

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        video = next(item for item in content.media if item.type == "video")
        payload, content_type = await self.download(video)

        session = await api.checked(
            "POST",
            UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            json={
                "snippet": {"title": self._title(content), "description": content.text},
                "status": {"privacyStatus": "public", "selfDeclaredMadeForKids": False},
            },
            headers={
                "X-Upload-Content-Type": content_type,
                "X-Upload-Content-Length": str(len(payload)),
            },
        )
        upload_location = session.headers.get("location")
        if not upload_location:
            raise PlatformAPIError("YouTube did not return an upload session", status_code=502)

        uploaded = await api.call(
            "PUT",
            upload_location,
            content=payload,
            headers={"Content-Type": content_type},
        )
        video_id = uploaded["id"]
        return PublishResult(
            platform_content_id=video_id,
            platform_url=f"https://www.youtube.com/watch?v={video_id}",
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        data = await api.get(f"{API_URL}/videos", params={"part": "statistics", "id": platform_content_id})
        items = data.get("items") or [{}]
        stats = items[0].get("statistics", {})
        return PostMetrics(
            impressions=int(stats.get("viewCount", 0)),
            likes=int(stats.get("likeCount", 0)),
            comments=int(stats.get("commentCount", 0)),
            saves=int(stats.get("favoriteCount", 0)),
        )
