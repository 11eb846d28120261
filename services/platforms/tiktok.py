"""
TikTok adapter (Login Kit v2 + Content Posting API)
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from models.database import PlatformAccount
from schemas.social_media import (
    ContentConstraints,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.exceptions import OAuthExchangeError, PlatformAPIError, RefreshFailedError
from .base import ApiSession, PlatformAdapter

API_URL = "https://open.tiktokapis.com/v2"
PROFILE_FIELDS = "open_id,union_id,avatar_url,display_name,username,follower_count,following_count,video_count,profile_deep_link"


def raise_for_tiktok(payload: Dict[str, Any]) -> Dict[str, Any]:
    """TikTok reports failures in an error envelope, sometimes with HTTP 200"""
    error = payload.get("error") or {}
    if error.get("code") not in (None, "ok"):
        raise PlatformAPIError(error.get("message") or error["code"], status_code=400)
    return payload.get("data") or {}


class TikTokAdapter(PlatformAdapter):
    """Uses client_key instead of client_id; refresh tokens rotate"""

    platform = "tiktok"
    display_name = "TikTok"
    authorize_url = "https://www.tiktok.com/v2/auth/authorize/"
    token_url = f"{API_URL}/oauth/token/"
    revoke_url = f"{API_URL}/oauth/revoke/"
    api_base_url = API_URL
    default_scopes = ["user.info.basic", "user.info.profile", "user.info.stats", "video.publish", "video.list"]
    scope_separator = ","
    constraints = ContentConstraints(
        max_chars=2200,
        max_media=1,
        requires_media="video",
        media_types=["video"],
        max_video_bytes=4 * 1024 * 1024 * 1024,
        max_video_seconds=10 * 60,
    )
    rotates_refresh_token = True

    def build_authorization_url(
        self,
        config: PlatformConfig,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> str:
        params = {
            "client_key": config.client_id,
            "response_type": "code",
            "scope": self.scope_separator.join(config.scopes),
            "redirect_uri": redirect_uri,
            "state": state,
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        data = {
            "client_key": config.client_id,
            "client_secret": config.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        return await self._token_request(config.token_url, data, OAuthExchangeError)

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        if not account.refresh_token:
            raise RefreshFailedError("No refresh token stored for tiktok", {"platform": self.platform})
        data = {
            "client_key": config.client_id,
            "client_secret": config.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": account.refresh_token,
        }
        return await self._token_request(config.token_url, data, RefreshFailedError)

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        response = await self.client.post(
            config.revoke_url,
            data={
                "client_key": config.client_id,
                "client_secret": config.client_secret,
                "token": account.access_token,
            },
        )
        return response.is_success

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        payload = await api.get(f"{API_URL}/user/info/", params={"fields": PROFILE_FIELDS})
        user = raise_for_tiktok(payload).get("user", {})
        username = user.get("username")
        return ProfileData(
            external_account_id=user["open_id"],
            handle=username or user.get("display_name"),
            display_name=user.get("display_name"),
            avatar_url=user.get("avatar_url"),
            account_url=user.get("profile_deep_link") or (f"https://www.tiktok.com/@{username}" if username else None),
            followers_count=user.get("follower_count", 0),
            following_count=user.get("following_count", 0),
            posts_count=user.get("video_count", 0),
        )

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        video = next(item for item in content.media if item.type == "video")
        payload = await api.post(
            f"{API_URL}/post/publish/video/init/",
            json={
                "post_info": {
                    "title": content.text,
                    # Unaudited apps may only post privately
                    "privacy_level": "SELF_ONLY",
                    "disable_comment": False,
                },
                "source_info": {"source": "PULL_FROM_URL", "video_url": video.url},
            },
        )
        data = raise_for_tiktok(payload)
        return PublishResult(platform_content_id=data["publish_id"])

    async def _video_id(self, api: ApiSession, publish_id: str) -> Optional[str]:
        payload = await api.post(f"{API_URL}/post/publish/status/fetch/", json={"publish_id": publish_id})
        data = raise_for_tiktok(payload)
        # Field name is spelled this way by the API
        post_ids = data.get("publicaly_available_post_id") or []
        return str(post_ids[0]) if post_ids else None

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        video_id = platform_content_id
        if not video_id.isdigit():
            video_id = await self._video_id(api, platform_content_id)
            if video_id is None:
                # Private or still processing: nothing to measure yet
                return PostMetrics()
        payload = await api.post(
            f"{API_URL}/video/query/",
            params={"fields": "id,view_count,like_count,comment_count,share_count"},
            json={"filters": {"video_ids": [video_id]}},
        )
        videos = raise_for_tiktok(payload).get("videos") or [{}]
        video = videos[0]
        return PostMetrics(
            impressions=video.get("view_count", 0),
            likes=video.get("like_count", 0),
            comments=video.get("comment_count", 0),
            shares=video.get("share_count", 0),
        )
