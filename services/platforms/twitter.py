"""
Twitter/X adapter (API v2, OAuth 2.0 with PKCE)
"""

from typing import Any, Dict, List, Optional

from models.database import PlatformAccount
from schemas.social_media import (
    AuthType,
    ContentConstraints,
    MediaItem,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.exceptions import OAuthExchangeError, PermanentPublishError, RefreshFailedError
from .base import ApiSession, PlatformAdapter

API_URL = "https://api.twitter.com/2"
MEDIA_UPLOAD_URL = "https://api.x.com/2/media/upload"
CHUNK_SIZE = 4 * 1024 * 1024


class TwitterAdapter(PlatformAdapter):
    """Twitter/X API v2 adapter; refresh tokens rotate on every use"""

    platform = "twitter"
    display_name = "X (Twitter)"
    auth_type = AuthType.OAUTH2_PKCE
    authorize_url = "https://twitter.com/i/oauth2/authorize"
    token_url = f"{API_URL}/oauth2/token"
    revoke_url = f"{API_URL}/oauth2/revoke"
    api_base_url = API_URL
    default_scopes = ["tweet.read", "tweet.write", "users.read", "media.write", "offline.access"]
    constraints = ContentConstraints(
        max_chars=280,
        truncate_text=True,
        max_media=4,
        media_types=["image", "video", "gif"],
        max_image_bytes=5 * 1024 * 1024,
        max_video_bytes=512 * 1024 * 1024,
        max_video_seconds=140,
    )
    rotates_refresh_token = True

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": config.client_id,
            "code_verifier": code_verifier,
        }
        # Confidential clients authenticate with HTTP Basic
        return await self._token_request(
            config.token_url, data, OAuthExchangeError, auth=(config.client_id, config.client_secret)
        )

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        if not account.refresh_token:
            raise RefreshFailedError("No refresh token stored for twitter", {"platform": self.platform})
        data = {
            "grant_type": "refresh_token",
            "refresh_token": account.refresh_token,
            "client_id": config.client_id,
        }
        return await self._token_request(
            config.token_url, data, RefreshFailedError, auth=(config.client_id, config.client_secret)
        )

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        response = await self.client.post(
            config.revoke_url,
            data={"token": account.access_token, "token_type_hint": "access_token"},
            auth=(config.client_id, config.client_secret),
        )
        return response.is_success

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(
            f"{API_URL}/users/me",
            params={"user.fields": "profile_image_url,public_metrics"},
        )
        user = data.get("data", {})
        metrics = user.get("public_metrics", {})
        return ProfileData(
            external_account_id=user["id"],
            handle=user.get("username"),
            display_name=user.get("name"),
            avatar_url=user.get("profile_image_url"),
            account_url=f"https://x.com/{user.get('username')}",
            followers_count=metrics.get("followers_count", 0),
            following_count=metrics.get("following_count", 0),
            posts_count=metrics.get("tweet_count", 0),
        )

    async def _upload_media(self, api: ApiSession, item: MediaItem) -> str:
        payload, content_type = await self.download(item)
        if item.type != "video":
            category = "tweet_gif" if item.type == "gif" else "tweet_image"
            data = await api.post(
                MEDIA_UPLOAD_URL,
                data={"media_category": category},
                files={"media": ("upload", payload, content_type)},
            )
            return str(data.get("data", data).get("id") or data.get("media_id_string"))

        init = await api.post(
            MEDIA_UPLOAD_URL,
            data={
                "command": "INIT",
                "media_type": content_type,
                "total_bytes": str(len(payload)),
                "media_category": "tweet_video",
            },
        )
        media_id = str(init.get("data", init).get("id") or init.get("media_id_string"))
        for index, offset in enumerate(range(0, len(payload), CHUNK_SIZE)):
            await api.post(
                MEDIA_UPLOAD_URL,
                data={"command": "APPEND", "media_id": media_id, "segment_index": str(index)},
                files={"media": ("chunk", payload[offset:offset + CHUNK_SIZE], "application/octet-stream")},
            )
        await api.post(MEDIA_UPLOAD_URL, data={"command": "FINALIZE", "media_id": media_id})
        return media_id

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        body: Dict[str, Any] = {"text": content.text}
        if content.media:
            media_ids: List[str] = [await self._upload_media(api, item) for item in content.media]
            body["media"] = {"media_ids": media_ids}

        data = await api.post(f"{API_URL}/tweets", json=body)
        tweet_id = (data.get("data") or {}).get("id")
        if not tweet_id:
            # Accepted but unidentified; a retry could post the tweet twice
            raise PermanentPublishError("X accepted the tweet but returned no id", {"response": data})
        return PublishResult(
            platform_content_id=tweet_id,
            platform_url=f"https://x.com/i/status/{tweet_id}",
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        data = await api.get(
            f"{API_URL}/tweets/{platform_content_id}",
            params={"tweet.fields": "public_metrics"},
        )
        metrics = data.get("data", {}).get("public_metrics", {})
        return PostMetrics(
            impressions=metrics.get("impression_count", 0),
            likes=metrics.get("like_count", 0),
            comments=metrics.get("reply_count", 0),
            shares=metrics.get("retweet_count", 0) + metrics.get("quote_count", 0),
            saves=metrics.get("bookmark_count", 0),
        )
