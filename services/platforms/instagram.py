"""
Instagram professional account adapter (Instagram API with Instagram Login)
"""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from models.database import PlatformAccount
from schemas.social_media import (
    AccountMetrics,
    ContentConstraints,
    MediaItem,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.exceptions import OAuthExchangeError, PlatformAPIError, RefreshFailedError, TransientPublishError
from .base import ApiSession, PlatformAdapter
from .facebook import insight_values

GRAPH_URL = "https://graph.instagram.com/v21.0"

# Video containers are processed asynchronously before they can be published
CONTAINER_POLL_ATTEMPTS = 10
CONTAINER_POLL_SECONDS = 3.0


class InstagramAdapter(PlatformAdapter):
    """Feed posts, reels and carousels; every post needs media"""

    platform = "instagram"
    display_name = "Instagram"
    authorize_url = "https://www.instagram.com/oauth/authorize"
    token_url = "https://api.instagram.com/oauth/access_token"
    api_base_url = GRAPH_URL
    default_scopes = [
        "instagram_business_basic",
        "instagram_business_content_publish",
        "instagram_business_manage_insights",
    ]
    scope_separator = ","
    constraints = ContentConstraints(
        max_chars=2200,
        max_media=10,
        requires_media="any",
        media_types=["image", "video"],
        max_image_bytes=8 * 1024 * 1024,
        max_video_bytes=1024 * 1024 * 1024,
        max_video_seconds=60 * 60,
        min_aspect_ratio=4 / 5,
        max_aspect_ratio=1.91,
    )
    inline_links = False
    poll_interval = CONTAINER_POLL_SECONDS

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        short = await super().exchange_code(config, code, redirect_uri)
        # Short-lived tokens last an hour; swap for the 60-day token
        return await self._token_request(
            "https://graph.instagram.com/access_token",
            {
                "grant_type": "ig_exchange_token",
                "client_secret": config.client_secret,
                "access_token": short.access_token,
            },
            OAuthExchangeError,
            method="GET",
        )

    def parse_token_response(self, payload: Dict[str, Any]) -> TokenSet:
        # The code exchange wraps its result in a one-element "data" list
        if isinstance(payload.get("data"), list) and payload["data"]:
            payload = payload["data"][0]
        tokens = super().parse_token_response(payload)
        if payload.get("permissions") and not tokens.scopes:
            permissions = payload["permissions"]
            tokens.scopes = permissions.split(",") if isinstance(permissions, str) else list(permissions)
        return tokens

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        """Long-lived tokens refresh themselves; there is no refresh token"""
        return await self._token_request(
            "https://graph.instagram.com/refresh_access_token",
            {"grant_type": "ig_refresh_token", "access_token": account.access_token},
            RefreshFailedError,
            method="GET",
        )

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(
            f"{GRAPH_URL}/me",
            params={
                "fields": "user_id,username,name,profile_picture_url,followers_count,follows_count,media_count"
            },
        )
        username = data.get("username")
        return ProfileData(
            external_account_id=str(data.get("user_id") or data["id"]),
            handle=username,
            display_name=data.get("name") or username,
            avatar_url=data.get("profile_picture_url"),
            account_url=f"https://www.instagram.com/{username}" if username else None,
            followers_count=data.get("followers_count", 0),
            following_count=data.get("follows_count", 0),
            posts_count=data.get("media_count", 0),
        )

    def _container_body(self, item: MediaItem, carousel_item: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if item.type == "video":
            body["media_type"] = "VIDEO" if carousel_item else "REELS"
            body["video_url"] = item.url
        else:
            body["image_url"] = item.url
        if carousel_item:
            body["is_carousel_item"] = True
        return body

    async def _wait_until_ready(self, api: ApiSession, container_id: str) -> None:
        for _ in range(CONTAINER_POLL_ATTEMPTS):
            status = await api.get(f"{GRAPH_URL}/{container_id}", params={"fields": "status_code"})
            code = status.get("status_code")
            if code in (None, "FINISHED", "PUBLISHED"):
                return
            if code == "ERROR":
                raise PlatformAPIError("Instagram could not process the media", status_code=400)
            await asyncio.sleep(self.poll_interval)
        raise TransientPublishError("Instagram media is still processing")

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        ig_id = account.external_account_id
        media = content.media

        if len(media) == 1:
            body = self._container_body(media[0])
            body["caption"] = content.text
            container = await api.post(f"{GRAPH_URL}/{ig_id}/media", json=body)
            if media[0].type == "video":
                await self._wait_until_ready(api, container["id"])
        else:
            children: List[str] = []
            for item in media:
                child = await api.post(f"{GRAPH_URL}/{ig_id}/media", json=self._container_body(item, True))
                if item.type == "video":
                    await self._wait_until_ready(api, child["id"])
                children.append(child["id"])
            container = await api.post(
                f"{GRAPH_URL}/{ig_id}/media",
                json={"media_type": "CAROUSEL", "caption": content.text, "children": ",".join(children)},
            )

        published = await api.post(
            f"{GRAPH_URL}/{ig_id}/media_publish",
            json={"creation_id": container["id"]},
        )
        media_id = published["id"]
        permalink = None
        try:
            details = await api.get(f"{GRAPH_URL}/{media_id}", params={"fields": "permalink"})
            permalink = details.get("permalink")
        except PlatformAPIError:
            pass
        return PublishResult(platform_content_id=media_id, platform_url=permalink)

    async def fetch_account_metrics(
        self, api: ApiSession, account: PlatformAccount, day: date
    ) -> AccountMetrics:
        profile = await self.fetch_profile(api, account)
        since = datetime.combine(day, time.min, tzinfo=timezone.utc)
        insights = await api.get(
            f"{GRAPH_URL}/{account.external_account_id}/insights",
            params={
                "metric": "reach,total_interactions,likes,comments,shares",
                "period": "day",
                "metric_type": "total_value",
                "since": int(since.timestamp()),
                "until": int((since + timedelta(days=1)).timestamp()),
            },
        )
        values = {
            entry.get("name"): (entry.get("total_value") or {}).get("value", 0)
            for entry in insights.get("data", [])
        }
        return AccountMetrics(
            followers_count=profile.followers_count,
            following_count=profile.following_count,
            posts_count=profile.posts_count,
            reach=values.get("reach", 0),
            impressions=values.get("reach", 0),
            engagement=values.get("total_interactions", 0),
            likes=values.get("likes", 0),
            comments=values.get("comments", 0),
            shares=values.get("shares", 0),
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        insights = await api.get(
            f"{GRAPH_URL}/{platform_content_id}/insights",
            params={"metric": "views,reach,likes,comments,shares,saved"},
        )
        values = insight_values(insights)
        return PostMetrics(
            impressions=values.get("views", 0),
            reach=values.get("reach", 0),
            likes=values.get("likes", 0),
            comments=values.get("comments", 0),
            shares=values.get("shares", 0),
            saves=values.get("saved", 0),
        )
