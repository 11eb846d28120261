"""
Threads adapter (Threads Graph API)
"""

from typing import Any, Dict, Optional

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
from .facebook import insight_values

THREADS_URL = "https://graph.threads.net/v1.0"


class ThreadsAdapter(PlatformAdapter):
    """Two-step container publish, like Instagram, with text-only posts allowed"""

    platform = "threads"
    display_name = "Threads"
    authorize_url = "https://threads.net/oauth/authorize"
    token_url = "https://graph.threads.net/oauth/access_token"
    api_base_url = THREADS_URL
    default_scopes = ["threads_basic", "threads_content_publish", "threads_manage_insights"]
    scope_separator = ","
    constraints = ContentConstraints(
        max_chars=500,
        max_media=10,
        media_types=["image", "video"],
        max_image_bytes=8 * 1024 * 1024,
        max_video_bytes=1024 * 1024 * 1024,
        max_video_seconds=300,
    )

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        short = await super().exchange_code(config, code, redirect_uri)
        return await self._token_request(
            "https://graph.threads.net/access_token",
            {
                "grant_type": "th_exchange_token",
                "client_secret": config.client_secret,
                "access_token": short.access_token,
            },
            OAuthExchangeError,
            method="GET",
        )

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        return await self._token_request(
            "https://graph.threads.net/refresh_access_token",
            {"grant_type": "th_refresh_token", "access_token": account.access_token},
            RefreshFailedError,
            method="GET",
        )

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(
            f"{THREADS_URL}/me",
            params={"fields": "id,username,name,threads_profile_picture_url"},
        )
        followers = 0
        try:
            insights = await api.get(
                f"{THREADS_URL}/{data['id']}/threads_insights",
                params={"metric": "followers_count"},
            )
            for entry in insights.get("data", []):
                if entry.get("name") == "followers_count":
                    followers = (entry.get("total_value") or {}).get("value", 0)
        except PlatformAPIError:
            # Insights require threads_manage_insights, which users may decline
            pass
        username = data.get("username")
        return ProfileData(
            external_account_id=data["id"],
            handle=username,
            display_name=data.get("name") or username,
            avatar_url=data.get("threads_profile_picture_url"),
            account_url=f"https://www.threads.net/@{username}" if username else None,
            followers_count=followers,
        )

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        user_id = account.external_account_id
        media = content.media

        if len(media) > 1:
            children = []
            for item in media:
                child_body: Dict[str, Any] = {"is_carousel_item": True}
                if item.type == "video":
                    child_body.update({"media_type": "VIDEO", "video_url": item.url})
                else:
                    child_body.update({"media_type": "IMAGE", "image_url": item.url})
                child = await api.post(f"{THREADS_URL}/{user_id}/threads", json=child_body)
                children.append(child["id"])
            body: Dict[str, Any] = {"media_type": "CAROUSEL", "children": ",".join(children), "text": content.text}
        elif media and media[0].type == "video":
            body = {"media_type": "VIDEO", "video_url": media[0].url, "text": content.text}
        elif media:
            body = {"media_type": "IMAGE", "image_url": media[0].url, "text": content.text}
        else:
            body = {"media_type": "TEXT", "text": content.text}

        container = await api.post(f"{THREADS_URL}/{user_id}/threads", json=body)
        published = await api.post(
            f"{THREADS_URL}/{user_id}/threads_publish",
            json={"creation_id": container["id"]},
        )
        thread_id = published["id"]
        permalink = None
        try:
            details = await api.get(f"{THREADS_URL}/{thread_id}", params={"fields": "permalink"})
            permalink = details.get("permalink")
        except PlatformAPIError:
            pass
        return PublishResult(platform_content_id=thread_id, platform_url=permalink)

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        insights = await api.get(
            f"{THREADS_URL}/{platform_content_id}/insights",
            params={"metric": "views,likes,replies,reposts,quotes"},
        )
        values = insight_values(insights)
        return PostMetrics(
            impressions=values.get("views", 0),
            likes=values.get("likes", 0),
            comments=values.get("replies", 0),
            shares=values.get("reposts", 0) + values.get("quotes", 0),
        )
