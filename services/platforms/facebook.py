"""
Facebook Pages adapter (Graph API)
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from models.database import PlatformAccount
from schemas.social_media import (
    AccountMetrics,
    ContentConstraints,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.exceptions import OAuthExchangeError, PlatformAPIError
from .base import ApiSession, PlatformAdapter

GRAPH_VERSION = "v21.0"
GRAPH_URL = f"https://graph.facebook.com/{GRAPH_VERSION}"


def insight_values(payload: Dict[str, Any]) -> Dict[str, int]:
    """Flatten a Graph insights response to {metric: latest value}"""
    values: Dict[str, int] = {}
    for entry in payload.get("data", []):
        points = entry.get("values") or []
        if points:
            value = points[-1].get("value", 0)
            values[entry.get("name")] = value if isinstance(value, int) else 0
    return values


class FacebookAdapter(PlatformAdapter):
    """Publishes to a Facebook Page using a non-expiring Page access token"""

    platform = "facebook"
    display_name = "Facebook"
    authorize_url = f"https://www.facebook.com/{GRAPH_VERSION}/dialog/oauth"
    token_url = f"{GRAPH_URL}/oauth/access_token"
    api_base_url = GRAPH_URL
    default_scopes = ["pages_show_list", "pages_manage_posts", "pages_read_engagement", "read_insights"]
    scope_separator = ","
    constraints = ContentConstraints(
        max_chars=63206,
        max_media=10,
        media_types=["image", "video", "gif"],
        max_image_bytes=10 * 1024 * 1024,
        max_video_bytes=10 * 1024 * 1024 * 1024,
        max_video_seconds=240 * 60,
    )
    # Page tokens derived from a long-lived user token carry no expiry
    tokens_expire = False
    inline_links = False

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        short = await self._token_request(
            config.token_url,
            {
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
            OAuthExchangeError,
            method="GET",
        )
        long_lived = await self._token_request(
            config.token_url,
            {
                "grant_type": "fb_exchange_token",
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "fb_exchange_token": short.access_token,
            },
            OAuthExchangeError,
            method="GET",
        )

        response = await self.client.get(
            f"{GRAPH_URL}/me/accounts",
            params={"fields": "id,name,access_token"},
            headers={"Authorization": f"Bearer {long_lived.access_token}"},
        )
        pages = response.json().get("data", []) if response.is_success else []
        if not pages:
            raise OAuthExchangeError(
                "No Facebook Page is available for this login",
                {"platform": self.platform},
            )
        page = pages[0]
        return TokenSet(
            access_token=page["access_token"],
            scopes=long_lived.scopes,
            extra={"page_id": page["id"], "page_name": page.get("name")},
        )

    def _page_id(self, account: PlatformAccount) -> str:
        return account.external_account_id or account.settings.get("page_id")

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        page_id = self._page_id(account)
        data = await api.get(
            f"{GRAPH_URL}/{page_id}",
            params={"fields": "id,name,username,link,fan_count,followers_count,picture{url}"},
        )
        return ProfileData(
            external_account_id=data["id"],
            handle=data.get("username") or data.get("name"),
            display_name=data.get("name"),
            avatar_url=(data.get("picture") or {}).get("data", {}).get("url"),
            account_url=data.get("link") or f"https://www.facebook.com/{data['id']}",
            followers_count=data.get("followers_count") or data.get("fan_count") or 0,
        )

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        page_id = self._page_id(account)
        media = content.media

        if len(media) == 1 and media[0].type == "video":
            data = await api.post(
                f"{GRAPH_URL}/{page_id}/videos",
                json={"file_url": media[0].url, "description": content.text},
            )
        elif len(media) == 1:
            data = await api.post(
                f"{GRAPH_URL}/{page_id}/photos",
                json={"url": media[0].url, "message": content.text},
            )
            data = {"id": data.get("post_id") or data.get("id")}
        elif media:
            attached: List[Dict[str, str]] = []
            for item in media:
                photo = await api.post(
                    f"{GRAPH_URL}/{page_id}/photos",
                    json={"url": item.url, "published": False},
                )
                attached.append({"media_fbid": photo["id"]})
            data = await api.post(
                f"{GRAPH_URL}/{page_id}/feed",
                json={"message": content.text, "attached_media": attached},
            )
        else:
            body: Dict[str, Any] = {"message": content.text}
            if content.link_url:
                body["link"] = content.link_url
            data = await api.post(f"{GRAPH_URL}/{page_id}/feed", json=body)

        content_id = data["id"]
        return PublishResult(
            platform_content_id=content_id,
            platform_url=f"https://www.facebook.com/{content_id}",
        )

    async def fetch_account_metrics(
        self, api: ApiSession, account: PlatformAccount, day: date
    ) -> AccountMetrics:
        profile = await self.fetch_profile(api, account)
        since = datetime.combine(day, time.min, tzinfo=timezone.utc)
        insights = await api.get(
            f"{GRAPH_URL}/{self._page_id(account)}/insights",
            params={
                "metric": "page_impressions,page_impressions_unique,page_post_engagements",
                "period": "day",
                "since": int(since.timestamp()),
                "until": int((since + timedelta(days=1)).timestamp()),
            },
        )
        values = insight_values(insights)
        return AccountMetrics(
            followers_count=profile.followers_count,
            impressions=values.get("page_impressions", 0),
            reach=values.get("page_impressions_unique", 0),
            engagement=values.get("page_post_engagements", 0),
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        data = await api.get(
            f"{GRAPH_URL}/{platform_content_id}",
            params={
                "fields": "shares,reactions.summary(total_count).limit(0),comments.summary(total_count).limit(0)"
            },
        )
        metrics = PostMetrics(
            likes=(data.get("reactions") or {}).get("summary", {}).get("total_count", 0),
            comments=(data.get("comments") or {}).get("summary", {}).get("total_count", 0),
            shares=(data.get("shares") or {}).get("count", 0),
        )
        try:
            insights = await api.get(
                f"{GRAPH_URL}/{platform_content_id}/insights",
                params={"metric": "post_impressions,post_impressions_unique,post_clicks"},
            )
        except PlatformAPIError:
            # Photo and video objects expose no post-level insights
            return metrics
        values = insight_values(insights)
        metrics.impressions = values.get("post_impressions", 0)
        metrics.reach = values.get("post_impressions_unique", 0)
        metrics.clicks = values.get("post_clicks", 0)
        return metrics
