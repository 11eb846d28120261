"""
Pinterest adapter (API v5)
"""

from datetime import date, timedelta
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
from utils.exceptions import OAuthExchangeError, PermanentPublishError, RefreshFailedError
from .base import ApiSession, PlatformAdapter

API_URL = "https://api.pinterest.com/v5"
MAX_TITLE_CHARS = 100
# Pin analytics are only served for the trailing 90 days
ANALYTICS_WINDOW_DAYS = 89


class PinterestAdapter(PlatformAdapter):
    """Image pins onto the account's default board"""

    platform = "pinterest"
    display_name = "Pinterest"
    authorize_url = "https://www.pinterest.com/oauth/"
    token_url = f"{API_URL}/oauth/token"
    api_base_url = API_URL
    default_scopes = ["boards:read", "pins:read", "pins:write", "user_accounts:read"]
    scope_separator = ","
    constraints = ContentConstraints(
        max_chars=500,
        truncate_text=True,
        max_media=1,
        requires_media="image",
        media_types=["image"],
        max_image_bytes=20 * 1024 * 1024,
    )
    inline_links = False

    async def exchange_code(
        self,
        config: PlatformConfig,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> TokenSet:
        data = {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
        return await self._token_request(
            config.token_url, data, OAuthExchangeError, auth=(config.client_id, config.client_secret)
        )

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        if not account.refresh_token:
            raise RefreshFailedError("No refresh token stored for pinterest", {"platform": self.platform})
        data = {"grant_type": "refresh_token", "refresh_token": account.refresh_token}
        return await self._token_request(
            config.token_url, data, RefreshFailedError, auth=(config.client_id, config.client_secret)
        )

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(f"{API_URL}/user_account")
        username = data.get("username")
        return ProfileData(
            external_account_id=str(data.get("id") or username),
            handle=username,
            display_name=data.get("business_name") or username,
            avatar_url=data.get("profile_image"),
            account_url=f"https://www.pinterest.com/{username}/" if username else None,
            followers_count=data.get("follower_count", 0),
            following_count=data.get("following_count", 0),
            posts_count=data.get("pin_count", 0),
        )

    async def _board_id(self, api: ApiSession, account: PlatformAccount) -> str:
        board_id = (account.settings or {}).get("default_board_id")
        if board_id:
            return board_id
        boards = await api.get(f"{API_URL}/boards", params={"page_size": 1})
        items = boards.get("items") or []
        if not items:
            raise PermanentPublishError("Pinterest account has no board to pin to", {"platform": self.platform})
        return items[0]["id"]

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        image = content.media[0]
        body: Dict[str, Any] = {
            "board_id": await self._board_id(api, account),
            "title": (content.title or content.text)[:MAX_TITLE_CHARS],
            "description": content.text,
            "media_source": {"source_type": "image_url", "url": image.url},
        }
        if image.alt_text:
            body["alt_text"] = image.alt_text
        if content.link_url:
            body["link"] = content.link_url

        data = await api.post(f"{API_URL}/pins", json=body)
        return PublishResult(
            platform_content_id=data["id"],
            platform_url=f"https://www.pinterest.com/pin/{data['id']}/",
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        today = date.today()
        data = await api.get(
            f"{API_URL}/pins/{platform_content_id}/analytics",
            params={
                "start_date": (today - timedelta(days=ANALYTICS_WINDOW_DAYS)).isoformat(),
                "end_date": today.isoformat(),
                "metric_types": "IMPRESSION,SAVE,PIN_CLICK,OUTBOUND_CLICK",
            },
        )
        summary = (data.get("all") or {}).get("summary_metrics") or {}
        return PostMetrics(
            impressions=summary.get("IMPRESSION", 0),
            saves=summary.get("SAVE", 0),
            clicks=summary.get("PIN_CLICK", 0) + summary.get("OUTBOUND_CLICK", 0),
        )
