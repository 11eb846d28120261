"""
Mastodon adapter (per-instance app registration)
"""

from typing import Any, Dict, List, Optional

from models.database import PlatformAccount
from schemas.social_media import (
    AuthType,
    ContentConstraints,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
)
from utils.exceptions import ConfigurationError, OAuthExchangeError
from .base import ApiSession, PlatformAdapter, error_text


def normalize_instance(instance: str) -> str:
    """Bare lowercase host: 'https://Mastodon.Social/' -> 'mastodon.social'"""
    host = instance.strip().lower()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host.split("/", 1)[0]


class MastodonAdapter(PlatformAdapter):
    """Every instance is its own OAuth provider; the app is registered on first use"""

    platform = "mastodon"
    display_name = "Mastodon"
    auth_type = AuthType.DYNAMIC_REGISTRATION
    default_scopes = ["read", "write"]
    constraints = ContentConstraints(
        max_chars=500,
        max_media=4,
        media_types=["image", "video", "gif", "audio"],
        max_image_bytes=16 * 1024 * 1024,
        max_video_bytes=99 * 1024 * 1024,
    )
    # Mastodon tokens stay valid until revoked
    tokens_expire = False

    def for_instance(self, config: PlatformConfig, instance: str, client_id: str, client_secret: str) -> PlatformConfig:
        """Registry config with the instance's endpoints and app credentials filled in"""
        base = f"https://{normalize_instance(instance)}"
        return config.model_copy(update={
            "authorize_url": f"{base}/oauth/authorize",
            "token_url": f"{base}/oauth/token",
            "revoke_url": f"{base}/oauth/revoke",
            "api_base_url": base,
            "client_id": client_id,
            "client_secret": client_secret,
        })

    async def register_app(
        self, instance: str, redirect_uri: str, app_name: str, website: Optional[str] = None
    ) -> Dict[str, str]:
        host = normalize_instance(instance)
        body = {
            "client_name": app_name,
            "redirect_uris": redirect_uri,
            "scopes": self.scope_separator.join(self.default_scopes),
        }
        if website:
            body["website"] = website
        response = await self.client.post(f"https://{host}/api/v1/apps", data=body)
        if response.is_error:
            raise OAuthExchangeError(
                f"Could not register with {host}: {error_text(response)}",
                {"platform": self.platform, "instance": host, "status_code": response.status_code},
            )
        payload = response.json()
        return {"client_id": payload["client_id"], "client_secret": payload["client_secret"]}

    def build_authorization_url(
        self,
        config: PlatformConfig,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> str:
        if not config.authorize_url or not config.client_id:
            raise ConfigurationError("Mastodon config has not been resolved for an instance")
        return super().build_authorization_url(config, state, redirect_uri, code_challenge, instance)

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        if not config.revoke_url:
            return False
        response = await self.client.post(
            config.revoke_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "token": account.access_token,
            },
        )
        return response.is_success

    def _base(self, account: PlatformAccount) -> str:
        instance = (account.settings or {}).get("instance")
        if not instance:
            raise ConfigurationError("Mastodon account has no instance recorded", {"account_id": str(account.id)})
        return f"https://{normalize_instance(instance)}"

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        base = self._base(account)
        data = await api.get(f"{base}/api/v1/accounts/verify_credentials")
        host = normalize_instance(base)
        return ProfileData(
            external_account_id=str(data["id"]),
            handle=f"{data.get('username')}@{host}",
            display_name=data.get("display_name") or data.get("username"),
            avatar_url=data.get("avatar"),
            account_url=data.get("url"),
            followers_count=data.get("followers_count", 0),
            following_count=data.get("following_count", 0),
            posts_count=data.get("statuses_count", 0),
            settings={"instance": host},
        )

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        base = self._base(account)
        media_ids: List[str] = []
        for item in content.media:
            payload, content_type = await self.download(item)
            data: Dict[str, Any] = {}
            if item.alt_text:
                data["description"] = item.alt_text
            uploaded = await api.post(
                f"{base}/api/v2/media",
                files={"file": (item.url.rsplit("/", 1)[-1] or "upload", payload, content_type)},
                data=data,
            )
            media_ids.append(str(uploaded["id"]))

        body: Dict[str, Any] = {"status": content.text, "visibility": "public"}
        if media_ids:
            body["media_ids"] = media_ids
        status = await api.post(f"{base}/api/v1/statuses", json=body)
        return PublishResult(platform_content_id=str(status["id"]), platform_url=status.get("url"))

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        status = await api.get(f"{self._base(account)}/api/v1/statuses/{platform_content_id}")
        return PostMetrics(
            likes=status.get("favourites_count", 0),
            comments=status.get("replies_count", 0),
            shares=status.get("reblogs_count", 0),
        )
