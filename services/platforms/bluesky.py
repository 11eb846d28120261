"""
Bluesky adapter (AT Protocol with app passwords)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import jwt

from models.database import PlatformAccount
from schemas.social_media import (
    AuthType,
    ContentConstraints,
    PlatformConfig,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.config import get_config
from utils.exceptions import ConfigurationError, OAuthExchangeError, RefreshFailedError
from .base import ApiSession, PlatformAdapter, error_text


def jwt_expiry(token: str) -> Optional[datetime]:
    """Read exp from a session JWT; the PDS signs it, so it is not verified here"""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not exp:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)


def link_facets(text: str, url: Optional[str]) -> List[Dict[str, Any]]:
    """Rich-text link facet; AT Protocol indexes by UTF-8 byte offsets"""
    if not url or url not in text:
        return []
    encoded = text.encode("utf-8")
    start = encoded.find(url.encode("utf-8"))
    return [{
        "index": {"byteStart": start, "byteEnd": start + len(url.encode("utf-8"))},
        "features": [{"$type": "app.bsky.richtext.facet#link", "uri": url}],
    }]


class BlueskyAdapter(PlatformAdapter):
    """No redirect flow: handle and app password are exchanged for a session"""

    platform = "bluesky"
    display_name = "Bluesky"
    auth_type = AuthType.APP_PASSWORD
    constraints = ContentConstraints(
        max_chars=300,
        truncate_text=True,
        max_media=4,
        media_types=["image"],
        max_image_bytes=1000 * 1000,
    )
    rotates_refresh_token = True

    @property
    def api_base_url(self) -> str:
        return get_config().bluesky_service_url.rstrip("/")

    def _service(self, account: PlatformAccount) -> str:
        return ((account.settings or {}).get("service_url") or self.api_base_url).rstrip("/")

    def _xrpc(self, account: PlatformAccount, method: str) -> str:
        return f"{self._service(account)}/xrpc/{method}"

    def _tokens(self, payload: Dict[str, Any], service_url: str) -> TokenSet:
        return TokenSet(
            access_token=payload["accessJwt"],
            refresh_token=payload.get("refreshJwt"),
            expires_at=jwt_expiry(payload["accessJwt"]),
            extra={"did": payload.get("did"), "handle": payload.get("handle"), "service_url": service_url},
        )

    def build_authorization_url(self, config: PlatformConfig, state: str, redirect_uri: str,
                                code_challenge: Optional[str] = None, instance: Optional[str] = None) -> str:
        raise ConfigurationError("Bluesky connects with an app password, not a redirect")

    async def exchange_code(self, config: PlatformConfig, code: str, redirect_uri: str,
                            code_verifier: Optional[str] = None, instance: Optional[str] = None) -> TokenSet:
        raise ConfigurationError("Bluesky connects with an app password, not a redirect")

    async def create_session(self, identifier: str, app_password: str, service_url: Optional[str] = None) -> TokenSet:
        service = (service_url or self.api_base_url).rstrip("/")
        response = await self.client.post(
            f"{service}/xrpc/com.atproto.server.createSession",
            json={"identifier": identifier, "password": app_password},
        )
        if response.is_error:
            raise OAuthExchangeError(
                f"Bluesky rejected the credentials: {error_text(response)}",
                {"platform": self.platform, "status_code": response.status_code},
            )
        return self._tokens(response.json(), service)

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        if not account.refresh_token:
            raise RefreshFailedError("No refresh token stored for bluesky", {"platform": self.platform})
        response = await self.client.post(
            self._xrpc(account, "com.atproto.server.refreshSession"),
            headers={"Authorization": f"Bearer {account.refresh_token}"},
        )
        if response.is_error:
            raise RefreshFailedError(
                f"bluesky token endpoint returned {response.status_code}: {error_text(response)}",
                {"platform": self.platform, "status_code": response.status_code},
            )
        return self._tokens(response.json(), self._service(account))

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        if not account.refresh_token:
            return False
        response = await self.client.post(
            self._xrpc(account, "com.atproto.server.deleteSession"),
            headers={"Authorization": f"Bearer {account.refresh_token}"},
        )
        return response.is_success

    def is_unauthorized(self, response: httpx.Response) -> bool:
        # Expired access JWTs come back as 400 ExpiredToken
        if response.status_code == 400:
            try:
                return response.json().get("error") in ("ExpiredToken", "InvalidToken")
            except ValueError:
                return False
        return response.status_code == 401

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        actor = account.external_account_id or (account.settings or {}).get("did")
        data = await api.get(self._xrpc(account, "app.bsky.actor.getProfile"), params={"actor": actor})
        handle = data.get("handle")
        return ProfileData(
            external_account_id=data["did"],
            handle=handle,
            display_name=data.get("displayName") or handle,
            avatar_url=data.get("avatar"),
            account_url=f"https://bsky.app/profile/{handle}",
            followers_count=data.get("followersCount", 0),
            following_count=data.get("followsCount", 0),
            posts_count=data.get("postsCount", 0),
            settings={"service_url": self._service(account)},
        )

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        record: Dict[str, Any] = {
            "$type": "app.bsky.feed.post",
            "text": content.text,
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        facets = link_facets(content.text, content.link_url)
        if facets:
            record["facets"] = facets

        if content.media:
            images = []
            for item in content.media:
                payload, content_type = await self.download(item)
                uploaded = await api.post(
                    self._xrpc(account, "com.atproto.repo.uploadBlob"),
                    content=payload,
                    headers={"Content-Type": content_type},
                )
                images.append({"alt": item.alt_text or "", "image": uploaded["blob"]})
            record["embed"] = {"$type": "app.bsky.embed.images", "images": images}

        data = await api.post(
            self._xrpc(account, "com.atproto.repo.createRecord"),
            json={"repo": account.external_account_id, "collection": "app.bsky.feed.post", "record": record},
        )
        uri = data["uri"]
        rkey = uri.rsplit("/", 1)[-1]
        return PublishResult(
            platform_content_id=uri,
            platform_url=f"https://bsky.app/profile/{account.handle or account.external_account_id}/post/{rkey}",
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        data = await api.get(self._xrpc(account, "app.bsky.feed.getPosts"), params={"uris": platform_content_id})
        posts = data.get("posts") or [{}]
        post = posts[0]
        return PostMetrics(
            likes=post.get("likeCount", 0),
            comments=post.get("replyCount", 0),
            shares=post.get("repostCount", 0) + post.get("quoteCount", 0),
        )
