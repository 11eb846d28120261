"""
Base platform adapter interface with strict abstraction
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple, Type
from urllib.parse import urlencode

import httpx

from models.database import PlatformAccount
from schemas.social_media import (
    AccountMetrics,
    AuthType,
    ContentConstraints,
    MediaItem,
    PlatformConfig,
    PostMetrics,
    PostPayload,
    PreparedContent,
    ProfileData,
    PublishResult,
    TokenSet,
)
from utils.exceptions import (
    OAuthExchangeError,
    PermanentPublishError,
    PlatformAPIError,
    RateLimitedError,
    RefreshFailedError,
    SocialBridgeException,
    TokenRevokedError,
)
from utils.http_client import get_shared_client

ELLIPSIS = "…"


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds to wait from Retry-After (delta or HTTP date) or x-rate-limit-reset"""
    value = response.headers.get("retry-after")
    if value:
        value = value.strip()
        if value.isdigit():
            return float(value)
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
    reset = (
        response.headers.get("x-rate-limit-reset")
        or response.headers.get("x-ratelimit-reset")
        or response.headers.get("ratelimit-reset")
    )
    if reset and reset.strip().isdigit():
        reset_at = int(reset.strip())
        now_ts = datetime.now(timezone.utc).timestamp()
        # Epoch seconds (Twitter) or a relative delay (Bluesky, others)
        return max(reset_at - now_ts, 0.0) if reset_at > 10**9 else float(reset_at)
    return None


def error_text(response: httpx.Response) -> str:
    """Best-effort extraction of a platform's error message, unchanged"""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("error_description", "message", "detail"):
            if payload.get(key):
                return str(payload[key])
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message") or errors[0].get("detail") or errors[0])
        if isinstance(error, str):
            return error
    return response.text[:500] or f"HTTP {response.status_code}"


class ApiSession:
    """
    Account-bound HTTP access used by adapters for platform API calls.

    This base version sends the stored token as-is; it is used while an
    account is being connected and has not been persisted yet. Once an
    account exists, the credential manager hands adapters an
    AuthorizedSession that refreshes and retries.
    """

    def __init__(
        self,
        adapter: "PlatformAdapter",
        account: PlatformAccount,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.adapter = adapter
        self.account = account
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_shared_client()

    async def send(self, token: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        params = dict(kwargs.pop("params", None) or {})
        self.adapter.apply_token(token, headers, params)
        return await self.client.request(method, url, headers=headers, params=params or None, **kwargs)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self.send(self.account.access_token, method, url, **kwargs)
        if self.adapter.is_unauthorized(response):
            raise TokenRevokedError(
                f"{self.adapter.platform} rejected the access token",
                {"platform": self.adapter.platform},
            )
        if self.adapter.is_rate_limited(response):
            raise RateLimitedError(
                f"{self.adapter.platform} rate limit reached",
                retry_after=parse_retry_after(response),
                details={"platform": self.adapter.platform},
            )
        return response

    async def checked(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Request, raising PlatformAPIError on non-success"""
        response = await self.request(method, url, **kwargs)
        if response.is_error:
            raise PlatformAPIError(
                error_text(response),
                status_code=response.status_code,
                details={"platform": self.adapter.platform},
            )
        return response

    async def call(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Request and decode JSON, raising PlatformAPIError on non-success"""
        response = await self.checked(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def get(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.call("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        return await self.call("POST", url, **kwargs)


class PlatformAdapter(ABC):
    """Abstract base class for all social platform adapters"""

    platform: str = ""
    display_name: str = ""
    auth_type: AuthType = AuthType.OAUTH2
    authorize_url: Optional[str] = None
    token_url: Optional[str] = None
    revoke_url: Optional[str] = None
    api_base_url: str = ""
    default_scopes: List[str] = []
    scope_separator: str = " "
    constraints: ContentConstraints = ContentConstraints(max_chars=5000)
    tokens_expire: bool = True
    rotates_refresh_token: bool = False
    inline_links: bool = True

    @property
    def client(self) -> httpx.AsyncClient:
        return get_shared_client()

    def build_config(self, client_id: Optional[str], client_secret: Optional[str]) -> PlatformConfig:
        return PlatformConfig(
            platform=self.platform,
            display_name=self.display_name,
            auth_type=self.auth_type,
            authorize_url=self.authorize_url,
            token_url=self.token_url,
            revoke_url=self.revoke_url,
            client_id=client_id,
            client_secret=client_secret,
            scopes=list(self.default_scopes),
            api_base_url=self.api_base_url,
            constraints=self.constraints,
            tokens_expire=self.tokens_expire,
            rotates_refresh_token=self.rotates_refresh_token,
        )

    # OAuth

    def authorization_params(self, config: PlatformConfig) -> Dict[str, str]:
        """Extra query parameters a platform needs on its authorize URL"""
        return {}

    def build_authorization_url(
        self,
        config: PlatformConfig,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> str:
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.scope_separator.join(config.scopes),
            "state": state,
        }
        params.update(self.authorization_params(config))
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
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
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return await self._token_request(config.token_url, data, OAuthExchangeError)

    async def refresh(self, config: PlatformConfig, account: PlatformAccount) -> TokenSet:
        if not account.refresh_token:
            raise RefreshFailedError(
                f"No refresh token stored for {self.platform}",
                {"platform": self.platform},
            )
        data = {
            "grant_type": "refresh_token",
            "refresh_token": account.refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        return await self._token_request(config.token_url, data, RefreshFailedError)

    async def revoke(self, config: PlatformConfig, account: PlatformAccount) -> bool:
        """Revoke remotely; False when the platform has no revoke endpoint"""
        if not config.revoke_url:
            return False
        response = await self.client.post(
            config.revoke_url,
            data={
                "token": account.access_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
        )
        return response.is_success

    async def _token_request(
        self,
        url: Optional[str],
        data: Dict[str, Any],
        error_cls: Type[SocialBridgeException],
        method: str = "POST",
        auth: Optional[Tuple[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> TokenSet:
        if not url:
            raise error_cls(f"{self.platform} has no token endpoint", {"platform": self.platform})
        if method == "GET":
            response = await self.client.get(url, params=data, headers=headers)
        else:
            response = await self.client.post(url, data=data, auth=auth, headers=headers)
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error or not isinstance(payload, dict):
            raise error_cls(
                f"{self.platform} token endpoint returned {response.status_code}: {error_text(response)}",
                {"platform": self.platform, "status_code": response.status_code},
            )
        tokens = self.parse_token_response(payload)
        if not tokens.access_token:
            raise error_cls(
                f"{self.platform} token endpoint returned no access token",
                {"platform": self.platform},
            )
        return tokens

    def parse_token_response(self, payload: Dict[str, Any]) -> TokenSet:
        scope = payload.get("scope") or ""
        if isinstance(scope, str):
            scopes = [s for s in scope.replace(",", " ").split() if s]
        else:
            scopes = list(scope)
        expires_in = payload.get("expires_in")
        return TokenSet(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in else None,
            scopes=scopes,
        )

    # HTTP conventions

    def apply_token(self, token: str, headers: Dict[str, str], params: Dict[str, Any]) -> None:
        headers["Authorization"] = f"Bearer {token}"

    def is_unauthorized(self, response: httpx.Response) -> bool:
        return response.status_code == 401

    def is_rate_limited(self, response: httpx.Response) -> bool:
        return response.status_code == 429

    async def download(self, media: MediaItem) -> Tuple[bytes, str]:
        """Fetch hosted media for platforms that require byte uploads"""
        response = await self.client.get(media.url, follow_redirects=True)
        if response.is_error:
            raise PermanentPublishError(
                f"Could not download media {media.url}: HTTP {response.status_code}",
                {"platform": self.platform},
            )
        content_type = media.mime_type or response.headers.get("content-type") or "application/octet-stream"
        return response.content, content_type.split(";")[0]

    # Content

    def prepare_content(self, payload: PostPayload) -> PreparedContent:
        """Apply this platform's constraints; reject what cannot be published"""
        rules = self.constraints
        media = list(payload.media)

        if len(media) > rules.max_media:
            if rules.max_media == 0:
                raise PermanentPublishError(f"{self.display_name} posts cannot carry media")
            raise PermanentPublishError(
                f"{self.display_name} allows at most {rules.max_media} media items, got {len(media)}"
            )

        if rules.requires_media == "any" and not media:
            raise PermanentPublishError(f"{self.display_name} requires at least one image or video")
        if rules.requires_media in ("image", "video") and not any(m.type == rules.requires_media for m in media):
            raise PermanentPublishError(f"{self.display_name} requires {'an' if rules.requires_media == 'image' else 'a'} {rules.requires_media}")

        for item in media:
            self._check_media(item, rules)

        text = payload.content or ""
        # Links count against the limit where the platform inlines them
        if payload.link_url and payload.link_url not in text and self.inline_links:
            text = f"{text}\n\n{payload.link_url}" if text else payload.link_url

        truncated = False
        if len(text) > rules.max_chars:
            if not rules.truncate_text:
                raise PermanentPublishError(
                    f"{self.display_name} text limit is {rules.max_chars} characters, got {len(text)}"
                )
            text = text[: rules.max_chars - 1].rstrip() + ELLIPSIS
            truncated = True

        return PreparedContent(
            text=text,
            media=media,
            link_url=payload.link_url,
            title=payload.title,
            truncated=truncated,
        )

    def _check_media(self, item: MediaItem, rules: ContentConstraints) -> None:
        kind = "image" if item.type == "gif" and "gif" not in rules.media_types else item.type
        if rules.media_types and kind not in rules.media_types:
            raise PermanentPublishError(f"{self.display_name} does not accept {item.type} media")
        if kind == "image" and rules.max_image_bytes and item.size_bytes and item.size_bytes > rules.max_image_bytes:
            raise PermanentPublishError(
                f"Image exceeds {self.display_name} limit of {rules.max_image_bytes} bytes"
            )
        if kind == "video":
            if rules.max_video_bytes and item.size_bytes and item.size_bytes > rules.max_video_bytes:
                raise PermanentPublishError(
                    f"Video exceeds {self.display_name} limit of {rules.max_video_bytes} bytes"
                )
            if rules.max_video_seconds and item.duration_seconds and item.duration_seconds > rules.max_video_seconds:
                raise PermanentPublishError(
                    f"Video exceeds {self.display_name} limit of {rules.max_video_seconds} seconds"
                )
        ratio = item.aspect_ratio
        if ratio is not None:
            if rules.min_aspect_ratio and ratio < rules.min_aspect_ratio - 1e-3:
                raise PermanentPublishError(
                    f"Aspect ratio {ratio:.2f} below {self.display_name} minimum {rules.min_aspect_ratio:.2f}"
                )
            if rules.max_aspect_ratio and ratio > rules.max_aspect_ratio + 1e-3:
                raise PermanentPublishError(
                    f"Aspect ratio {ratio:.2f} above {self.display_name} maximum {rules.max_aspect_ratio:.2f}"
                )

    # Platform API

    @abstractmethod
    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        """Fetch the connected account's identity and current counts"""

    @abstractmethod
    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        """Publish prepared content and return the platform-assigned id"""

    @abstractmethod
    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        """Fetch performance metrics for one published item"""

    async def fetch_account_metrics(
        self, api: ApiSession, account: PlatformAccount, day: date
    ) -> AccountMetrics:
        """Default: counts from the profile endpoint; adapters add insights where offered"""
        profile = await self.fetch_profile(api, account)
        return AccountMetrics(
            followers_count=profile.followers_count,
            following_count=profile.following_count,
            posts_count=profile.posts_count,
        )
