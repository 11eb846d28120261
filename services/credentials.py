"""
Credential lifecycle: token validity, refresh under per-account locks,
authorized platform calls and account status bookkeeping
"""

from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from models.database import AccountStatus, PlatformAccount, utcnow
from services.health import account_health, is_rate_limited
from services.oauth import oauth_coordinator
from services.platforms.base import ApiSession, PlatformAdapter, parse_retry_after
from services.platforms.connection_manager import connection_manager
from services.platforms.registry import platform_registry
from utils.config import get_config
from utils.database import get_session
from utils.exceptions import (
    AccountNotFoundError,
    RateLimitedError,
    RefreshFailedError,
    TokenRevokedError,
)
from utils.locks import get_account_lock
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)

UNUSABLE_STATUSES = (AccountStatus.EXPIRED.value, AccountStatus.REVOKED.value)
# Used when a platform signals a rate limit without saying for how long
DEFAULT_RATE_LIMIT_SECONDS = 60


class AuthorizedSession(ApiSession):
    """
    ApiSession that keeps its account's token valid.

    The token is checked before every call. A 401 triggers exactly one
    forced refresh and retry; a second 401 marks the account expired. Rate
    limit responses mark the account rate limited and leave tokens intact.
    """

    def __init__(
        self,
        manager: "CredentialManager",
        adapter: PlatformAdapter,
        account: PlatformAccount,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(adapter, account, client)
        self.manager = manager

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        platform = self.adapter.platform
        token = await self.manager.ensure_valid(self.account)
        response = await self.send(token, method, url, **kwargs)

        if self.adapter.is_unauthorized(response):
            if self.adapter.tokens_expire:
                token = await self.manager.ensure_valid(self.account, force=True, stale_token=token)
                response = await self.send(token, method, url, **kwargs)
            if self.adapter.is_unauthorized(response):
                message = f"{platform} rejected the access token after refresh"
                await self.manager.mark_expired(self.account, message)
                metrics.track_platform_request(platform, "request", "unauthorized")
                raise TokenRevokedError(message, {"platform": platform, "account_id": str(self.account.id)})

        if self.adapter.is_rate_limited(response):
            retry_after = parse_retry_after(response)
            await self.manager.mark_rate_limited(self.account, retry_after)
            metrics.track_platform_request(platform, "request", "rate_limited")
            raise RateLimitedError(
                f"{platform} rate limit reached",
                retry_after=retry_after,
                details={"platform": platform, "account_id": str(self.account.id)},
            )

        metrics.track_platform_request(platform, "request", "error" if response.is_error else "success")
        return response


class CredentialManager:
    """Owns every write to an account's token and status fields"""

    def __init__(self, refresh_margin_seconds: Optional[int] = None):
        self._margin = refresh_margin_seconds

    @property
    def refresh_margin(self) -> timedelta:
        seconds = self._margin if self._margin is not None else get_config().token_refresh_margin_seconds
        return timedelta(seconds=seconds)

    def needs_refresh(self, account: PlatformAccount, now: datetime) -> bool:
        if account.token_expires_at is None:
            return False
        return account.token_expires_at - now <= self.refresh_margin

    async def ensure_valid(
        self,
        account: PlatformAccount,
        force: bool = False,
        stale_token: Optional[str] = None,
    ) -> str:
        """
        Return an access token that is not within the refresh margin of expiry.

        With force=True the token is refreshed even if it looks valid, unless
        another caller already replaced stale_token while this one waited.
        """
        adapter = platform_registry.get_adapter(account.platform)
        if account.status in UNUSABLE_STATUSES:
            raise RefreshFailedError(
                f"{account.platform} account must be reconnected",
                {"platform": account.platform, "account_id": str(account.id)},
            )
        if not adapter.tokens_expire:
            return account.access_token
        if not force and not self.needs_refresh(account, utcnow()):
            return account.access_token

        async with get_account_lock().hold(str(account.id)):
            current = await self._load(account)
            now = utcnow()
            if current.status in UNUSABLE_STATUSES:
                self._copy(current, account)
                raise RefreshFailedError(
                    f"{account.platform} account must be reconnected",
                    {"platform": account.platform, "account_id": str(account.id)},
                )
            if force and stale_token is not None and current.access_token != stale_token:
                self._copy(current, account)
                return current.access_token
            if not force and not self.needs_refresh(current, now):
                self._copy(current, account)
                return current.access_token

            refreshed = await self._refresh(adapter, current, now)
            self._copy(refreshed, account)
            return refreshed.access_token

    async def _refresh(self, adapter: PlatformAdapter, account: PlatformAccount, now: datetime) -> PlatformAccount:
        platform = account.platform
        try:
            config = await oauth_coordinator.resolve_config(platform, (account.settings or {}).get("instance"))
            tokens = await adapter.refresh(config, account)
        except RefreshFailedError as e:
            metrics.track_token_refresh(platform, "failed")
            logger.warning(f"Refresh rejected for {platform} account {account.id}: {e.message}")
            await self._write(
                account.id,
                status=AccountStatus.EXPIRED.value,
                last_error=e.message,
                last_error_at=now,
            )
            raise
        except httpx.HTTPError as e:
            metrics.track_token_refresh(platform, "error")
            logger.warning(f"Refresh for {platform} account {account.id} could not reach the platform: {e}")
            await self._write(account.id, last_error=str(e), last_error_at=now)
            raise

        metrics.track_token_refresh(platform, "success")
        logger.info(f"Refreshed {platform} token for account {account.id}")
        values = {
            "access_token": tokens.access_token,
            # Platforms that do not rotate keep the refresh token already stored
            "refresh_token": tokens.refresh_token or account.refresh_token,
            "token_expires_at": tokens.expiry(now),
            "last_error": None,
        }
        if not is_rate_limited(account, now):
            values["status"] = AccountStatus.ACTIVE.value
            values["rate_limited_until"] = None
        if tokens.scopes:
            values["scopes"] = tokens.scopes
        return await self._write(account.id, **values)

    def session_for(self, account: PlatformAccount, client: Optional[httpx.AsyncClient] = None) -> AuthorizedSession:
        adapter = platform_registry.get_adapter(account.platform)
        return AuthorizedSession(self, adapter, account, client)

    async def authenticated_request(
        self, account: PlatformAccount, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """One platform call with refresh-and-retry on 401 and rate-limit bookkeeping"""
        return await self.session_for(account).request(method, url, **kwargs)

    async def disconnect(self, account: PlatformAccount) -> bool:
        """Revoke remotely where possible, then delete the account and its data"""
        adapter = platform_registry.get_adapter(account.platform)
        try:
            config = await oauth_coordinator.resolve_config(
                account.platform, (account.settings or {}).get("instance")
            )
            revoked = await adapter.revoke(config, account)
            logger.info(f"Revoke for {account.platform} account {account.id}: {'ok' if revoked else 'skipped'}")
        except Exception as e:
            # Remote revoke is best effort; the local account is removed regardless
            logger.warning(f"Revoke failed for {account.platform} account {account.id}: {e}")
        return await connection_manager.delete_account(account.id)

    # Status bookkeeping

    async def record_error(self, account: PlatformAccount, message: str, now: Optional[datetime] = None) -> PlatformAccount:
        fresh = await self._write(account.id, last_error=message, last_error_at=now or utcnow())
        self._copy(fresh, account)
        return fresh

    async def mark_expired(self, account: PlatformAccount, message: str, now: Optional[datetime] = None) -> PlatformAccount:
        fresh = await self._write(
            account.id,
            status=AccountStatus.EXPIRED.value,
            last_error=message,
            last_error_at=now or utcnow(),
        )
        self._copy(fresh, account)
        return fresh

    async def mark_rate_limited(
        self, account: PlatformAccount, retry_after: Optional[float], now: Optional[datetime] = None
    ) -> PlatformAccount:
        now = now or utcnow()
        seconds = retry_after if retry_after is not None else DEFAULT_RATE_LIMIT_SECONDS
        fresh = await self._write(
            account.id,
            status=AccountStatus.RATE_LIMITED.value,
            rate_limited_until=now + timedelta(seconds=seconds),
            last_error=f"{account.platform} rate limit reached",
            last_error_at=now,
        )
        self._copy(fresh, account)
        return fresh

    async def mark_synced(self, account: PlatformAccount, now: Optional[datetime] = None, **values: Any) -> PlatformAccount:
        """Record a successful sync, with any refreshed counts"""
        now = now or utcnow()
        values["last_synced_at"] = now
        if account.status == AccountStatus.RATE_LIMITED.value and (
            account.rate_limited_until is None or account.rate_limited_until <= now
        ):
            values["status"] = AccountStatus.ACTIVE.value
            values["rate_limited_until"] = None
        fresh = await self._write(account.id, now=now, **values)
        self._copy(fresh, account)
        return fresh

    async def clear_rate_limit(self, account: PlatformAccount, now: Optional[datetime] = None) -> PlatformAccount:
        """Return a rate-limited account to active once its window has passed"""
        now = now or utcnow()
        if account.status != AccountStatus.RATE_LIMITED.value:
            return account
        if account.rate_limited_until is not None and account.rate_limited_until > now:
            return account
        fresh = await self._write(account.id, now=now, status=AccountStatus.ACTIVE.value, rate_limited_until=None)
        self._copy(fresh, account)
        return fresh

    async def refresh_health(self, account: PlatformAccount, now: Optional[datetime] = None) -> PlatformAccount:
        """Recompute the stored health score"""
        fresh = await self._write(account.id, now=now)
        self._copy(fresh, account)
        return fresh

    # Persistence

    async def _load(self, account: PlatformAccount) -> PlatformAccount:
        async with get_session() as db:
            current = await db.get(PlatformAccount, account.id)
        if current is None:
            raise AccountNotFoundError(f"Account {account.id} not found", {"account_id": str(account.id)})
        return current

    async def _write(self, account_id, now: Optional[datetime] = None, **values: Any) -> PlatformAccount:
        """Apply field changes, recompute health and commit in one short transaction"""
        now = now or utcnow()
        async with get_session() as db:
            current = await db.get(PlatformAccount, account_id)
            if current is None:
                raise AccountNotFoundError(f"Account {account_id} not found", {"account_id": str(account_id)})
            for key, value in values.items():
                setattr(current, key, value)
            current.health_score = account_health(current, now)
            current.updated_at = now
            db.add(current)
            await db.commit()
            return current

    @staticmethod
    def _copy(source: PlatformAccount, target: PlatformAccount) -> None:
        if source is target:
            return
        for field in (
            "access_token",
            "refresh_token",
            "token_expires_at",
            "scopes",
            "status",
            "health_score",
            "last_error",
            "last_error_at",
            "rate_limited_until",
            "last_synced_at",
            "followers_count",
            "following_count",
            "posts_count",
        ):
            setattr(target, field, getattr(source, field))


# Global credential manager
credential_manager = CredentialManager()
