"""
Credential lifecycle: proactive refresh, single-flight refresh, 401 retry and rate limits
"""

import asyncio
from datetime import timedelta

import httpx
import pytest

from conftest import form_body, reload
from models.database import AccountStatus, PlatformAccount, utcnow
from services.credentials import CredentialManager, credential_manager
from utils.exceptions import RateLimitedError, RefreshFailedError, TokenRevokedError

TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
ME_URL = "https://api.twitter.com/2/users/me"


def refreshed(access_token="access-2", refresh_token="refresh-2"):
    return {"json": {"access_token": access_token, "refresh_token": refresh_token, "expires_in": 7200}}


class TestProactiveRefresh:
    """Tokens inside the refresh margin are replaced before use"""

    async def test_token_expiring_in_two_minutes_is_refreshed_first(self, make_account, platform_api):
        account = await make_account(token_expires_at=utcnow() + timedelta(minutes=2))
        platform_api.on("POST", TOKEN_URL, refreshed())
        platform_api.on("GET", ME_URL, {"json": {"data": {"id": "1"}}})

        response = await credential_manager.authenticated_request(account, "GET", ME_URL)

        assert response.status_code == 200
        assert len(platform_api.calls("POST", TOKEN_URL)) == 1
        assert platform_api.calls("GET", ME_URL)[0].headers["Authorization"] == "Bearer access-2"

        stored = await reload(PlatformAccount, account.id)
        assert stored.access_token == "access-2"
        # Twitter rotates refresh tokens; the new one must replace the old
        assert stored.refresh_token == "refresh-2"
        assert stored.token_expires_at > utcnow() + timedelta(minutes=110)
        assert form_body(platform_api.calls("POST", TOKEN_URL)[0])["refresh_token"] == "refresh-1"

    async def test_valid_token_is_not_refreshed(self, make_account, platform_api):
        account = await make_account(token_expires_at=utcnow() + timedelta(hours=1))

        token = await credential_manager.ensure_valid(account)

        assert token == "access-1"
        assert platform_api.calls("POST", TOKEN_URL) == []

    async def test_non_rotating_refresh_keeps_stored_refresh_token(self, make_account, platform_api):
        account = await make_account(token_expires_at=utcnow() - timedelta(minutes=1))
        platform_api.on("POST", TOKEN_URL, {"json": {"access_token": "access-2", "expires_in": 7200}})

        await credential_manager.ensure_valid(account)

        stored = await reload(PlatformAccount, account.id)
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-1"

    async def test_tokens_that_never_expire_skip_refresh(self, make_account, platform_api):
        account = await make_account("mastodon", token_expires_at=None, refresh_token=None)

        assert await credential_manager.ensure_valid(account, force=True) == "access-1"
        assert platform_api.requests == []

    async def test_concurrent_callers_share_one_refresh(self, make_account, platform_api):
        """
        Business Critical: with rotating refresh tokens a second refresh would
        present an already-consumed token and lose the account
        """
        account = await make_account(token_expires_at=utcnow() + timedelta(minutes=1))

        async def slow_refresh(request):
            await asyncio.sleep(0.05)
            return httpx.Response(200, json=refreshed()["json"])

        platform_api.on("POST", TOKEN_URL, slow_refresh)

        copies = [await reload(PlatformAccount, account.id) for _ in range(5)]
        tokens = await asyncio.gather(*(credential_manager.ensure_valid(copy) for copy in copies))

        assert tokens == ["access-2"] * 5
        assert len(platform_api.calls("POST", TOKEN_URL)) == 1

    async def test_rejected_refresh_marks_account_expired(self, make_account, platform_api):
        account = await make_account(token_expires_at=utcnow() - timedelta(minutes=1))
        platform_api.on("POST", TOKEN_URL, {"status": 400, "json": {"error": "invalid_grant"}})

        with pytest.raises(RefreshFailedError):
            await credential_manager.ensure_valid(account)

        stored = await reload(PlatformAccount, account.id)
        assert stored.status == AccountStatus.EXPIRED.value
        assert "invalid_grant" in stored.last_error
        assert stored.health_score == 0

        # No further refresh attempts once the account needs reconnecting
        with pytest.raises(RefreshFailedError):
            await credential_manager.ensure_valid(stored)
        assert len(platform_api.calls("POST", TOKEN_URL)) == 1

    async def test_refresh_margin_is_configurable(self, make_account):
        account = await make_account(token_expires_at=utcnow() + timedelta(minutes=8))

        assert not CredentialManager(refresh_margin_seconds=300).needs_refresh(account, utcnow())
        assert CredentialManager(refresh_margin_seconds=600).needs_refresh(account, utcnow())


class TestUnauthorizedRetry:
    """A 401 gets exactly one forced refresh and retry"""

    async def test_401_then_success_after_refresh(self, make_account, platform_api):
        account = await make_account()
        platform_api.on("GET", ME_URL, {"status": 401, "json": {"title": "Unauthorized"}}, {"json": {"data": {"id": "1"}}})
        platform_api.on("POST", TOKEN_URL, refreshed())

        response = await credential_manager.authenticated_request(account, "GET", ME_URL)

        assert response.status_code == 200
        calls = platform_api.calls("GET", ME_URL)
        assert [c.headers["Authorization"] for c in calls] == ["Bearer access-1", "Bearer access-2"]
        assert len(platform_api.calls("POST", TOKEN_URL)) == 1

    async def test_second_401_marks_account_expired(self, make_account, platform_api):
        account = await make_account()
        platform_api.on("GET", ME_URL, {"status": 401, "json": {"title": "Unauthorized"}})
        platform_api.on("POST", TOKEN_URL, refreshed())

        with pytest.raises(TokenRevokedError):
            await credential_manager.authenticated_request(account, "GET", ME_URL)

        assert len(platform_api.calls("GET", ME_URL)) == 2
        stored = await reload(PlatformAccount, account.id)
        assert stored.status == AccountStatus.EXPIRED.value


class TestRateLimits:
    async def test_429_marks_rate_limited_without_touching_tokens(self, make_account, platform_api):
        account = await make_account()
        platform_api.on("GET", ME_URL, {"status": 429, "json": {}, "headers": {"Retry-After": "30"}})

        with pytest.raises(RateLimitedError) as exc_info:
            await credential_manager.authenticated_request(account, "GET", ME_URL)

        assert exc_info.value.retry_after == 30
        stored = await reload(PlatformAccount, account.id)
        assert stored.status == AccountStatus.RATE_LIMITED.value
        assert stored.access_token == "access-1"
        assert utcnow() < stored.rate_limited_until <= utcnow() + timedelta(seconds=31)
        assert platform_api.calls("POST", TOKEN_URL) == []

    async def test_clear_rate_limit_after_window(self, make_account):
        account = await make_account(
            status=AccountStatus.RATE_LIMITED.value,
            rate_limited_until=utcnow() - timedelta(seconds=1),
        )

        cleared = await credential_manager.clear_rate_limit(account)

        assert cleared.status == AccountStatus.ACTIVE.value
        assert cleared.rate_limited_until is None


class TestDisconnect:
    async def test_disconnect_revokes_and_deletes(self, make_account, platform_api):
        account = await make_account()
        platform_api.on("POST", "https://api.twitter.com/2/oauth2/revoke", {"json": {"revoked": True}})

        assert await credential_manager.disconnect(account)

        assert await reload(PlatformAccount, account.id) is None
        assert len(platform_api.requests) == 1

    async def test_disconnect_survives_failed_revoke(self, make_account, platform_api):
        account = await make_account()
        platform_api.on("POST", "https://api.twitter.com/2/oauth2/revoke", {"status": 503, "json": {}})

        assert await credential_manager.disconnect(account)
        assert await reload(PlatformAccount, account.id) is None
