"""
OAuth coordination: state tokens, PKCE, callbacks and instance registration
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import func, select

from conftest import SITE_ID, USER_ID, form_body
from models.database import MastodonApp, OAuthSession, PlatformAccount, utcnow
from services.oauth import code_challenge_for, oauth_coordinator
from utils.database import get_session
from utils.exceptions import ConfigurationError, ExpiredStateError, InvalidStateError

TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_ME_URL = "https://api.twitter.com/2/users/me"
TWITTER_PROFILE = {
    "data": {
        "id": "2244994945",
        "username": "socialbridge",
        "name": "SocialBridge",
        "public_metrics": {"followers_count": 1200, "following_count": 80, "tweet_count": 345},
    }
}


def twitter_routes(platform_api, access_token="access-1", refresh_token="refresh-1"):
    platform_api.on("POST", TWITTER_TOKEN_URL, {"json": {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": 7200,
        "scope": "tweet.read tweet.write users.read offline.access",
    }})
    platform_api.on("GET", TWITTER_ME_URL, {"json": TWITTER_PROFILE})


async def count(model) -> int:
    async with get_session() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


class TestInitiate:
    """Authorization URL construction"""

    async def test_pkce_authorization_url(self, db):
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        query = parse_qs(urlparse(start.auth_url).query)
        assert start.auth_url.startswith("https://twitter.com/i/oauth2/authorize?")
        assert query["state"] == [start.state]
        assert query["client_id"] == ["twitter-client"]
        assert query["code_challenge_method"] == ["S256"]

        async with get_session() as session:
            stored = await session.get(OAuthSession, start.state)
        assert stored.platform == "twitter"
        assert stored.site_id == SITE_ID
        assert query["code_challenge"] == [code_challenge_for(stored.code_verifier)]

    async def test_states_are_unique(self, db):
        first = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)
        second = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        assert first.state != second.state

    async def test_unconfigured_platform_rejected(self, db):
        with pytest.raises(ConfigurationError):
            await oauth_coordinator.initiate("linkedin", SITE_ID, USER_ID)

    async def test_app_password_platform_has_no_redirect_flow(self, db):
        with pytest.raises(ConfigurationError):
            await oauth_coordinator.initiate("bluesky", SITE_ID, USER_ID)


class TestComplete:
    """Callback handling"""

    async def test_exchanges_code_and_stores_account(self, db, platform_api):
        twitter_routes(platform_api)
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        account = await oauth_coordinator.complete("auth-code", start.state)

        assert account.platform == "twitter"
        assert account.external_account_id == "2244994945"
        assert account.handle == "socialbridge"
        assert account.followers_count == 1200
        assert account.access_token == "access-1"
        assert account.token_expires_at > utcnow() + timedelta(minutes=110)
        assert account.status == "active"
        assert account.health_score == 100

        # The verifier the provider receives is the one behind the challenge
        token_request = platform_api.calls("POST", TWITTER_TOKEN_URL)[0]
        body = form_body(token_request)
        assert body["code"] == "auth-code"
        challenge = parse_qs(urlparse(start.auth_url).query)["code_challenge"][0]
        assert code_challenge_for(body["code_verifier"]) == challenge

    async def test_state_validates_only_once(self, db, platform_api):
        """
        Business Critical: a replayed callback must not connect anything
        """
        twitter_routes(platform_api)
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)
        await oauth_coordinator.complete("auth-code", start.state)

        with pytest.raises(InvalidStateError):
            await oauth_coordinator.complete("auth-code", start.state)
        assert len(platform_api.calls("POST", TWITTER_TOKEN_URL)) == 1

    async def test_unknown_state_rejected(self, db):
        with pytest.raises(InvalidStateError):
            await oauth_coordinator.complete("auth-code", "never-issued")

    async def test_expired_state_rejected_and_consumed(self, db, platform_api):
        start = await oauth_coordinator.initiate(
            "twitter", SITE_ID, USER_ID, now=utcnow() - timedelta(hours=1)
        )

        with pytest.raises(ExpiredStateError):
            await oauth_coordinator.complete("auth-code", start.state)
        assert platform_api.calls("POST", TWITTER_TOKEN_URL) == []
        assert await count(OAuthSession) == 0

    async def test_reconnect_updates_existing_account(self, db, platform_api):
        twitter_routes(platform_api, access_token="access-1")
        first = await oauth_coordinator.complete(
            "code-1", (await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)).state
        )

        platform_api.routes.clear()
        twitter_routes(platform_api, access_token="access-2")
        second = await oauth_coordinator.complete(
            "code-2", (await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)).state
        )

        assert second.id == first.id
        assert second.access_token == "access-2"
        assert await count(PlatformAccount) == 1


class TestAppPasswordAndInstances:
    async def test_bluesky_app_password_connect(self, db, platform_api):
        platform_api.on("POST", "https://bsky.social/xrpc/com.atproto.server.createSession", {"json": {
            "accessJwt": "header.payload.sig",
            "refreshJwt": "refresh-jwt",
            "did": "did:plc:abc123",
            "handle": "brand.bsky.social",
        }})
        platform_api.on("GET", "https://bsky.social/xrpc/app.bsky.actor.getProfile", {"json": {
            "did": "did:plc:abc123",
            "handle": "brand.bsky.social",
            "followersCount": 42,
        }})

        account = await oauth_coordinator.connect_by_password(
            SITE_ID, USER_ID, "brand.bsky.social", "app-pass-word"
        )

        assert account.platform == "bluesky"
        assert account.external_account_id == "did:plc:abc123"
        assert account.refresh_token == "refresh-jwt"
        assert account.followers_count == 42
        assert account.settings["service_url"] == "https://bsky.social"

    async def test_mastodon_instance_registered_once(self, db, platform_api):
        platform_api.on("POST", "https://mastodon.example/api/v1/apps", {"json": {
            "client_id": "masto-client", "client_secret": "masto-secret",
        }})

        first = await oauth_coordinator.initiate("mastodon", SITE_ID, USER_ID, instance="https://Mastodon.Example/")
        second = await oauth_coordinator.initiate("mastodon", SITE_ID, USER_ID, instance="mastodon.example")

        assert first.auth_url.startswith("https://mastodon.example/oauth/authorize?")
        assert "client_id=masto-client" in second.auth_url
        assert len(platform_api.calls("POST", "https://mastodon.example/api/v1/apps")) == 1
        assert await count(MastodonApp) == 1

    async def test_mastodon_requires_instance(self, db):
        with pytest.raises(ConfigurationError):
            await oauth_coordinator.initiate("mastodon", SITE_ID, USER_ID)

    async def test_sweep_expired_sessions(self, db):
        await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID, now=utcnow() - timedelta(hours=1))
        await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        assert await oauth_coordinator.sweep_expired_sessions() == 1
        assert await count(OAuthSession) == 1
