"""
OAuth flow coordination: authorization URLs, state tokens, PKCE and callbacks
"""

import base64
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete

from models.database import MastodonApp, OAuthSession, PlatformAccount, utcnow
from schemas.social_media import AuthType, AuthorizationStart, PlatformConfig, TokenSet
from services.platforms.base import ApiSession, PlatformAdapter
from services.platforms.connection_manager import connection_manager
from services.platforms.mastodon import MastodonAdapter, normalize_instance
from services.platforms.registry import platform_registry
from utils.config import get_config
from utils.database import get_session
from utils.db_utils import insert_ignore
from utils.exceptions import (
    ConfigurationError,
    ExpiredStateError,
    InvalidStateError,
    UnsupportedPlatformError,
)
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)


def code_challenge_for(verifier: str) -> str:
    """S256 challenge: unpadded base64url of the verifier's SHA-256"""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OAuthCoordinator:
    """Drives the authorization-code, app-password and instance-registration flows"""

    def _config(self, platform: str) -> PlatformConfig:
        config = platform_registry.lookup(platform)
        if config is None:
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}", {"platform": platform})
        if not config.is_configured:
            raise ConfigurationError(
                f"{config.display_name} is not configured: client credentials are missing",
                {"platform": platform},
            )
        return config

    async def resolve_config(self, platform: str, instance: Optional[str] = None) -> PlatformConfig:
        """Registry config, with per-instance app credentials for Mastodon"""
        config = self._config(platform)
        if config.auth_type != AuthType.DYNAMIC_REGISTRATION:
            return config
        if not instance:
            raise ConfigurationError("A Mastodon instance is required", {"platform": platform})
        app = await self.get_instance_app(instance)
        if app is None:
            raise ConfigurationError(
                f"Instance {normalize_instance(instance)} has not been registered",
                {"platform": platform, "instance": normalize_instance(instance)},
            )
        adapter = platform_registry.get_adapter(platform)
        return adapter.for_instance(config, app.instance, app.client_id, app.client_secret)

    async def get_instance_app(self, instance: str) -> Optional[MastodonApp]:
        async with get_session() as db:
            return await db.get(MastodonApp, normalize_instance(instance))

    async def register_instance(self, instance: str, redirect_uri: Optional[str] = None) -> MastodonApp:
        """Return the cached app registration for an instance, registering it on first use"""
        host = normalize_instance(instance)
        if not host:
            raise ConfigurationError("Instance domain is empty", {"platform": "mastodon"})

        existing = await self.get_instance_app(host)
        if existing is not None:
            return existing

        config = get_config()
        redirect_uri = redirect_uri or config.oauth_redirect_uri
        adapter: MastodonAdapter = platform_registry.get_adapter("mastodon")
        credentials = await adapter.register_app(host, redirect_uri, config.mastodon_app_name, config.app_url)

        async with get_session() as db:
            # A concurrent registration may have won; keep whichever row landed first
            await insert_ignore(
                db,
                MastodonApp,
                {
                    "instance": host,
                    "client_id": credentials["client_id"],
                    "client_secret": credentials["client_secret"],
                    "redirect_uri": redirect_uri,
                    "scopes": adapter.scope_separator.join(adapter.default_scopes),
                    "created_at": utcnow(),
                },
                ("instance",),
            )
            await db.commit()
            app = await db.get(MastodonApp, host)

        logger.info(f"Registered SocialBridge with Mastodon instance {host}")
        return app

    async def initiate(
        self,
        platform: str,
        site_id: str,
        user_id: str,
        redirect_uri: Optional[str] = None,
        tenant_id: Optional[str] = None,
        instance: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AuthorizationStart:
        """Create a pending OAuth session and the provider URL to send the user to"""
        platform = platform.lower()
        config = self._config(platform)
        if config.auth_type == AuthType.APP_PASSWORD:
            raise ConfigurationError(
                f"{config.display_name} connects with an app password",
                {"platform": platform},
            )

        settings = get_config()
        redirect_uri = redirect_uri or settings.oauth_redirect_uri
        now = now or utcnow()

        if config.auth_type == AuthType.DYNAMIC_REGISTRATION:
            if not instance:
                raise ConfigurationError("A Mastodon instance is required", {"platform": platform})
            instance = normalize_instance(instance)
            await self.register_instance(instance, redirect_uri)
            config = await self.resolve_config(platform, instance)

        adapter = platform_registry.get_adapter(platform)
        state = generate_state()
        code_verifier = generate_code_verifier() if config.uses_pkce else None
        challenge = code_challenge_for(code_verifier) if code_verifier else None

        async with get_session() as db:
            db.add(OAuthSession(
                state=state,
                platform=platform,
                site_id=site_id,
                user_id=user_id,
                tenant_id=tenant_id,
                redirect_uri=redirect_uri,
                code_verifier=code_verifier,
                instance=instance,
                created_at=now,
                expires_at=now + timedelta(seconds=settings.oauth_session_ttl_seconds),
            ))
            await db.commit()

        auth_url = adapter.build_authorization_url(config, state, redirect_uri, challenge, instance)
        logger.info(f"Started {platform} OAuth for site {site_id}")
        return AuthorizationStart(auth_url=auth_url, state=state)

    async def _consume_session(self, state: str, now: datetime) -> OAuthSession:
        """Look up and delete the session in one step; a state validates at most once"""
        async with get_session() as db:
            session = await db.get(OAuthSession, state)
            if session is None:
                raise InvalidStateError("Unknown or already used OAuth state")
            result = await db.execute(delete(OAuthSession).where(OAuthSession.state == state))
            await db.commit()

        if result.rowcount != 1:
            raise InvalidStateError("Unknown or already used OAuth state")
        if session.expires_at <= now:
            raise ExpiredStateError(
                "OAuth session expired; start the connection again",
                {"platform": session.platform},
            )
        return session

    async def complete(self, code: str, state: str, now: Optional[datetime] = None) -> PlatformAccount:
        """Finish the callback: validate state, exchange the code and store the account"""
        now = now or utcnow()
        session = await self._consume_session(state, now)
        platform = session.platform
        adapter = platform_registry.get_adapter(platform)
        config = await self.resolve_config(platform, session.instance)

        try:
            tokens = await adapter.exchange_code(
                config,
                code,
                session.redirect_uri,
                code_verifier=session.code_verifier,
                instance=session.instance,
            )
        except Exception:
            metrics.track_platform_request(platform, "oauth_exchange", "error")
            raise
        metrics.track_platform_request(platform, "oauth_exchange", "success")

        settings = dict(tokens.extra)
        if session.instance:
            settings["instance"] = session.instance
        return await self._store(
            adapter, tokens, session.site_id, session.user_id, session.tenant_id, settings, now
        )

    async def connect_by_password(
        self,
        site_id: str,
        user_id: str,
        identifier: str,
        app_password: str,
        tenant_id: Optional[str] = None,
        service_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PlatformAccount:
        """Bluesky: exchange handle and app password for a session, then store the account"""
        now = now or utcnow()
        adapter = platform_registry.get_adapter("bluesky")
        tokens = await adapter.create_session(identifier, app_password, service_url)
        metrics.track_platform_request("bluesky", "create_session", "success")
        return await self._store(adapter, tokens, site_id, user_id, tenant_id, dict(tokens.extra), now)

    async def _store(
        self,
        adapter: PlatformAdapter,
        tokens: TokenSet,
        site_id: str,
        user_id: str,
        tenant_id: Optional[str],
        settings: dict,
        now: datetime,
    ) -> PlatformAccount:
        # Not persisted yet: only used to call the profile endpoint with the fresh token
        pending = PlatformAccount(
            site_id=site_id,
            platform=adapter.platform,
            external_account_id="",
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            settings=settings,
        )
        profile = await adapter.fetch_profile(ApiSession(adapter, pending), pending)
        account = await connection_manager.store_account(
            site_id,
            adapter.platform,
            tokens,
            profile,
            user_id=user_id,
            tenant_id=tenant_id,
            settings=settings,
            now=now,
        )
        logger.info(f"Connected {adapter.platform} account {profile.handle or profile.external_account_id}")
        return account

    async def discard(self, state: str) -> Optional[str]:
        """Drop a session the user declined at the provider; returns its platform"""
        async with get_session() as db:
            session = await db.get(OAuthSession, state)
            if session is None:
                return None
            await db.delete(session)
            await db.commit()
        return session.platform

    async def sweep_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """Delete abandoned OAuth sessions"""
        now = now or utcnow()
        async with get_session() as db:
            result = await db.execute(delete(OAuthSession).where(OAuthSession.expires_at <= now))
            await db.commit()
        if result.rowcount:
            logger.info(f"Swept {result.rowcount} expired OAuth sessions")
        return result.rowcount or 0


# Global coordinator
oauth_coordinator = OAuthCoordinator()
