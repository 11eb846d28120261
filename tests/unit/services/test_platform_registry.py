"""
Unit tests for the platform registry - every adapter is reached through it
"""

import pytest

from schemas.social_media import AuthType
from services.platforms.base import PlatformAdapter
from services.platforms.registry import PlatformRegistry, get_adapter
from utils.exceptions import UnsupportedPlatformError

ALL_PLATFORMS = {
    "facebook", "instagram", "threads", "twitter", "linkedin",
    "tiktok", "youtube", "pinterest", "bluesky", "mastodon",
}


class TestPlatformRegistry:
    """Adapter lookup and configuration"""

    def test_lists_every_supported_platform(self):
        assert set(PlatformRegistry().list_platforms()) == ALL_PLATFORMS

    def test_get_adapter_returns_singleton_instance(self):
        registry = PlatformRegistry()

        first = registry.get_adapter("twitter")
        second = registry.get_adapter("twitter")

        assert first is second
        assert isinstance(first, PlatformAdapter)

    def test_get_adapter_case_insensitive(self):
        registry = PlatformRegistry()

        assert registry.get_adapter("Mastodon") is registry.get_adapter("mastodon")

    def test_unsupported_platform_raises(self):
        """
        Business Critical: an unknown platform is an error, not a silent None
        """
        with pytest.raises(UnsupportedPlatformError):
            get_adapter("myspace")

    def test_lookup_unknown_platform_returns_none(self):
        assert PlatformRegistry().lookup("myspace") is None

    def test_lookup_carries_credentials_and_constraints(self):
        config = PlatformRegistry().lookup("twitter")

        assert config.client_id == "twitter-client"
        assert config.client_secret == "twitter-secret"
        assert config.auth_type == AuthType.OAUTH2_PKCE
        assert config.uses_pkce
        assert config.constraints.max_chars == 280
        assert config.rotates_refresh_token

    def test_list_configured_skips_platforms_without_credentials(self):
        """
        Business Critical: platforms missing client credentials must not be offered
        """
        configured = {config.platform for config in PlatformRegistry().list_configured()}

        assert "twitter" in configured
        assert "linkedin" not in configured
        # App-password and per-instance platforms need no app credentials
        assert {"bluesky", "mastodon"} <= configured

    def test_mastodon_tokens_do_not_expire(self):
        config = PlatformRegistry().lookup("mastodon")

        assert config.auth_type == AuthType.DYNAMIC_REGISTRATION
        assert config.tokens_expire is False
