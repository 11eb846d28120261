"""
Platform adapter registry for dependency injection
"""

from typing import Dict, List, Optional, Type

from schemas.social_media import PlatformConfig
from utils.config import get_config
from utils.exceptions import UnsupportedPlatformError
from .base import PlatformAdapter
from .bluesky import BlueskyAdapter
from .facebook import FacebookAdapter
from .instagram import InstagramAdapter
from .linkedin import LinkedInAdapter
from .mastodon import MastodonAdapter
from .pinterest import PinterestAdapter
from .threads import ThreadsAdapter
from .tiktok import TikTokAdapter
from .twitter import TwitterAdapter
from .youtube import YouTubeAdapter


class PlatformRegistry:
    """Registry for platform adapters"""

    def __init__(self):
        self._adapters: Dict[str, Type[PlatformAdapter]] = {
            "facebook": FacebookAdapter,
            "instagram": InstagramAdapter,
            "threads": ThreadsAdapter,
            "twitter": TwitterAdapter,
            "linkedin": LinkedInAdapter,
            "tiktok": TikTokAdapter,
            "youtube": YouTubeAdapter,
            "pinterest": PinterestAdapter,
            "bluesky": BlueskyAdapter,
            "mastodon": MastodonAdapter,
        }
        self._instances: Dict[str, PlatformAdapter] = {}

    def get_adapter(self, platform: str) -> PlatformAdapter:
        """Get the singleton adapter for a platform"""
        platform = (platform or "").lower()

        if platform not in self._adapters:
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}", {"platform": platform})

        if platform not in self._instances:
            self._instances[platform] = self._adapters[platform]()

        return self._instances[platform]

    def lookup(self, platform: str) -> Optional[PlatformConfig]:
        """Endpoints, credentials and constraints for a platform; None when unknown"""
        platform = (platform or "").lower()
        if platform not in self._adapters:
            return None
        client_id, client_secret = get_config().platform_credentials(platform)
        return self.get_adapter(platform).build_config(client_id, client_secret)

    def list_platforms(self) -> List[str]:
        """List all supported platforms"""
        return list(self._adapters.keys())

    def list_configured(self) -> List[PlatformConfig]:
        """Platforms whose credentials are present and usable"""
        configs = [self.lookup(platform) for platform in self._adapters]
        return [config for config in configs if config is not None and config.is_configured]


# Global registry instance
platform_registry = PlatformRegistry()


def get_adapter(platform: str) -> PlatformAdapter:
    """Dependency injection function for platform adapters"""
    return platform_registry.get_adapter(platform)
