"""
Centralized configuration management with strict validation
"""

from typing import Optional, Tuple
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


# Platforms whose OAuth client credentials come from the environment.
# Bluesky (app password) and Mastodon (per-instance registration) need none.
CREDENTIAL_PLATFORMS = (
    "facebook",
    "instagram",
    "threads",
    "twitter",
    "linkedin",
    "tiktok",
    "youtube",
    "pinterest",
)


class Config(BaseSettings):
    """Application configuration with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    # Database
    database_url: str = Field("sqlite+aiosqlite:///./socialbridge.db")

    # Redis
    redis_url: str = Field("redis://localhost:6379")

    # Application
    environment: str = Field("development")
    log_level: str = Field("INFO")
    port: int = Field(8000)
    app_url: str = Field("http://localhost:3000")
    oauth_redirect_uri: str = Field("http://localhost:8000/api/v1/platforms/oauth/callback")
    sentry_dsn: Optional[str] = Field(None)

    # Security
    jwt_secret_key: str = Field("change-me-in-production-change-me-now")
    cron_secret: Optional[str] = Field(None)

    # Facebook / Instagram / Threads (Meta apps)
    facebook_client_id: Optional[str] = Field(None)
    facebook_client_secret: Optional[str] = Field(None)
    instagram_client_id: Optional[str] = Field(None)
    instagram_client_secret: Optional[str] = Field(None)
    threads_client_id: Optional[str] = Field(None)
    threads_client_secret: Optional[str] = Field(None)

    # Twitter / X
    twitter_client_id: Optional[str] = Field(None)
    twitter_client_secret: Optional[str] = Field(None)

    # LinkedIn
    linkedin_client_id: Optional[str] = Field(None)
    linkedin_client_secret: Optional[str] = Field(None)

    # TikTok
    tiktok_client_id: Optional[str] = Field(None)
    tiktok_client_secret: Optional[str] = Field(None)

    # YouTube (Google)
    youtube_client_id: Optional[str] = Field(None)
    youtube_client_secret: Optional[str] = Field(None)

    # Pinterest
    pinterest_client_id: Optional[str] = Field(None)
    pinterest_client_secret: Optional[str] = Field(None)

    # Bluesky / Mastodon
    bluesky_service_url: str = Field("https://bsky.social")
    mastodon_app_name: str = Field("SocialBridge")

    # Credential lifecycle
    token_refresh_margin_seconds: int = Field(300, ge=0)
    oauth_session_ttl_seconds: int = Field(600, gt=0)
    http_timeout_seconds: float = Field(15.0, gt=0)
    distributed_locks: bool = Field(False)
    lock_timeout_seconds: int = Field(60, gt=0)

    # Publishing
    publish_max_attempts: int = Field(3, ge=1, le=10)
    publish_retry_base_seconds: int = Field(60, ge=1)
    publish_retry_max_seconds: int = Field(3600, ge=1)
    publish_concurrency: int = Field(5, ge=1)
    publish_stale_after_seconds: int = Field(900, ge=60)

    # Scheduler / analytics
    scheduler_interval_seconds: int = Field(60, ge=1)
    scheduler_batch_size: int = Field(50, ge=1)
    sync_interval_minutes: int = Field(60, ge=1)
    sync_concurrency: int = Field(5, ge=1)
    post_metrics_window_days: int = Field(30, ge=1)
    optimal_times_window_days: int = Field(90, ge=1)

    @field_validator('redis_url')
    @classmethod
    def validate_redis_url(cls, v):
        if not v.startswith(('redis://', 'rediss://')):
            raise ValueError("REDIS_URL must be a valid Redis connection string")
        return v

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['development', 'test', 'staging', 'production']:
            raise ValueError("ENVIRONMENT must be one of: development, test, staging, production")
        return v

    def platform_credentials(self, platform: str) -> Tuple[Optional[str], Optional[str]]:
        """Return (client_id, client_secret) for a platform, or (None, None)"""
        if platform not in CREDENTIAL_PLATFORMS:
            return None, None
        return (
            getattr(self, f"{platform}_client_id", None),
            getattr(self, f"{platform}_client_secret", None),
        )


@lru_cache()
def get_config() -> Config:
    """Get cached configuration instance"""
    try:
        return Config()
    except Exception as e:
        raise RuntimeError(f"Configuration validation failed: {str(e)}")


def validate_config_on_startup():
    """Validate configuration at application startup with fail-fast approach"""
    try:
        config = get_config()

        if config.environment == "production":
            critical_secrets = {
                "DATABASE_URL": config.database_url,
                "JWT_SECRET_KEY": config.jwt_secret_key,
                "CRON_SECRET": config.cron_secret,
            }
            missing_critical = [
                name for name, value in critical_secrets.items()
                if not value or len(value.strip()) == 0
            ]
            if missing_critical:
                raise RuntimeError(
                    f"CRITICAL: Missing required secrets: {', '.join(missing_critical)}. Application cannot start."
                )

            if len(config.jwt_secret_key) < 32:
                raise RuntimeError("CRITICAL: JWT_SECRET_KEY must be at least 32 characters")

            if config.database_url.startswith("sqlite"):
                raise RuntimeError("CRITICAL: DATABASE_URL must point at PostgreSQL in production")

        configured = [
            platform for platform in CREDENTIAL_PLATFORMS
            if all(config.platform_credentials(platform))
        ]
        if not configured:
            logger.warning("No OAuth platform credentials configured; only Bluesky and Mastodon are usable")
        else:
            logger.info(f"OAuth credentials present for: {', '.join(configured)}")

        logger.info("All configuration validation passed")
        return config

    except Exception as e:
        logger.error(f"CONFIGURATION VALIDATION FAILED: {str(e)}")
        raise SystemExit(f"Application startup aborted: {str(e)}")
