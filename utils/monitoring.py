"""
Monitoring and observability utilities with Sentry integration
"""

import os
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from utils.config import get_config
from utils.logging import get_logger

logger = get_logger(__name__)


def init_sentry() -> bool:
    """Initialize Sentry for error tracking when a DSN is configured"""
    config = get_config()
    if not config.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1 if config.environment == "production" else 0.0,
        environment=config.environment,
        release=os.getenv("APP_VERSION", "unknown"),
        send_default_pii=False,
    )
    logger.info("Sentry initialized")
    return True
