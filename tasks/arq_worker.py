"""
ARQ worker configuration for background tasks
"""

from typing import Any, Dict
from uuid import UUID

from arq import cron
from arq.connections import RedisSettings

from utils.config import get_config
from utils.database import dispose_db
from utils.http_client import close_shared_client
from utils.logging import get_logger, setup_logging
from utils.monitoring import init_sentry
from tasks.publishing_tasks import publish_post_now, run_scheduler_tick, run_sync_tick, sync_account_now

logger = get_logger(__name__)
config = get_config()


async def startup(ctx):
    """Worker startup"""
    setup_logging(config.log_level)
    init_sentry()
    logger.info("ARQ worker starting up")


async def shutdown(ctx):
    """Worker shutdown"""
    await close_shared_client()
    await dispose_db()
    logger.info("ARQ worker shutting down")


async def publish_post_task(ctx, post_id: str) -> Dict[str, Any]:
    """Publish a post in background"""
    return await publish_post_now(UUID(post_id))


async def sync_account_task(ctx, account_id: str) -> bool:
    """Sync one account's analytics in background"""
    try:
        return await sync_account_now(UUID(account_id))
    except Exception as e:
        logger.error(f"Account sync failed: {str(e)}")
        raise


async def scheduler_tick_job(ctx) -> Dict[str, Any]:
    """Cron: claim due posts and re-drive retries"""
    return await run_scheduler_tick()


async def sync_tick_job(ctx) -> Dict[str, Any]:
    """Cron: analytics sync, optimal times and OAuth session cleanup"""
    return await run_sync_tick()


def _every(interval: int, limit: int) -> set:
    """Cron field values for 'every interval units' within 0..limit-1"""
    step = max(1, min(interval, limit))
    return set(range(0, limit, step))


def _scheduler_seconds() -> set:
    seconds = config.scheduler_interval_seconds
    # Sub-minute intervals run at fixed seconds; longer ones on whole minutes
    return _every(seconds, 60) if seconds < 60 else {0}


def _sync_minutes() -> set:
    minutes = config.sync_interval_minutes
    return _every(minutes, 60) if minutes < 60 else {5}


class WorkerSettings:
    """ARQ worker settings"""
    functions = [
        publish_post_task,
        sync_account_task,
    ]
    cron_jobs = [
        cron(scheduler_tick_job, second=_scheduler_seconds(), unique=True, run_at_startup=True),
        cron(sync_tick_job, minute=_sync_minutes(), second=0, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(config.redis_url)
    job_timeout = 300
    keep_result = 3600

