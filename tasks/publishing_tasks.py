"""
Background tasks for publishing, scheduling and analytics sync
"""

import time
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from models.database import utcnow
from services.analytics_sync import analytics_sync_engine
from services.platforms.connection_manager import connection_manager
from services.publishing import publishing_engine
from services.scheduler import scheduler
from utils.logging import get_logger
from utils.metrics_collector import metrics
from utils.structured_logging import site_id_var

logger = get_logger(__name__)


async def publish_post_now(post_id: UUID) -> Dict[str, Any]:
    """Publish a post outside the scheduler (publish-now requests)"""
    started = time.perf_counter()
    try:
        report = await publishing_engine.publish_post(post_id)
        logger.info(f"Published post {post_id}: {report.status}")
        return report.model_dump(mode="json")
    except Exception as e:
        logger.error(f"Failed to publish post {post_id}: {str(e)}")
        raise
    finally:
        metrics.track_task_processing("publish_post", time.perf_counter() - started)


async def run_scheduler_tick() -> Dict[str, Any]:
    started = time.perf_counter()
    try:
        report = await scheduler.tick()
        return report.model_dump(mode="json")
    finally:
        metrics.track_task_processing("scheduler_tick", time.perf_counter() - started)


async def run_sync_tick() -> Dict[str, Any]:
    started = time.perf_counter()
    try:
        report = await scheduler.sync_tick()
        return report.model_dump(mode="json")
    finally:
        metrics.track_task_processing("sync_tick", time.perf_counter() - started)


async def sync_account_now(account_id: UUID, day: Optional[date] = None) -> bool:
    """On-demand analytics sync for one account"""
    account = await connection_manager.get_account(account_id)
    site_id_var.set(account.site_id)
    day = day or utcnow().date()
    await analytics_sync_engine.sync_account(account, day)
    await analytics_sync_engine.calculate_optimal_times(account)
    logger.info(f"Synced analytics for account {account_id}")
    return True
