"""
Scheduler: moves due posts into publishing and runs periodic analytics sync
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import select

from models.database import Post, PostStatus, utcnow
from services.analytics_sync import analytics_sync_engine
from services.oauth import oauth_coordinator
from services.publishing import publishing_engine
from utils.config import get_config
from utils.database import get_session
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)


class TickReport(BaseModel):
    due: int = 0
    claimed: List[UUID] = Field(default_factory=list)
    lost: int = 0
    retried: int = 0
    failed: List[UUID] = Field(default_factory=list)


class SyncReport(BaseModel):
    accounts_synced: int = 0
    accounts_failed: int = 0
    posts_synced: int = 0
    optimal_times_updated: int = 0
    sessions_swept: int = 0


class Scheduler:
    """The only code path that moves a post out of scheduled"""

    async def due_posts(self, now: datetime, limit: int) -> List[UUID]:
        async with get_session() as db:
            result = await db.execute(
                select(Post.id)
                .where(Post.status == PostStatus.SCHEDULED.value, Post.scheduled_at <= now)
                .order_by(Post.scheduled_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Claim due scheduled posts, publish them, then re-drive due retries"""
        now = now or utcnow()
        report = TickReport()
        post_ids = await self.due_posts(now, get_config().scheduler_batch_size)
        report.due = len(post_ids)

        for post_id in post_ids:
            claimed = await publishing_engine.claim_post(post_id, (PostStatus.SCHEDULED,), now)
            metrics.track_claim(claimed)
            if not claimed:
                # Another tick got there first
                report.lost += 1
                continue
            report.claimed.append(post_id)
            try:
                await publishing_engine.publish_post(post_id, now=now)
            except Exception as e:
                logger.error(f"Publishing scheduled post {post_id} failed: {e}")
                report.failed.append(post_id)

        report.retried = await publishing_engine.retry_due_attempts(now)
        if report.due or report.retried:
            logger.info(
                f"Tick: {len(report.claimed)} claimed, {report.lost} lost, {report.retried} retried"
            )
        return report

    async def sync_tick(self, now: Optional[datetime] = None) -> SyncReport:
        """Account analytics, recent post metrics, optimal times and OAuth session cleanup"""
        now = now or utcnow()
        report = SyncReport()

        results = await analytics_sync_engine.sync_all_accounts(now.date(), now=now)
        report.accounts_synced = sum(1 for ok in results.values() if ok)
        report.accounts_failed = sum(1 for ok in results.values() if not ok)
        report.posts_synced = await analytics_sync_engine.sync_post_metrics(now)
        report.optimal_times_updated = await analytics_sync_engine.recalculate_all_optimal_times(now)
        report.sessions_swept = await oauth_coordinator.sweep_expired_sessions(now)

        logger.info(
            f"Sync tick: {report.accounts_synced} accounts synced, {report.accounts_failed} failed, "
            f"{report.posts_synced} posts updated"
        )
        return report


# Global scheduler
scheduler = Scheduler()
