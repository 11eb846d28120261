"""
Analytics sync: daily account snapshots, per-post metrics and optimal posting times
"""

import asyncio
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID, uuid4

import httpx
from sqlalchemy import func, select

from models.database import (
    AccountStatus,
    AttemptStatus,
    DailyAnalyticsSnapshot,
    OptimalTimeSlot,
    PlatformAccount,
    Post,
    PostAnalytics,
    PublishAttempt,
    utcnow,
)
from schemas.social_media import PostMetrics
from services.credentials import credential_manager
from services.health import is_rate_limited
from services.platforms.connection_manager import connection_manager
from services.platforms.registry import platform_registry
from utils.config import get_config
from utils.database import get_session
from utils.db_utils import upsert
from utils.exceptions import SocialBridgeException, SyncError
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)

MIN_SAMPLES = 5
FULL_CONFIDENCE_SAMPLES = 10
ENGAGEMENT_WEIGHT = 0.7
REACH_WEIGHT = 0.3
DEFAULT_PEAK_SCORE = 80.0
DEFAULT_OFF_PEAK_SCORE = 50.0

# Hours (UTC) that tend to perform well when an account has too little history
DEFAULT_PEAK_HOURS: Dict[str, Tuple[int, ...]] = {
    "facebook": (9, 13, 15, 19),
    "instagram": (11, 13, 17, 19),
    "threads": (8, 12, 18, 20),
    "twitter": (8, 12, 17),
    "linkedin": (8, 10, 12, 17),
    "tiktok": (12, 16, 19, 21),
    "youtube": (14, 16, 20),
    "pinterest": (14, 20, 21),
    "bluesky": (9, 12, 17, 20),
    "mastodon": (9, 12, 17, 20),
}
FALLBACK_PEAK_HOURS = (9, 12, 17)

PLATFORM_ERRORS = (SocialBridgeException, httpx.HTTPError)
SYNCABLE_STATUSES = (AccountStatus.ACTIVE.value, AccountStatus.RATE_LIMITED.value)


def day_of_week(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (moment.weekday() + 1) % 7


def engagement_rate(engagement: int, impressions: int, reach: int) -> float:
    base = impressions or reach
    if not base:
        return 0.0
    return round(engagement / base * 100, 4)


def score_buckets(
    samples: Iterable[Tuple[datetime, float, int]], platform: str
) -> List[Dict[str, object]]:
    """
    Score all 168 (day_of_week, hour) buckets from (published_at, engagement_rate, reach) samples.

    Buckets with fewer than MIN_SAMPLES posts take the platform's default
    heuristic and are flagged is_default.
    """
    buckets: Dict[Tuple[int, int], List[Tuple[float, int]]] = defaultdict(list)
    for published_at, rate, reach in samples:
        buckets[(day_of_week(published_at), published_at.hour)].append((rate, reach))

    averages: Dict[Tuple[int, int], Tuple[float, float]] = {}
    for key, values in buckets.items():
        if len(values) >= MIN_SAMPLES:
            averages[key] = (
                sum(rate for rate, _ in values) / len(values),
                sum(reach for _, reach in values) / len(values),
            )
    best_reach = max((reach for _, reach in averages.values()), default=0.0)
    peak_hours = DEFAULT_PEAK_HOURS.get(platform, FALLBACK_PEAK_HOURS)

    slots = []
    for dow in range(7):
        for hour in range(24):
            sample_size = len(buckets.get((dow, hour), []))
            confidence = min(sample_size / FULL_CONFIDENCE_SAMPLES, 1.0)
            if (dow, hour) in averages:
                avg_rate, avg_reach = averages[(dow, hour)]
                engagement_score = min(avg_rate * 20, 100.0)
                reach_score = (avg_reach / best_reach * 100) if best_reach else 0.0
                combined = ENGAGEMENT_WEIGHT * engagement_score + REACH_WEIGHT * reach_score
                is_default = False
            else:
                engagement_score = reach_score = combined = (
                    DEFAULT_PEAK_SCORE if hour in peak_hours else DEFAULT_OFF_PEAK_SCORE
                )
                is_default = True
            slots.append({
                "day_of_week": dow,
                "hour": hour,
                "engagement_score": round(engagement_score, 2),
                "reach_score": round(reach_score, 2),
                "combined_score": round(combined, 2),
                "confidence": round(confidence, 2),
                "sample_size": sample_size,
                "is_default": is_default,
            })
    return slots


class AnalyticsSyncEngine:
    """Pulls metrics from platforms and derives per-account analytics"""

    def __init__(self, concurrency: Optional[int] = None):
        self._concurrency = concurrency

    def _semaphore(self) -> asyncio.Semaphore:
        return asyncio.Semaphore(self._concurrency or get_config().sync_concurrency)

    async def sync_account(
        self, account: PlatformAccount, day: date, now: Optional[datetime] = None
    ) -> DailyAnalyticsSnapshot:
        """Fetch account metrics and upsert the (account, day) snapshot"""
        now = now or utcnow()
        adapter = platform_registry.get_adapter(account.platform)
        try:
            data = await adapter.fetch_account_metrics(credential_manager.session_for(account), account, day)
        except Exception as e:
            # A malformed 2xx body surfaces as KeyError or TypeError from the adapter
            message = str(e) if isinstance(e, PLATFORM_ERRORS) else f"{type(e).__name__}: {e}"
            metrics.track_sync(account.platform, "account", "failed")
            await credential_manager.record_error(account, message, now)
            raise SyncError(
                f"Sync failed for {account.platform} account {account.id}: {message}",
                {"account_id": str(account.id), "platform": account.platform},
            ) from e

        async with get_session() as db:
            previous = await db.execute(
                select(DailyAnalyticsSnapshot.followers_count)
                .where(DailyAnalyticsSnapshot.account_id == account.id, DailyAnalyticsSnapshot.date < day)
                .order_by(DailyAnalyticsSnapshot.date.desc())
                .limit(1)
            )
            previous_followers = previous.scalar_one_or_none()
            followers_change = data.followers_count - previous_followers if previous_followers is not None else 0
            engagement = data.engagement or (data.likes + data.comments + data.shares)

            await upsert(
                db,
                DailyAnalyticsSnapshot,
                {
                    "id": uuid4(),
                    "account_id": account.id,
                    "date": day,
                    "followers_count": data.followers_count,
                    "followers_change": followers_change,
                    "following_count": data.following_count,
                    "posts_count": data.posts_count,
                    "impressions": data.impressions,
                    "reach": data.reach,
                    "engagement": engagement,
                    "likes": data.likes,
                    "comments": data.comments,
                    "shares": data.shares,
                    "clicks": data.clicks,
                    "engagement_rate": engagement_rate(engagement, data.impressions, data.reach),
                    "created_at": now,
                    "updated_at": now,
                },
                ("account_id", "date"),
            )
            await db.commit()
            result = await db.execute(
                select(DailyAnalyticsSnapshot).where(
                    DailyAnalyticsSnapshot.account_id == account.id,
                    DailyAnalyticsSnapshot.date == day,
                )
            )
            snapshot = result.scalar_one()

        await credential_manager.mark_synced(
            account,
            now,
            followers_count=data.followers_count,
            following_count=data.following_count,
            posts_count=data.posts_count,
        )
        metrics.track_sync(account.platform, "account", "success")
        return snapshot

    async def sync_all_accounts(self, day: date, now: Optional[datetime] = None) -> Dict[UUID, bool]:
        """Sync every usable account; one account's failure never stops the rest"""
        now = now or utcnow()
        accounts = await connection_manager.list_syncable_accounts()
        semaphore = self._semaphore()

        async def run(account: PlatformAccount) -> Optional[bool]:
            async with semaphore:
                try:
                    account = await credential_manager.clear_rate_limit(account, now)
                    if is_rate_limited(account, now):
                        logger.info(f"Skipping rate limited {account.platform} account {account.id}")
                        return None
                    await self.sync_account(account, day, now)
                    return True
                except SyncError as e:
                    logger.warning(e.message)
                    return False
                except SocialBridgeException as e:
                    logger.warning(f"Sync skipped for account {account.id}: {e.message}")
                    return False
                except Exception as e:
                    logger.error(f"Unexpected error syncing account {account.id}: {e}", exc_info=True)
                    return False

        results = await asyncio.gather(*(run(account) for account in accounts))
        return {
            account.id: ok for account, ok in zip(accounts, results) if ok is not None
        }

    async def sync_post_metrics(self, now: Optional[datetime] = None, window_days: Optional[int] = None) -> int:
        """Refresh metrics of recently published targets and roll totals onto their posts"""
        now = now or utcnow()
        window_days = window_days or get_config().post_metrics_window_days
        async with get_session() as db:
            result = await db.execute(
                select(PublishAttempt).where(
                    PublishAttempt.status == AttemptStatus.PUBLISHED.value,
                    PublishAttempt.platform_content_id.is_not(None),
                    PublishAttempt.published_at >= now - timedelta(days=window_days),
                )
            )
            attempts = list(result.scalars().all())
        if not attempts:
            return 0

        accounts = {
            account.id: account
            for account in await connection_manager.get_accounts(list({a.account_id for a in attempts}))
        }
        semaphore = self._semaphore()

        async def run(attempt: PublishAttempt) -> bool:
            account = accounts.get(attempt.account_id)
            if account is None or account.status not in SYNCABLE_STATUSES or is_rate_limited(account, now):
                return False
            async with semaphore:
                adapter = platform_registry.get_adapter(account.platform)
                try:
                    data = await adapter.fetch_post_metrics(
                        credential_manager.session_for(account), account, attempt.platform_content_id
                    )
                    await self._store_post_metrics(attempt, data, now)
                except Exception as e:
                    metrics.track_sync(account.platform, "post", "failed")
                    logger.warning(f"Post metrics failed for attempt {attempt.id} on {account.platform}: {e}")
                    return False
            metrics.track_sync(account.platform, "post", "success")
            return True

        results = await asyncio.gather(*(run(attempt) for attempt in attempts))
        for post_id in {attempt.post_id for attempt, ok in zip(attempts, results) if ok}:
            await self._roll_up_post(post_id)
        return sum(1 for ok in results if ok)

    async def _store_post_metrics(self, attempt: PublishAttempt, data: PostMetrics, now: datetime) -> None:
        async with get_session() as db:
            await upsert(
                db,
                PostAnalytics,
                {
                    "id": uuid4(),
                    "post_id": attempt.post_id,
                    "account_id": attempt.account_id,
                    "platform_content_id": attempt.platform_content_id,
                    "impressions": data.impressions,
                    "reach": data.reach,
                    "engagement": data.engagement,
                    "likes": data.likes,
                    "comments": data.comments,
                    "shares": data.shares,
                    "clicks": data.clicks,
                    "engagement_rate": data.engagement_rate,
                    "synced_at": now,
                },
                ("post_id", "account_id"),
            )
            await db.commit()

    async def _roll_up_post(self, post_id: UUID) -> None:
        async with get_session() as db:
            result = await db.execute(
                select(
                    func.coalesce(func.sum(PostAnalytics.impressions), 0),
                    func.coalesce(func.sum(PostAnalytics.engagement), 0),
                    func.coalesce(func.sum(PostAnalytics.clicks), 0),
                ).where(PostAnalytics.post_id == post_id)
            )
            impressions, engagement, clicks = result.one()
            post = await db.get(Post, post_id)
            if post is None:
                return
            post.total_impressions = int(impressions)
            post.total_engagement = int(engagement)
            post.total_clicks = int(clicks)
            db.add(post)
            await db.commit()

    async def calculate_optimal_times(
        self, account: PlatformAccount, now: Optional[datetime] = None, window_days: Optional[int] = None
    ) -> List[OptimalTimeSlot]:
        """Recompute all 168 slots for an account from its recent published posts"""
        now = now or utcnow()
        window_days = window_days or get_config().optimal_times_window_days
        async with get_session() as db:
            result = await db.execute(
                select(PublishAttempt.published_at, PostAnalytics.engagement_rate, PostAnalytics.reach)
                .join(
                    PostAnalytics,
                    (PostAnalytics.post_id == PublishAttempt.post_id)
                    & (PostAnalytics.account_id == PublishAttempt.account_id),
                )
                .where(
                    PublishAttempt.account_id == account.id,
                    PublishAttempt.status == AttemptStatus.PUBLISHED.value,
                    PublishAttempt.published_at >= now - timedelta(days=window_days),
                )
            )
            samples = [(row[0], row[1] or 0.0, row[2] or 0) for row in result.all()]

            for slot in score_buckets(samples, account.platform):
                await upsert(
                    db,
                    OptimalTimeSlot,
                    {"id": uuid4(), "account_id": account.id, "updated_at": now, **slot},
                    ("account_id", "day_of_week", "hour"),
                    immutable_fields=("id",),
                )
            await db.commit()

        logger.info(f"Recalculated optimal times for account {account.id} from {len(samples)} posts")
        return await self.optimal_times(account.id)

    async def recalculate_all_optimal_times(self, now: Optional[datetime] = None) -> int:
        count = 0
        for account in await connection_manager.list_syncable_accounts():
            try:
                await self.calculate_optimal_times(account, now)
            except Exception as e:
                logger.error(f"Optimal times failed for account {account.id}: {e}", exc_info=True)
                continue
            count += 1
        return count

    async def optimal_times(self, account_id: UUID) -> List[OptimalTimeSlot]:
        async with get_session() as db:
            result = await db.execute(
                select(OptimalTimeSlot)
                .where(OptimalTimeSlot.account_id == account_id)
                .order_by(OptimalTimeSlot.day_of_week, OptimalTimeSlot.hour)
            )
            return list(result.scalars().all())

    async def best_times(self, account_ids: List[UUID], limit: int = 5) -> List[OptimalTimeSlot]:
        """Highest-scoring slots across the given accounts, measured slots first on ties"""
        if not account_ids:
            return []
        async with get_session() as db:
            result = await db.execute(
                select(OptimalTimeSlot)
                .where(OptimalTimeSlot.account_id.in_(account_ids))
                .order_by(
                    OptimalTimeSlot.combined_score.desc(),
                    OptimalTimeSlot.is_default.asc(),
                    OptimalTimeSlot.confidence.desc(),
                )
                .limit(limit)
            )
            return list(result.scalars().all())

    async def daily_snapshots(self, account_id: UUID, start: date, end: date) -> List[DailyAnalyticsSnapshot]:
        async with get_session() as db:
            result = await db.execute(
                select(DailyAnalyticsSnapshot)
                .where(
                    DailyAnalyticsSnapshot.account_id == account_id,
                    DailyAnalyticsSnapshot.date >= start,
                    DailyAnalyticsSnapshot.date <= end,
                )
                .order_by(DailyAnalyticsSnapshot.date)
            )
            return list(result.scalars().all())


# Global sync engine
analytics_sync_engine = AnalyticsSyncEngine()
