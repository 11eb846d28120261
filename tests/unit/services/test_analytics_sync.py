"""
Analytics sync: daily snapshots, post metrics and optimal posting times
"""

from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import SITE_ID, reload
from models.database import (
    AccountStatus,
    AttemptStatus,
    DailyAnalyticsSnapshot,
    PlatformAccount,
    Post,
    PostAnalytics,
    PublishAttempt,
    utcnow,
)
from services.analytics_sync import AnalyticsSyncEngine, day_of_week, score_buckets
from services.publishing import PublishingEngine, RetryPolicy
from utils.database import get_session
from utils.exceptions import SyncError

ME_URL = "https://api.twitter.com/2/users/me"


def profile(followers):
    return {"json": {"data": {
        "id": "1", "username": "brand",
        "public_metrics": {"followers_count": followers, "following_count": 10, "tweet_count": 99},
    }}}


@pytest.fixture
def sync_engine():
    return AnalyticsSyncEngine(concurrency=3)


async def snapshot_count() -> int:
    async with get_session() as session:
        result = await session.execute(select(func.count()).select_from(DailyAnalyticsSnapshot))
        return result.scalar_one()


async def add_published_samples(account, published_at, count, engagement_rate=2.0, reach=500):
    """Published attempts with synced metrics, as optimal-time input"""
    async with get_session() as session:
        for _ in range(count):
            post = Post(site_id=SITE_ID, content="sample", target_account_ids=[str(account.id)], status="published")
            session.add(post)
            session.add(PublishAttempt(
                post_id=post.id, account_id=account.id, platform=account.platform,
                status=AttemptStatus.PUBLISHED.value, attempt_count=1,
                platform_content_id=uuid4().hex, published_at=published_at,
            ))
            session.add(PostAnalytics(
                post_id=post.id, account_id=account.id, reach=reach, engagement_rate=engagement_rate,
            ))
        await session.commit()


class TestScoring:
    def test_sunday_is_day_zero(self):
        assert day_of_week(datetime(2025, 3, 9, 10)) == 0
        assert day_of_week(datetime(2025, 3, 10, 10)) == 1
        assert day_of_week(datetime(2025, 3, 15, 10)) == 6

    def test_small_buckets_use_platform_defaults(self):
        monday_9 = datetime(2025, 3, 10, 9)
        tuesday_10 = datetime(2025, 3, 11, 10)
        samples = [(monday_9, 2.0, 500)] * 5 + [(tuesday_10, 9.0, 900)] * 3

        slots = {(s["day_of_week"], s["hour"]): s for s in score_buckets(samples, "twitter")}

        assert len(slots) == 168
        measured = slots[(1, 9)]
        assert measured["is_default"] is False
        assert measured["engagement_score"] == 40.0
        assert measured["reach_score"] == 100.0
        assert measured["combined_score"] == 58.0
        assert measured["confidence"] == 0.5

        sparse = slots[(2, 10)]
        assert sparse["is_default"] is True
        assert sparse["sample_size"] == 3
        assert sparse["confidence"] == 0.3
        assert sparse["combined_score"] == 50.0
        # 12:00 is a default peak hour for twitter
        assert slots[(2, 12)]["combined_score"] == 80.0

    def test_engagement_score_is_capped(self):
        samples = [(datetime(2025, 3, 10, 9), 12.0, 100)] * 5

        slot = next(s for s in score_buckets(samples, "twitter") if not s["is_default"])

        assert slot["engagement_score"] == 100.0


class TestDailySnapshots:
    async def test_syncing_twice_keeps_one_snapshot(self, sync_engine, make_account, platform_api):
        """
        Business Critical: repeated syncs of a day update it rather than duplicate it
        """
        account = await make_account("twitter")
        platform_api.on("GET", ME_URL, profile(1200), profile(1250))
        today = date(2025, 3, 10)

        await sync_engine.sync_account(account, today)
        snapshot = await sync_engine.sync_account(account, today)

        assert await snapshot_count() == 1
        assert snapshot.followers_count == 1250
        assert snapshot.followers_change == 0

    async def test_followers_change_against_previous_snapshot(self, sync_engine, make_account, platform_api):
        account = await make_account("twitter")
        platform_api.on("GET", ME_URL, profile(1200), profile(1275))

        await sync_engine.sync_account(account, date(2025, 3, 8))
        snapshot = await sync_engine.sync_account(account, date(2025, 3, 10))

        assert snapshot.followers_change == 75
        stored = await reload(PlatformAccount, account.id)
        assert stored.followers_count == 1275

    async def test_platform_failure_recorded_on_account(self, sync_engine, make_account, platform_api):
        account = await make_account("twitter")
        platform_api.on("GET", ME_URL, {"status": 500, "json": {"title": "Internal Error"}})

        with pytest.raises(SyncError):
            await sync_engine.sync_account(account, date(2025, 3, 10))

        stored = await reload(PlatformAccount, account.id)
        assert "Internal Error" in stored.last_error
        assert stored.last_error_at is not None
        assert await snapshot_count() == 0

    async def test_sync_all_isolates_failures_and_skips_rate_limited(self, sync_engine, make_account, platform_api):
        healthy = await make_account("twitter")
        failing = await make_account("mastodon")
        limited = await make_account(
            "twitter",
            status=AccountStatus.RATE_LIMITED.value,
            rate_limited_until=utcnow() + timedelta(minutes=10),
        )
        expired = await make_account("twitter", status=AccountStatus.EXPIRED.value)
        platform_api.on("GET", ME_URL, profile(10))
        platform_api.on(
            "GET", "https://mastodon.example/api/v1/accounts/verify_credentials",
            {"status": 503, "json": {"error": "down"}},
        )

        results = await sync_engine.sync_all_accounts(date(2025, 3, 10))

        assert results == {healthy.id: True, failing.id: False}
        assert limited.id not in results
        assert expired.id not in results

    async def test_malformed_profile_becomes_sync_error(self, sync_engine, make_account, platform_api):
        account = await make_account("twitter")
        platform_api.on("GET", ME_URL, {"json": {}})

        with pytest.raises(SyncError):
            await sync_engine.sync_account(account, date(2025, 3, 10))

        stored = await reload(PlatformAccount, account.id)
        assert stored.last_error.startswith("KeyError")
        assert await snapshot_count() == 0

    async def test_sync_all_survives_malformed_payload(self, sync_engine, make_account, platform_api):
        """
        Business Critical: a 2xx body missing expected fields fails only that account
        """
        broken = await make_account("twitter")
        healthy = await make_account("mastodon")
        platform_api.on("GET", ME_URL, {"json": {}})
        platform_api.on(
            "GET", "https://mastodon.example/api/v1/accounts/verify_credentials",
            {"json": {"id": "7", "username": "brand", "followers_count": 30}},
        )

        results = await sync_engine.sync_all_accounts(date(2025, 3, 10))

        assert results == {broken.id: False, healthy.id: True}
        assert await snapshot_count() == 1


class TestPostMetrics:
    async def test_metrics_roll_up_onto_post(self, sync_engine, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        post = await make_post([twitter])
        platform_api.on("POST", "https://api.twitter.com/2/tweets", {"json": {"data": {"id": "1811"}}})
        platform_api.on("GET", "https://api.twitter.com/2/tweets/1811", {"json": {"data": {"public_metrics": {
            "impression_count": 1000, "like_count": 40, "reply_count": 5, "retweet_count": 3, "quote_count": 2,
        }}}})
        await PublishingEngine(retry_policy=RetryPolicy()).publish_post(post.id)

        assert await sync_engine.sync_post_metrics() == 1

        stored = await reload(Post, post.id)
        assert stored.total_impressions == 1000
        assert stored.total_engagement == 50


class TestOptimalTimes:
    async def test_sparse_history_falls_back_to_defaults(self, sync_engine, make_account):
        account = await make_account("twitter")
        monday_9 = utcnow() - timedelta(days=utcnow().weekday() + 7)
        monday_9 = monday_9.replace(hour=9, minute=0, second=0, microsecond=0)
        await add_published_samples(account, monday_9, 3)

        slots = await sync_engine.calculate_optimal_times(account)

        assert len(slots) == 168
        bucket = next(s for s in slots if s.day_of_week == 1 and s.hour == 9)
        assert bucket.is_default
        assert bucket.sample_size == 3

    async def test_recalculation_replaces_slots(self, sync_engine, make_account):
        account = await make_account("twitter")
        monday_9 = utcnow() - timedelta(days=utcnow().weekday() + 7)
        monday_9 = monday_9.replace(hour=9, minute=0, second=0, microsecond=0)
        await add_published_samples(account, monday_9, 5, engagement_rate=4.5)

        await sync_engine.calculate_optimal_times(account)
        slots = await sync_engine.calculate_optimal_times(account)

        assert len(slots) == 168
        bucket = next(s for s in slots if s.day_of_week == 1 and s.hour == 9)
        assert not bucket.is_default
        assert bucket.engagement_score == 90.0

        best = await sync_engine.best_times([account.id], limit=1)
        assert (best[0].day_of_week, best[0].hour) == (1, 9)
