"""
Scheduler ticks: due posts are claimed exactly once
"""

import asyncio
from datetime import timedelta

from conftest import reload
from models.database import Post, PostStatus, utcnow
from services.scheduler import scheduler

TWEETS_URL = "https://api.twitter.com/2/tweets"
TWEET_OK = {"json": {"data": {"id": "1811"}}}


class TestSchedulerTick:
    async def test_due_post_is_published(self, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        post = await make_post(
            [twitter], status=PostStatus.SCHEDULED.value, scheduled_at=utcnow() - timedelta(minutes=1)
        )
        platform_api.on("POST", TWEETS_URL, TWEET_OK)

        report = await scheduler.tick()

        assert report.due == 1
        assert report.claimed == [post.id]
        assert (await reload(Post, post.id)).status == PostStatus.PUBLISHED.value

    async def test_future_and_draft_posts_are_left_alone(self, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        future = await make_post(
            [twitter], status=PostStatus.SCHEDULED.value, scheduled_at=utcnow() + timedelta(hours=1)
        )
        draft = await make_post([twitter])

        report = await scheduler.tick()

        assert report.due == 0
        assert platform_api.requests == []
        assert (await reload(Post, future.id)).status == PostStatus.SCHEDULED.value
        assert (await reload(Post, draft.id)).status == PostStatus.DRAFT.value

    async def test_racing_ticks_publish_once(self, make_account, make_post, platform_api):
        """
        Business Critical: overlapping workers must never double-post
        """
        twitter = await make_account("twitter")
        post = await make_post(
            [twitter], status=PostStatus.SCHEDULED.value, scheduled_at=utcnow() - timedelta(minutes=1)
        )
        platform_api.on("POST", TWEETS_URL, TWEET_OK)

        reports = await asyncio.gather(scheduler.tick(), scheduler.tick(), scheduler.tick())

        assert sum(len(report.claimed) for report in reports) == 1
        assert len(platform_api.calls("POST", TWEETS_URL)) == 1
        assert (await reload(Post, post.id)).status == PostStatus.PUBLISHED.value

    async def test_failed_target_does_not_block_other_posts(self, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        linkedin = await make_account("linkedin")
        due = utcnow() - timedelta(minutes=1)
        bad = await make_post([linkedin], content="z" * 3500, status=PostStatus.SCHEDULED.value, scheduled_at=due)
        good = await make_post([twitter], status=PostStatus.SCHEDULED.value, scheduled_at=due)
        platform_api.on("POST", TWEETS_URL, TWEET_OK)

        report = await scheduler.tick()

        assert set(report.claimed) == {bad.id, good.id}
        assert (await reload(Post, bad.id)).status == PostStatus.FAILED.value
        assert (await reload(Post, good.id)).status == PostStatus.PUBLISHED.value
