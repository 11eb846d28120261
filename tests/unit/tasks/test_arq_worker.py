"""
Worker wiring: cron schedules and job entry points
"""

from datetime import timedelta

from conftest import reload
from models.database import Post, PostStatus, utcnow
from tasks import arq_worker


class TestCronFields:
    def test_every_interval(self):
        assert arq_worker._every(15, 60) == {0, 15, 30, 45}
        assert arq_worker._every(1, 4) == {0, 1, 2, 3}

    def test_interval_beyond_range_fires_once(self):
        assert arq_worker._every(90, 60) == {0}

    def test_worker_registers_jobs(self):
        names = {function.__name__ for function in arq_worker.WorkerSettings.functions}

        assert names == {"publish_post_task", "sync_account_task"}
        assert len(arq_worker.WorkerSettings.cron_jobs) == 2


class TestJobs:
    async def test_publish_post_task(self, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        post = await make_post([twitter], status=PostStatus.PUBLISHING.value)
        platform_api.on("POST", "https://api.twitter.com/2/tweets", {"json": {"data": {"id": "1811"}}})

        result = await arq_worker.publish_post_task({}, str(post.id))

        assert result["status"] == PostStatus.PUBLISHED.value
        assert (await reload(Post, post.id)).status == PostStatus.PUBLISHED.value

    async def test_scheduler_tick_job(self, make_account, make_post, platform_api):
        twitter = await make_account("twitter")
        await make_post([twitter], status=PostStatus.SCHEDULED.value, scheduled_at=utcnow() - timedelta(minutes=5))
        platform_api.on("POST", "https://api.twitter.com/2/tweets", {"json": {"data": {"id": "1811"}}})

        result = await arq_worker.scheduler_tick_job({})

        assert result["due"] == 1
        assert len(result["claimed"]) == 1
