"""
Enqueue background jobs on the arq worker
"""

from typing import Any, Optional
from uuid import UUID

from arq import create_pool
from arq.connections import RedisSettings

from utils.config import get_config
from utils.structured_logging import get_structured_logger

logger = get_structured_logger(__name__)


class TaskQueue:
    """Producer side of tasks/arq_worker.py; job names match WorkerSettings.functions"""

    def __init__(self):
        self._pool: Optional[Any] = None

    async def get_pool(self) -> Any:
        if not self._pool:
            self._pool = await create_pool(RedisSettings.from_dsn(get_config().redis_url))
        return self._pool

    async def enqueue_publish(self, post_id: UUID) -> str:
        """
        Publish a claimed post in the worker

        Args:
            post_id: Post already moved to publishing by the caller

        Returns:
            Job ID for tracking
        """
        pool = await self.get_pool()
        # A fixed job id makes a repeated enqueue of the same post a no-op
        job = await pool.enqueue_job("publish_post_task", str(post_id), _job_id=f"publish:{post_id}")
        if job is None:
            logger.info("Publish already queued", post_id=str(post_id))
            return f"publish:{post_id}"
        logger.info("Enqueued publish task", job_id=job.job_id, post_id=str(post_id))
        return job.job_id

    async def enqueue_account_sync(self, account_id: UUID) -> str:
        pool = await self.get_pool()
        job = await pool.enqueue_job("sync_account_task", str(account_id))
        logger.info("Enqueued account sync", job_id=job.job_id, account_id=str(account_id))
        return job.job_id

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None


# Global task queue
task_queue = TaskQueue()
