"""
Publishing engine: fans a post out to its target accounts, one attempt per target
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import and_, or_, select, update

from models.database import (
    AttemptStatus,
    ErrorKind,
    PlatformAccount,
    Post,
    PostStatus,
    PublishAttempt,
    utcnow,
)
from schemas.social_media import MediaItem, PostPayload
from services.credentials import credential_manager
from services.health import is_rate_limited
from services.platforms.connection_manager import connection_manager
from services.platforms.registry import platform_registry
from utils.config import get_config
from utils.database import get_session
from utils.db_utils import insert_ignore
from utils.exceptions import (
    AccountNotFoundError,
    ConfigurationError,
    PermanentPublishError,
    PlatformAPIError,
    PostNotFoundError,
    RateLimitedError,
    RefreshFailedError,
    TokenRevokedError,
    TransientPublishError,
    UnsupportedPlatformError,
)
from utils.logging import get_logger
from utils.metrics_collector import metrics

logger = get_logger(__name__)

PERMANENT_ERRORS = (
    PermanentPublishError,
    TokenRevokedError,
    RefreshFailedError,
    AccountNotFoundError,
    ConfigurationError,
    UnsupportedPlatformError,
    # Malformed success bodies; the post may already be live
    KeyError,
    TypeError,
)
TRANSIENT_ERRORS = (TransientPublishError, RateLimitedError, httpx.TransportError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient publish failures"""

    max_attempts: int = 3
    base_seconds: int = 60
    factor: int = 2
    max_seconds: int = 3600

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        config = get_config()
        return cls(
            max_attempts=config.publish_max_attempts,
            base_seconds=config.publish_retry_base_seconds,
            max_seconds=config.publish_retry_max_seconds,
        )

    def delay(self, attempt_count: int) -> timedelta:
        """Wait before the next try, given how many tries have been made"""
        seconds = self.base_seconds * self.factor ** max(attempt_count - 1, 0)
        return timedelta(seconds=min(seconds, self.max_seconds))

    def can_retry(self, attempt_count: int) -> bool:
        return attempt_count < self.max_attempts


def classify_error(exc: Exception) -> ErrorKind:
    """Transient failures are retried; permanent ones end the target"""
    if isinstance(exc, PERMANENT_ERRORS):
        return ErrorKind.PERMANENT
    if isinstance(exc, TRANSIENT_ERRORS):
        return ErrorKind.TRANSIENT
    if isinstance(exc, PlatformAPIError):
        if exc.is_server_error or exc.status_code == 429:
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT
    # Unknown failures are retried, bounded by max_attempts
    return ErrorKind.TRANSIENT


def is_retry_pending(attempt: PublishAttempt) -> bool:
    return attempt.status == AttemptStatus.FAILED.value and attempt.next_retry_at is not None


def derive_post_status(attempts: Sequence[PublishAttempt]) -> PostStatus:
    """
    Post status from its targets.

    published when every target published; publishing while any target is
    pending, in flight or waiting for a retry; partially_failed when at
    least one published and the rest failed for good; failed otherwise.
    """
    if not attempts:
        return PostStatus.FAILED
    if any(
        a.status in (AttemptStatus.PENDING.value, AttemptStatus.PUBLISHING.value) or is_retry_pending(a)
        for a in attempts
    ):
        return PostStatus.PUBLISHING
    published = sum(1 for a in attempts if a.status == AttemptStatus.PUBLISHED.value)
    if published == len(attempts):
        return PostStatus.PUBLISHED
    if published:
        return PostStatus.PARTIALLY_FAILED
    return PostStatus.FAILED


def build_payload(post: Post, account: PlatformAccount) -> PostPayload:
    """Post content with platform overrides, then account overrides, applied"""
    fields: Dict[str, Any] = {
        "content": post.content or "",
        "media": post.media or [],
        "link_url": post.link_url,
        "title": None,
    }
    overrides = post.platform_content or {}
    for key in (account.platform, str(account.id)):
        override = overrides.get(key)
        if isinstance(override, dict):
            fields.update({k: v for k, v in override.items() if k in fields})
    return PostPayload(
        content=fields["content"] or "",
        media=[MediaItem(**m) if isinstance(m, dict) else m for m in fields["media"] or []],
        link_url=fields["link_url"],
        title=fields["title"],
    )


class TargetOutcome(BaseModel):
    account_id: UUID
    platform: str
    status: str
    claimed: bool = True
    platform_content_id: Optional[str] = None
    platform_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    next_retry_at: Optional[datetime] = None


class PublishReport(BaseModel):
    post_id: UUID
    status: str
    targets: List[TargetOutcome] = Field(default_factory=list)


class PublishingEngine:
    """Drives each target through pending -> publishing -> published | failed"""

    def __init__(self, retry_policy: Optional[RetryPolicy] = None, concurrency: Optional[int] = None):
        self._retry_policy = retry_policy
        self._concurrency = concurrency

    @property
    def retry_policy(self) -> RetryPolicy:
        if self._retry_policy is None:
            self._retry_policy = RetryPolicy.from_config()
        return self._retry_policy

    def _semaphore_for_post(self) -> asyncio.Semaphore:
        return asyncio.Semaphore(self._concurrency or get_config().publish_concurrency)

    async def publish_post(self, post_id: UUID, now: Optional[datetime] = None) -> PublishReport:
        """Publish every target of a post; already-published targets are left alone"""
        post = await self._load_post(post_id)
        target_ids = [UUID(str(value)) for value in post.target_account_ids or []]
        accounts = await connection_manager.get_accounts(target_ids, site_id=post.site_id)
        missing = set(target_ids) - {account.id for account in accounts}
        for account_id in missing:
            logger.warning(f"Post {post.id} targets unknown account {account_id}; skipping it")

        for account in accounts:
            await self._ensure_attempt(post.id, account)

        semaphore = self._semaphore_for_post()

        async def run(account: PlatformAccount) -> TargetOutcome:
            async with semaphore:
                return await self.publish_target(post, account, now=now)

        results = await asyncio.gather(*(run(account) for account in accounts), return_exceptions=True)
        outcomes: List[TargetOutcome] = []
        for account, result in zip(accounts, results):
            if isinstance(result, BaseException):
                # Bookkeeping failed, not the platform call; the stale sweep reclaims the attempt
                logger.error(f"Publishing post {post.id} to account {account.id} failed: {result}")
                outcomes.append(TargetOutcome(
                    account_id=account.id, platform=account.platform, status=AttemptStatus.PUBLISHING.value,
                    error=str(result),
                ))
            else:
                outcomes.append(result)

        status = await self.refresh_post_status(post.id)
        logger.info(f"Post {post.id} is {status.value} after publishing to {len(accounts)} targets")
        return PublishReport(post_id=post.id, status=status.value, targets=outcomes)

    async def publish_target(
        self, post: Post, account: PlatformAccount, now: Optional[datetime] = None
    ) -> TargetOutcome:
        """
        Publish one post to one account. Idempotent: a published target returns
        its existing content id, and a target another worker has claimed is
        left to that worker.
        """
        now = now or utcnow()
        attempt = await self._ensure_attempt(post.id, account)

        if attempt.status == AttemptStatus.PUBLISHED.value:
            metrics.track_publish(account.platform, "skipped")
            return self._outcome(attempt, claimed=False)

        if not await self._claim(attempt.id, now):
            return self._outcome(await self._load_attempt(attempt.id), claimed=False)

        attempt_count = attempt.attempt_count + 1
        try:
            adapter = platform_registry.get_adapter(account.platform)
            if is_rate_limited(account, now):
                raise RateLimitedError(
                    f"{account.platform} account is rate limited",
                    retry_after=(account.rate_limited_until - now).total_seconds() if account.rate_limited_until else None,
                )
            content = adapter.prepare_content(build_payload(post, account))
            result = await adapter.publish(credential_manager.session_for(account), account, content)
        except Exception as e:
            return await self._record_failure(attempt.id, account, attempt_count, e, now)

        published_at = utcnow()
        async with get_session() as db:
            await db.execute(
                update(PublishAttempt)
                .where(PublishAttempt.id == attempt.id)
                .values(
                    status=AttemptStatus.PUBLISHED.value,
                    platform_content_id=result.platform_content_id,
                    platform_url=result.platform_url,
                    published_at=published_at,
                    last_error=None,
                    error_kind=None,
                    next_retry_at=None,
                    updated_at=published_at,
                )
            )
            await db.commit()

        metrics.track_publish(account.platform, "published")
        logger.info(f"Published post {post.id} to {account.platform} account {account.id}: {result.platform_content_id}")
        return TargetOutcome(
            account_id=account.id,
            platform=account.platform,
            status=AttemptStatus.PUBLISHED.value,
            platform_content_id=result.platform_content_id,
            platform_url=result.platform_url,
        )

    async def _record_failure(
        self, attempt_id: UUID, account: PlatformAccount, attempt_count: int, exc: Exception, now: datetime
    ) -> TargetOutcome:
        kind = classify_error(exc)
        message = str(exc) or type(exc).__name__
        next_retry_at = None
        if kind == ErrorKind.TRANSIENT and self.retry_policy.can_retry(attempt_count):
            delay = self.retry_policy.delay(attempt_count)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = max(delay, timedelta(seconds=retry_after))
            next_retry_at = now + delay

        async with get_session() as db:
            await db.execute(
                update(PublishAttempt)
                .where(PublishAttempt.id == attempt_id)
                .values(
                    status=AttemptStatus.FAILED.value,
                    last_error=message,
                    error_kind=kind.value,
                    next_retry_at=next_retry_at,
                    updated_at=utcnow(),
                )
            )
            await db.commit()

        outcome = "retry_scheduled" if next_retry_at else "failed"
        metrics.track_publish(account.platform, outcome)
        if next_retry_at:
            logger.warning(
                f"Publishing to {account.platform} account {account.id} failed ({message}); "
                f"retry {attempt_count + 1} at {next_retry_at.isoformat()}"
            )
        else:
            logger.error(f"Publishing to {account.platform} account {account.id} failed for good: {message}")
        return TargetOutcome(
            account_id=account.id,
            platform=account.platform,
            status=AttemptStatus.FAILED.value,
            error=message,
            error_kind=kind.value,
            next_retry_at=next_retry_at,
        )

    async def retry_due_attempts(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Re-drive posts with retries due; stuck attempts are reclaimed first"""
        now = now or utcnow()
        await self.reclaim_stale_attempts(now)
        limit = limit or get_config().scheduler_batch_size

        async with get_session() as db:
            result = await db.execute(
                select(PublishAttempt.post_id)
                .where(
                    PublishAttempt.status == AttemptStatus.FAILED.value,
                    PublishAttempt.next_retry_at.is_not(None),
                    PublishAttempt.next_retry_at <= now,
                )
                .distinct()
                .limit(limit)
            )
            post_ids = list(result.scalars().all())

        for post_id in post_ids:
            await self.publish_post(post_id, now=now)
        if post_ids:
            logger.info(f"Re-drove retries for {len(post_ids)} posts")
        return len(post_ids)

    async def reclaim_stale_attempts(self, now: Optional[datetime] = None) -> int:
        """Attempts stuck in publishing past the stale timeout become retryable (or fail when exhausted)"""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=get_config().publish_stale_after_seconds)
        stale = and_(
            PublishAttempt.status == AttemptStatus.PUBLISHING.value,
            PublishAttempt.started_at <= cutoff,
        )
        message = "Publishing attempt did not finish in time"
        async with get_session() as db:
            retryable = await db.execute(
                update(PublishAttempt)
                .where(stale, PublishAttempt.attempt_count < PublishAttempt.max_attempts)
                .values(
                    status=AttemptStatus.FAILED.value,
                    last_error=message,
                    error_kind=ErrorKind.TRANSIENT.value,
                    next_retry_at=now,
                    updated_at=now,
                )
            )
            exhausted = await db.execute(
                update(PublishAttempt)
                .where(stale)
                .values(
                    status=AttemptStatus.FAILED.value,
                    last_error=message,
                    error_kind=ErrorKind.TRANSIENT.value,
                    next_retry_at=None,
                    updated_at=now,
                )
            )
            await db.commit()
        reclaimed = (retryable.rowcount or 0) + (exhausted.rowcount or 0)
        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} stale publishing attempts")
        return reclaimed

    async def refresh_post_status(self, post_id: UUID) -> PostStatus:
        """Store the status derived from the post's attempts"""
        attempts = await self.list_attempts(post_id)
        status = derive_post_status(attempts)
        published = [a.published_at for a in attempts if a.published_at is not None]
        now = utcnow()
        async with get_session() as db:
            post = await db.get(Post, post_id)
            post.status = status.value
            if published and post.published_at is None:
                post.published_at = min(published)
            post.updated_at = now
            db.add(post)
            await db.commit()
        return status

    async def list_attempts(self, post_id: UUID) -> List[PublishAttempt]:
        async with get_session() as db:
            result = await db.execute(
                select(PublishAttempt).where(PublishAttempt.post_id == post_id).order_by(PublishAttempt.created_at)
            )
            return list(result.scalars().all())

    # Persistence

    async def _load_post(self, post_id: UUID) -> Post:
        async with get_session() as db:
            post = await db.get(Post, post_id)
        if post is None:
            raise PostNotFoundError(f"Post {post_id} not found", {"post_id": str(post_id)})
        return post

    async def _load_attempt(self, attempt_id: UUID) -> PublishAttempt:
        async with get_session() as db:
            return await db.get(PublishAttempt, attempt_id)

    async def _ensure_attempt(self, post_id: UUID, account: PlatformAccount) -> PublishAttempt:
        now = utcnow()
        async with get_session() as db:
            await insert_ignore(
                db,
                PublishAttempt,
                {
                    "id": uuid4(),
                    "post_id": post_id,
                    "account_id": account.id,
                    "platform": account.platform,
                    "attempt_count": 0,
                    "max_attempts": self.retry_policy.max_attempts,
                    "status": AttemptStatus.PENDING.value,
                    "created_at": now,
                    "updated_at": now,
                },
                ("post_id", "account_id"),
            )
            await db.commit()
            result = await db.execute(
                select(PublishAttempt).where(
                    PublishAttempt.post_id == post_id,
                    PublishAttempt.account_id == account.id,
                )
            )
            return result.scalar_one()

    async def _claim(self, attempt_id: UUID, now: datetime) -> bool:
        """Compare-and-set into publishing; only one worker wins"""
        claimable = or_(
            PublishAttempt.status == AttemptStatus.PENDING.value,
            and_(
                PublishAttempt.status == AttemptStatus.FAILED.value,
                PublishAttempt.next_retry_at.is_not(None),
                PublishAttempt.next_retry_at <= now,
            ),
        )
        async with get_session() as db:
            result = await db.execute(
                update(PublishAttempt)
                .where(PublishAttempt.id == attempt_id, claimable)
                .values(
                    status=AttemptStatus.PUBLISHING.value,
                    attempt_count=PublishAttempt.attempt_count + 1,
                    started_at=now,
                    next_retry_at=None,
                    updated_at=now,
                )
            )
            await db.commit()
        return result.rowcount == 1

    async def claim_post(
        self,
        post_id: UUID,
        from_statuses: Sequence[PostStatus] = (PostStatus.SCHEDULED,),
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a post into publishing if it is still in one of from_statuses"""
        now = now or utcnow()
        async with get_session() as db:
            result = await db.execute(
                update(Post)
                .where(Post.id == post_id, Post.status.in_([s.value for s in from_statuses]))
                .values(status=PostStatus.PUBLISHING.value, updated_at=now)
            )
            await db.commit()
        return result.rowcount == 1

    @staticmethod
    def _outcome(attempt: PublishAttempt, claimed: bool) -> TargetOutcome:
        return TargetOutcome(
            account_id=attempt.account_id,
            platform=attempt.platform,
            status=attempt.status,
            claimed=claimed,
            platform_content_id=attempt.platform_content_id,
            platform_url=attempt.platform_url,
            error=attempt.last_error,
            error_kind=attempt.error_kind,
            next_retry_at=attempt.next_retry_at,
        )


# Global engine
publishing_engine = PublishingEngine()
