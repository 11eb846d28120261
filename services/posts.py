"""
Post storage: creation, editing and site-scoped lookup
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update

from models.database import Post, PostStatus, utcnow
from schemas.requests import PostCreateRequest, PostUpdateRequest
from services.platforms.connection_manager import connection_manager
from utils.database import get_session
from utils.exceptions import AccountNotFoundError, InvalidStateError, PostNotFoundError
from utils.logging import get_logger

logger = get_logger(__name__)

EDITABLE_STATUSES = (PostStatus.DRAFT.value, PostStatus.SCHEDULED.value)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC, as stored; naive input is taken to be UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PostService:
    """CRUD for posts; publishing itself lives in the publishing engine"""

    async def _check_targets(self, site_id: str, account_ids: List[UUID]) -> None:
        accounts = await connection_manager.get_accounts(account_ids, site_id=site_id)
        missing = set(account_ids) - {account.id for account in accounts}
        if missing:
            raise AccountNotFoundError(
                "Target accounts not found for this site",
                {"account_ids": sorted(str(account_id) for account_id in missing)},
            )

    async def create(
        self, site_id: str, user_id: str, request: PostCreateRequest, tenant_id: Optional[str] = None
    ) -> Post:
        await self._check_targets(site_id, request.target_account_ids)
        scheduled_at = to_utc(request.scheduled_at)
        post = Post(
            site_id=site_id,
            tenant_id=tenant_id,
            created_by=user_id,
            content=request.content,
            media=[item.model_dump(exclude_none=True) for item in request.media],
            platform_content=request.platform_content,
            link_url=request.link_url,
            target_account_ids=[str(account_id) for account_id in request.target_account_ids],
            status=PostStatus.SCHEDULED.value if scheduled_at else PostStatus.DRAFT.value,
            scheduled_at=scheduled_at,
        )
        async with get_session() as db:
            db.add(post)
            await db.commit()
        logger.info(f"Created {post.status} post {post.id} for site {site_id}")
        return post

    async def update(self, site_id: str, post_id: UUID, request: PostUpdateRequest) -> Post:
        if request.target_account_ids is not None:
            await self._check_targets(site_id, request.target_account_ids)

        changes = {"updated_at": utcnow()}
        if request.content is not None:
            changes["content"] = request.content
        if request.media is not None:
            changes["media"] = [item.model_dump(exclude_none=True) for item in request.media]
        if request.link_url is not None:
            changes["link_url"] = request.link_url or None
        if request.platform_content is not None:
            changes["platform_content"] = request.platform_content
        if request.target_account_ids is not None:
            changes["target_account_ids"] = [str(account_id) for account_id in request.target_account_ids]
        if request.unschedule:
            changes["scheduled_at"] = None
            changes["status"] = PostStatus.DRAFT.value
        elif request.scheduled_at is not None:
            changes["scheduled_at"] = to_utc(request.scheduled_at)
            changes["status"] = PostStatus.SCHEDULED.value

        async with get_session() as db:
            # Conditional on status so an edit never lands on a post a scheduler has claimed
            result = await db.execute(
                update(Post)
                .where(Post.id == post_id, Post.site_id == site_id, Post.status.in_(EDITABLE_STATUSES))
                .values(**changes)
            )
            await db.commit()
            post = await self._get(db, site_id, post_id)
            if result.rowcount != 1:
                raise InvalidStateError(
                    f"Post is {post.status} and can no longer be edited",
                    {"post_id": str(post_id), "status": post.status},
                )
            await db.refresh(post)
            return post

    async def get(self, site_id: str, post_id: UUID) -> Post:
        async with get_session() as db:
            return await self._get(db, site_id, post_id)

    async def list(self, site_id: str, status: Optional[str] = None, limit: int = 50) -> List[Post]:
        async with get_session() as db:
            stmt = select(Post).where(Post.site_id == site_id)
            if status:
                stmt = stmt.where(Post.status == status)
            result = await db.execute(stmt.order_by(Post.created_at.desc()).limit(limit))
            return list(result.scalars().all())

    async def _get(self, db, site_id: str, post_id: UUID) -> Post:
        result = await db.execute(select(Post).where(Post.id == post_id, Post.site_id == site_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise PostNotFoundError(f"Post {post_id} not found", {"post_id": str(post_id)})
        return post


# Global post service
post_service = PostService()
