"""
Post endpoints: drafts, scheduling and publish-now
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from models.database import Post, PostStatus
from schemas.requests import PostCreateRequest, PostUpdateRequest
from schemas.responses import AttemptResponse, PostResponse
from services.posts import post_service
from services.publishing import PublishReport, derive_post_status, publishing_engine
from utils.auth import CurrentUser, get_current_user
from utils.exceptions import (
    AccountNotFoundError,
    InvalidStateError,
    PostNotFoundError,
    create_http_exception,
    handle_platform_error,
)
from utils.task_queue import task_queue

router = APIRouter()


async def to_response(post: Post) -> PostResponse:
    """Attach attempts; status is derived from them once publishing has started"""
    attempts = await publishing_engine.list_attempts(post.id)
    post_status = post.status
    if attempts and post.status not in (PostStatus.DRAFT.value, PostStatus.SCHEDULED.value):
        post_status = derive_post_status(attempts).value
    return PostResponse(
        id=post.id,
        content=post.content,
        media=post.media or [],
        link_url=post.link_url,
        platform_content=post.platform_content or {},
        target_account_ids=post.target_account_ids or [],
        status=post_status,
        scheduled_at=post.scheduled_at,
        published_at=post.published_at,
        total_impressions=post.total_impressions,
        total_engagement=post.total_engagement,
        total_clicks=post.total_clicks,
        attempts=[AttemptResponse.model_validate(attempt) for attempt in attempts],
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(request: PostCreateRequest, current_user: CurrentUser = Depends(get_current_user)):
    """Create a draft, or a scheduled post when scheduled_at is given"""
    try:
        post = await post_service.create(
            current_user.site_id, current_user.user_id, request, tenant_id=current_user.tenant_id
        )
    except AccountNotFoundError as e:
        raise create_http_exception(status.HTTP_400_BAD_REQUEST, e.message, e.details)
    return await to_response(post)


@router.get("", response_model=List[PostResponse])
async def list_posts(
    post_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
):
    posts = await post_service.list(current_user.site_id, post_status, limit)
    return [await to_response(post) for post in posts]


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: UUID, current_user: CurrentUser = Depends(get_current_user)):
    try:
        post = await post_service.get(current_user.site_id, post_id)
    except PostNotFoundError as e:
        raise handle_platform_error(e, "post")
    return await to_response(post)


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: UUID,
    request: PostUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit or reschedule a post that has not started publishing"""
    try:
        post = await post_service.update(current_user.site_id, post_id, request)
    except PostNotFoundError as e:
        raise handle_platform_error(e, "post")
    except InvalidStateError as e:
        raise create_http_exception(status.HTTP_409_CONFLICT, e.message, e.details)
    except AccountNotFoundError as e:
        raise create_http_exception(status.HTTP_400_BAD_REQUEST, e.message, e.details)
    return await to_response(post)


@router.post("/{post_id}/publish", response_model=PublishReport)
async def publish_post(
    post_id: UUID,
    background: bool = Query(False, description="Hand the post to the worker and return immediately"),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Publish now. Safe to repeat: published targets are skipped and targets in
    flight elsewhere are left alone.
    """
    try:
        post = await post_service.get(current_user.site_id, post_id)
    except PostNotFoundError as e:
        raise handle_platform_error(e, "post")

    if post.status in (PostStatus.DRAFT.value, PostStatus.SCHEDULED.value):
        claimed = await publishing_engine.claim_post(post.id, (PostStatus.DRAFT, PostStatus.SCHEDULED))
        if not claimed:
            # The scheduler picked it up between the read and the claim
            return PublishReport(post_id=post.id, status=PostStatus.PUBLISHING.value)
    if background:
        await task_queue.enqueue_publish(post.id)
        return PublishReport(post_id=post.id, status=PostStatus.PUBLISHING.value)
    return await publishing_engine.publish_post(post.id)
