"""
Post editing: only drafts and scheduled posts change, and never under a claim
"""

from datetime import timedelta

import pytest

from conftest import SITE_ID, reload
from models.database import Post, PostStatus, utcnow
from schemas.requests import PostUpdateRequest
from services.posts import post_service
from services.publishing import publishing_engine
from utils.exceptions import InvalidStateError, PostNotFoundError


class TestPostUpdate:
    async def test_reschedule_draft(self, make_account, make_post):
        twitter = await make_account("twitter")
        post = await make_post([twitter])
        when = utcnow() + timedelta(hours=2)

        updated = await post_service.update(SITE_ID, post.id, PostUpdateRequest(content="New copy", scheduled_at=when))

        assert updated.status == PostStatus.SCHEDULED.value
        assert updated.content == "New copy"
        stored = await reload(Post, post.id)
        assert stored.scheduled_at == when

    async def test_other_site_cannot_edit(self, make_account, make_post):
        twitter = await make_account("twitter")
        post = await make_post([twitter])

        with pytest.raises(PostNotFoundError):
            await post_service.update("another-site", post.id, PostUpdateRequest(content="x"))

    async def test_unschedule_loses_to_scheduler_claim(self, make_account, make_post, monkeypatch):
        """
        Business Critical: an edit racing a scheduler claim must not reset a publishing post
        """
        twitter = await make_account("twitter")
        post = await make_post(
            [twitter], status=PostStatus.SCHEDULED.value, scheduled_at=utcnow() - timedelta(minutes=1)
        )
        check_targets = post_service._check_targets

        async def claimed_meanwhile(site_id, account_ids):
            await check_targets(site_id, account_ids)
            assert await publishing_engine.claim_post(post.id)

        monkeypatch.setattr(post_service, "_check_targets", claimed_meanwhile)

        with pytest.raises(InvalidStateError):
            await post_service.update(
                SITE_ID, post.id, PostUpdateRequest(unschedule=True, target_account_ids=[twitter.id])
            )

        stored = await reload(Post, post.id)
        assert stored.status == PostStatus.PUBLISHING.value
        assert stored.scheduled_at is not None
