"""
Connection management service to handle database operations for platform accounts
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, select

from models.database import (
    AccountStatus,
    DailyAnalyticsSnapshot,
    OptimalTimeSlot,
    PlatformAccount,
    PostAnalytics,
    PublishAttempt,
    utcnow,
)
from schemas.social_media import ProfileData, TokenSet
from services.health import compute_health
from utils.database import get_session
from utils.db_utils import upsert
from utils.exceptions import AccountNotFoundError
from utils.logging import get_logger

logger = get_logger(__name__)

ACCOUNT_KEY = ("site_id", "platform", "external_account_id")


class ConnectionManager:
    """Manages connected platform accounts in the database"""

    async def store_account(
        self,
        site_id: str,
        platform: str,
        tokens: TokenSet,
        profile: ProfileData,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        settings: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> PlatformAccount:
        """
        Insert or update the account keyed by (site, platform, external id).

        A reconnect replaces tokens and profile data, returns the account to
        active and clears any recorded error.
        """
        now = now or utcnow()
        merged_settings = {**(settings or {}), **profile.settings}
        values = {
            "id": uuid4(),
            "site_id": site_id,
            "tenant_id": tenant_id,
            "created_by": user_id,
            "platform": platform,
            "external_account_id": profile.external_account_id,
            "handle": profile.handle,
            "display_name": profile.display_name,
            "avatar_url": profile.avatar_url,
            "account_url": profile.account_url,
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "token_expires_at": tokens.expiry(now),
            "scopes": tokens.scopes,
            "followers_count": profile.followers_count,
            "following_count": profile.following_count,
            "posts_count": profile.posts_count,
            "status": AccountStatus.ACTIVE.value,
            "health_score": compute_health(False, now, None, False, now),
            "last_error": None,
            "last_error_at": None,
            "rate_limited_until": None,
            "last_synced_at": now,
            "settings": merged_settings,
            "created_at": now,
            "updated_at": now,
        }

        async with get_session() as db:
            await upsert(db, PlatformAccount, values, ACCOUNT_KEY, immutable_fields=("id", "created_at", "created_by"))
            await db.commit()
            result = await db.execute(
                select(PlatformAccount).where(
                    PlatformAccount.site_id == site_id,
                    PlatformAccount.platform == platform,
                    PlatformAccount.external_account_id == profile.external_account_id,
                )
            )
            account = result.scalar_one()

        logger.info(f"Stored {platform} account {account.id} for site {site_id}")
        return account

    async def get_account(self, account_id: UUID, site_id: Optional[str] = None) -> PlatformAccount:
        """Load an account; scoped to a site when one is given"""
        async with get_session() as db:
            stmt = select(PlatformAccount).where(PlatformAccount.id == account_id)
            if site_id is not None:
                stmt = stmt.where(PlatformAccount.site_id == site_id)
            result = await db.execute(stmt)
            account = result.scalar_one_or_none()

        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found", {"account_id": str(account_id)})
        return account

    async def get_accounts(self, account_ids: List[UUID], site_id: Optional[str] = None) -> List[PlatformAccount]:
        if not account_ids:
            return []
        async with get_session() as db:
            stmt = select(PlatformAccount).where(PlatformAccount.id.in_(account_ids))
            if site_id is not None:
                stmt = stmt.where(PlatformAccount.site_id == site_id)
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_accounts(self, site_id: str, platform: Optional[str] = None) -> List[PlatformAccount]:
        async with get_session() as db:
            stmt = select(PlatformAccount).where(PlatformAccount.site_id == site_id)
            if platform:
                stmt = stmt.where(PlatformAccount.platform == platform)
            result = await db.execute(stmt.order_by(PlatformAccount.created_at))
            return list(result.scalars().all())

    async def list_syncable_accounts(self) -> List[PlatformAccount]:
        """Accounts whose tokens are still usable (active or rate limited)"""
        async with get_session() as db:
            result = await db.execute(
                select(PlatformAccount).where(
                    PlatformAccount.status.in_([AccountStatus.ACTIVE.value, AccountStatus.RATE_LIMITED.value])
                )
            )
            return list(result.scalars().all())

    async def delete_account(self, account_id: UUID) -> bool:
        """Hard-delete an account together with its attempts and analytics"""
        async with get_session() as db:
            for model in (PublishAttempt, DailyAnalyticsSnapshot, PostAnalytics, OptimalTimeSlot):
                await db.execute(delete(model).where(model.account_id == account_id))
            result = await db.execute(delete(PlatformAccount).where(PlatformAccount.id == account_id))
            await db.commit()

        return result.rowcount > 0


# Global connection manager
connection_manager = ConnectionManager()
