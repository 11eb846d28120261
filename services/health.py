"""
Account health scoring
"""

from datetime import datetime, timedelta
from typing import Optional

from models.database import AccountStatus, PlatformAccount

HEALTH_WINDOW = timedelta(hours=24)
EXPIRED_PENALTY = 50
STALE_SYNC_PENALTY = 10
RECENT_ERROR_PENALTY = 20
RATE_LIMITED_PENALTY = 30


def compute_health(
    token_expired: bool,
    last_synced_at: Optional[datetime],
    last_error_at: Optional[datetime],
    rate_limited: bool,
    now: datetime,
) -> int:
    """
    Score an account from 0 to 100.

    Starts at 100 and subtracts 50 for an expired token, 10 when there has
    been no successful sync in the last 24 hours, 20 for an error in the last
    24 hours and 30 while rate limited. Never below 0.
    """
    score = 100
    if token_expired:
        score -= EXPIRED_PENALTY
    if last_synced_at is None or now - last_synced_at > HEALTH_WINDOW:
        score -= STALE_SYNC_PENALTY
    if last_error_at is not None and now - last_error_at <= HEALTH_WINDOW:
        score -= RECENT_ERROR_PENALTY
    if rate_limited:
        score -= RATE_LIMITED_PENALTY
    return max(score, 0)


def is_rate_limited(account: PlatformAccount, now: datetime) -> bool:
    if account.status != AccountStatus.RATE_LIMITED.value:
        return False
    return account.rate_limited_until is None or account.rate_limited_until > now


RECONNECT_STATUSES = (AccountStatus.EXPIRED.value, AccountStatus.REVOKED.value)


def account_health(account: PlatformAccount, now: datetime) -> int:
    """0 once the account must be reconnected; otherwise scored from its token and sync history"""
    if account.status in RECONNECT_STATUSES:
        return 0
    return compute_health(
        token_expired=account.token_expires_at is not None and account.token_expires_at <= now,
        last_synced_at=account.last_synced_at,
        last_error_at=account.last_error_at,
        rate_limited=is_rate_limited(account, now),
        now=now,
    )


def effective_status(account: PlatformAccount, now: datetime) -> str:
    """Rate-limited accounts read as active once rate_limited_until has passed"""
    if account.status == AccountStatus.RATE_LIMITED.value and not is_rate_limited(account, now):
        return AccountStatus.ACTIVE.value
    return account.status
