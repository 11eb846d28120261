"""
Account health scoring
"""

from datetime import datetime, timedelta

from models.database import AccountStatus, PlatformAccount
from services.health import account_health, compute_health, effective_status, is_rate_limited

NOW = datetime(2025, 3, 10, 12, 0, 0)


def test_fresh_account_scores_full():
    assert compute_health(False, NOW, None, False, NOW) == 100


def test_penalties_accumulate():
    assert compute_health(True, NOW, None, False, NOW) == 50
    assert compute_health(False, NOW - timedelta(hours=25), None, False, NOW) == 90
    assert compute_health(False, NOW, NOW - timedelta(hours=1), False, NOW) == 80
    assert compute_health(False, NOW, None, True, NOW) == 70


def test_old_errors_do_not_count():
    assert compute_health(False, NOW, NOW - timedelta(days=2), False, NOW) == 100


def test_score_never_negative():
    assert compute_health(True, None, NOW, True, NOW) == 0


def test_rate_limit_window_passes():
    account = PlatformAccount(
        site_id="s", platform="twitter", external_account_id="1", access_token="t",
        status=AccountStatus.RATE_LIMITED.value,
        rate_limited_until=NOW + timedelta(minutes=5),
        last_synced_at=NOW,
    )

    assert is_rate_limited(account, NOW)
    assert account_health(account, NOW) == 70
    assert effective_status(account, NOW) == "rate_limited"

    later = NOW + timedelta(minutes=6)
    assert not is_rate_limited(account, later)
    assert effective_status(account, later) == "active"


def test_account_needing_reconnect_scores_zero():
    account = PlatformAccount(
        site_id="s", platform="twitter", external_account_id="1", access_token="t",
        status=AccountStatus.EXPIRED.value,
        last_synced_at=NOW,
        last_error_at=NOW,
    )

    assert account_health(account, NOW) == 0


def test_revoked_account_scores_zero():
    account = PlatformAccount(
        site_id="s", platform="twitter", external_account_id="1", access_token="t",
        status=AccountStatus.REVOKED.value,
        last_synced_at=NOW,
    )

    assert account_health(account, NOW) == 0


def test_lapsed_but_refreshable_token_is_penalised():
    account = PlatformAccount(
        site_id="s", platform="twitter", external_account_id="1", access_token="t",
        status=AccountStatus.ACTIVE.value,
        token_expires_at=NOW - timedelta(minutes=1),
        last_synced_at=NOW,
    )

    assert account_health(account, NOW) == 50
