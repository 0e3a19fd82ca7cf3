from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.features.subscriptions.domain import (
    EventType,
    SubscriptionStatus,
    classify_renewal,
    compute_status,
    days_remaining,
    grace_deadline,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "plan_code, expires_in, expected",
    [
        ("FREE_TRIAL", timedelta(days=3), SubscriptionStatus.TRIAL),
        ("BASIC", timedelta(days=3), SubscriptionStatus.ACTIVE),
        ("FREE_TRIAL", timedelta(days=-1), SubscriptionStatus.EXPIRED),
        ("BASIC", timedelta(days=-1), SubscriptionStatus.GRACE),
        ("BASIC", timedelta(days=-3), SubscriptionStatus.EXPIRED),
        ("BASIC", timedelta(seconds=0), SubscriptionStatus.GRACE),
    ],
)
def test_compute_status(plan_code, expires_in, expected):
    assert compute_status(NOW, NOW + expires_in, None, plan_code, 3) is expected


def test_stored_grace_end_wins_over_derived_one():
    expires_at = NOW - timedelta(days=5)
    grace_ends_at = NOW + timedelta(hours=1)

    assert compute_status(NOW, expires_at, grace_ends_at, "BASIC", 3) is SubscriptionStatus.GRACE
    assert grace_deadline(expires_at, None, 3) == expires_at + timedelta(days=3)


def test_compute_status_only_moves_forward_in_time():
    expires_at = NOW
    order = [SubscriptionStatus.ACTIVE, SubscriptionStatus.GRACE, SubscriptionStatus.EXPIRED]
    seen = [
        compute_status(NOW + timedelta(hours=h), expires_at, None, "PRO", 3)
        for h in range(-48, 120, 6)
    ]

    ranks = [order.index(status) for status in seen]
    assert ranks == sorted(ranks)
    assert seen[0] is SubscriptionStatus.ACTIVE and seen[-1] is SubscriptionStatus.EXPIRED


def test_only_expired_is_invalid():
    assert [s.value for s in SubscriptionStatus if not s.is_valid] == ["expired"]


def test_days_remaining_rounds_up():
    assert days_remaining(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert days_remaining(NOW + timedelta(days=2), NOW) == 2
    assert days_remaining(NOW, NOW) == 0
    assert days_remaining(NOW - timedelta(hours=30), NOW) == -1


def test_classify_renewal_by_price():
    assert classify_renewal(Decimal(999), Decimal(1999)) is EventType.UPGRADED
    assert classify_renewal(Decimal(1999), Decimal(999)) is EventType.DOWNGRADED
    assert classify_renewal(Decimal(999), Decimal(999)) is EventType.RENEWED
