"""Domain rules for shop subscriptions"""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from app.config import FREE_TRIAL_PLAN_CODE


class SubscriptionStatus(str, Enum):
    """Computed subscription status"""
    TRIAL = "trial"
    ACTIVE = "active"
    GRACE = "grace"
    EXPIRED = "expired"

    @property
    def is_valid(self) -> bool:
        return self is not SubscriptionStatus.EXPIRED


class EventType(str, Enum):
    """Audit event types written to subscription_events"""
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    RENEWED = "renewed"
    UPGRADED = "upgraded"
    DOWNGRADED = "downgraded"


class TriggerSource(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ADMIN = "admin"


class SubscriptionError(Exception):
    """Base class for subscription failures"""


class ShopNotFound(SubscriptionError):
    def __init__(self, shop_id: int):
        super().__init__(f"No subscription found for shop {shop_id}")
        self.shop_id = shop_id


class PlanNotFound(SubscriptionError):
    def __init__(self, plan_code: str):
        super().__init__(f"Plan {plan_code} not found or inactive")
        self.plan_code = plan_code


class PersistenceFailure(SubscriptionError):
    """A database error aborted the transaction; nothing was written"""


def grace_deadline(
    expires_at: datetime,
    grace_ends_at: Optional[datetime],
    grace_period_days: int
) -> datetime:
    """Stored grace end, or the one derived from the expiry"""
    if grace_ends_at is not None:
        return grace_ends_at
    return expires_at + timedelta(days=grace_period_days)


def compute_status(
    now: datetime,
    expires_at: datetime,
    grace_ends_at: Optional[datetime],
    plan_code: str,
    grace_period_days: int,
    free_trial_code: str = FREE_TRIAL_PLAN_CODE
) -> SubscriptionStatus:
    """
    Derive the status of a subscription at ``now``.

    Pure: the same inputs always give the same status, and for fixed
    dates the result only moves forward (trial/active, grace, expired)
    as ``now`` advances. Trials get no grace period.
    """
    is_trial = plan_code == free_trial_code

    if expires_at > now:
        return SubscriptionStatus.TRIAL if is_trial else SubscriptionStatus.ACTIVE

    if is_trial:
        return SubscriptionStatus.EXPIRED

    if now < grace_deadline(expires_at, grace_ends_at, grace_period_days):
        return SubscriptionStatus.GRACE
    return SubscriptionStatus.EXPIRED


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """Whole days left until expiry, rounded up; negative once past expiry"""
    seconds = (expires_at - now).total_seconds()
    return math.ceil(seconds / 86400)


def classify_renewal(old_price: float, new_price: float) -> EventType:
    if new_price > old_price:
        return EventType.UPGRADED
    if new_price < old_price:
        return EventType.DOWNGRADED
    return EventType.RENEWED
