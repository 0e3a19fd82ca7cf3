"""Subscriptions feature module"""

from app.features.subscriptions.domain import (
    EventType,
    PersistenceFailure,
    PlanNotFound,
    ShopNotFound,
    SubscriptionError,
    SubscriptionStatus,
    TriggerSource,
    compute_status,
    days_remaining,
)
from app.features.subscriptions.schemas import (
    AccessDecision,
    PaymentDetails,
    PlanDetails,
    RenewRequest,
    SubscriptionView,
)

__all__ = [
    "AccessDecision",
    "EventType",
    "PaymentDetails",
    "PersistenceFailure",
    "PlanDetails",
    "PlanNotFound",
    "RenewRequest",
    "ShopNotFound",
    "SubscriptionError",
    "SubscriptionStatus",
    "SubscriptionView",
    "TriggerSource",
    "compute_status",
    "days_remaining",
]
