"""SQLAlchemy ORM models"""

from app.db.models.station import Station
from app.db.models.paid_event import PaidEvent
from app.db.models.subscription import (
    Subscription,
    SubscriptionPlan,
    SubscriptionEvent,
    SubscriptionConfig,
    Payment,
)

__all__ = [
    "Station",
    "PaidEvent",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionEvent",
    "SubscriptionConfig",
    "Payment",
]
