"""SQLAlchemy ORM models for the subscription tables"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Numeric,
    JSON,
    ForeignKey,
    Text,
)
from sqlalchemy.sql import func

from app.db.base import Base


class SubscriptionPlan(Base):
    """
    Static plan catalogue. Looked up separately from the subscription
    row to enrich resolved views.
    """
    __tablename__ = "subscription_plans"

    plan_code = Column(String, primary_key=True)
    plan_name = Column(String, nullable=False)
    price_inr = Column(Numeric(10, 2), nullable=False, default=0)
    duration_days = Column(Integer, nullable=False)
    # Feature flags / limits, e.g. {"max_stations": 10, "reports": true}
    features = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(code='{self.plan_code}', days={self.duration_days})>"


class Subscription(Base):
    """
    One live row per shop. Mutated only by SubscriptionResolver while the
    row is locked. computed_status caches a pure function of the dates.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, nullable=False, unique=True, index=True)
    current_plan_code = Column(
        String,
        ForeignKey("subscription_plans.plan_code"),
        nullable=False
    )

    started_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    grace_ends_at = Column(DateTime(timezone=True), nullable=True)
    next_billing_date = Column(DateTime(timezone=True), nullable=True)

    computed_status = Column(String, nullable=False, default="trial")
    last_status_check_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    # Soft delete, cascaded from shop deletion
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Subscription(shop_id={self.shop_id}, plan='{self.current_plan_code}', "
            f"status='{self.computed_status}')>"
        )


class SubscriptionEvent(Base):
    """Append-only audit trail of status transitions and renewals"""
    __tablename__ = "subscription_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String, nullable=False)

    old_plan_code = Column(String, nullable=True)
    new_plan_code = Column(String, nullable=True)
    old_status = Column(String, nullable=True)
    new_status = Column(String, nullable=True)
    old_expires_at = Column(DateTime(timezone=True), nullable=True)
    new_expires_at = Column(DateTime(timezone=True), nullable=True)

    triggered_by = Column(String, nullable=False, default="system")
    triggered_by_user_id = Column(Integer, nullable=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class SubscriptionConfig(Base):
    """Key/value overrides for grace period and recheck interval"""
    __tablename__ = "subscription_config"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)


class Payment(Base):
    """Payment recorded alongside a renewal"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String, nullable=False, default="MANUAL")
    transaction_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="COMPLETED")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
