"""Request and response schemas for the subscription API"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.features.subscriptions.domain import SubscriptionStatus


class PlanDetails(BaseModel):
    """Static attributes of a plan"""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    plan_code: str = Field(alias="planCode")
    plan_name: str = Field(alias="planName")
    price_inr: float = Field(alias="priceInr")
    duration_days: int = Field(alias="durationDays")
    features: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(default=True, alias="isActive")
    display_order: int = Field(default=0, alias="displayOrder")


class SubscriptionView(BaseModel):
    """Resolved subscription of a shop, enriched with its plan"""
    model_config = ConfigDict(populate_by_name=True)

    shop_id: int = Field(alias="shopId")
    plan_code: str = Field(alias="planCode")
    computed_status: SubscriptionStatus = Field(alias="computedStatus")
    is_valid: bool = Field(alias="isValid")
    days_remaining: int = Field(alias="daysRemaining")
    started_at: datetime = Field(alias="startedAt")
    expires_at: datetime = Field(alias="expiresAt")
    grace_ends_at: Optional[datetime] = Field(default=None, alias="graceEndsAt")
    last_status_check_at: datetime = Field(alias="lastStatusCheckAt")
    plan: Optional[PlanDetails] = None


class PaymentDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[Decimal] = None
    payment_method: str = Field(default="MANUAL", alias="paymentMethod")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    notes: Optional[str] = None


class RenewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_code: str = Field(alias="planCode")
    payment: Optional[PaymentDetails] = None


class SubscriptionEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    shop_id: int = Field(alias="shopId")
    event_type: str = Field(alias="eventType")
    old_plan_code: Optional[str] = Field(default=None, alias="oldPlanCode")
    new_plan_code: Optional[str] = Field(default=None, alias="newPlanCode")
    old_status: Optional[str] = Field(default=None, alias="oldStatus")
    new_status: Optional[str] = Field(default=None, alias="newStatus")
    old_expires_at: Optional[datetime] = Field(default=None, alias="oldExpiresAt")
    new_expires_at: Optional[datetime] = Field(default=None, alias="newExpiresAt")
    triggered_by: str = Field(alias="triggeredBy")
    triggered_by_user_id: Optional[int] = Field(default=None, alias="triggeredByUserId")
    payment_id: Optional[int] = Field(default=None, alias="paymentId")
    # The ORM exposes the "metadata" column as event_metadata
    event_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("event_metadata", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime = Field(alias="createdAt")


class AccessDecision(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    reason: Optional[str] = None
    status: SubscriptionStatus
