"""Lazy subscription status resolution and renewal"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import (
    FREE_TRIAL_PLAN_CODE,
    GRACE_PERIOD_DAYS,
    STATUS_CHECK_INTERVAL_MINUTES,
)
from app.db.models.subscription import (
    Subscription as SubscriptionORM,
    SubscriptionPlan as SubscriptionPlanORM,
)
from app.features.subscriptions.domain import (
    EventType,
    PersistenceFailure,
    PlanNotFound,
    ShopNotFound,
    SubscriptionError,
    SubscriptionStatus,
    TriggerSource,
    classify_renewal,
    compute_status,
    days_remaining,
    grace_deadline,
)
from app.features.subscriptions.repository import SubscriptionRepository
from app.features.subscriptions.schemas import (
    AccessDecision,
    PaymentDetails,
    PlanDetails,
    SubscriptionEventResponse,
    SubscriptionView,
)
from app.utils.datetime_helper import ensure_utc, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Actions allowed regardless of subscription validity
READ_ACTIONS = {"read", "view_subscription", "renew"}

# A transaction that waited on the row lock may lose its snapshot
SERIALIZATION_RETRIES = 3
SERIALIZATION_FAILURE = "40001"


def _is_serialization_failure(error: SQLAlchemyError) -> bool:
    if not isinstance(error, DBAPIError):
        return False
    return getattr(error.orig, "sqlstate", None) == SERIALIZATION_FAILURE


class SubscriptionResolver:
    """
    Answers "is this shop's subscription valid" without a scheduler.

    Every call runs in one serializable transaction holding a row lock
    on the shop's subscription, so concurrent resolves for the same shop
    serialize and write at most one audit event per transition. Any
    failure rolls the whole transaction back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = SubscriptionRepository(db)

    async def _in_transaction(self, shop_id: int, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``work`` in its own serializable transaction and commit it.

        Serialization failures are retried from the top; anything else
        rolls back and surfaces.
        """
        for attempt in range(1, SERIALIZATION_RETRIES + 1):
            try:
                await self.repository.begin_serializable()
                result = await work()
                await self.db.commit()
                return result
            except SubscriptionError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                if _is_serialization_failure(e) and attempt < SERIALIZATION_RETRIES:
                    logger.info(f"Serialization conflict on shop {shop_id}, retrying (attempt {attempt})")
                    continue
                logger.error(f"Subscription transaction failed for shop {shop_id}: {e}", exc_info=True)
                raise PersistenceFailure(str(e)) from e
        raise PersistenceFailure(f"Gave up on shop {shop_id} after {SERIALIZATION_RETRIES} attempts")

    async def _lock(self, shop_id: int) -> SubscriptionORM:
        subscription = await self.repository.lock_by_shop(shop_id)
        if subscription is None:
            raise ShopNotFound(shop_id)
        return subscription

    async def _settings(self) -> tuple[int, timedelta]:
        config = await self.repository.get_config()
        grace_days = int(config.get("grace_period_days", GRACE_PERIOD_DAYS))
        interval_minutes = int(
            config.get("status_check_interval_minutes", STATUS_CHECK_INTERVAL_MINUTES)
        )
        return grace_days, timedelta(minutes=interval_minutes)

    # ============================================================================
    # RESOLVE
    # ============================================================================

    async def resolve(self, shop_id: int, now: Optional[datetime] = None) -> SubscriptionView:
        now = ensure_utc(now) if now else utcnow()

        async def work() -> SubscriptionView:
            subscription = await self._lock(shop_id)
            grace_days, check_interval = await self._settings()
            await self._recompute(subscription, now, grace_days, check_interval)
            plan = await self.repository.get_plan(subscription.current_plan_code)
            return _to_view(subscription, plan, now)

        return await self._in_transaction(shop_id, work)

    async def _recompute(
        self,
        subscription: SubscriptionORM,
        now: datetime,
        grace_days: int,
        check_interval: timedelta
    ) -> None:
        """Write the status back when it is stale or has changed"""
        expires_at = ensure_utc(subscription.expires_at)
        grace_ends_at = ensure_utc(subscription.grace_ends_at)
        last_check = ensure_utc(subscription.last_status_check_at)

        status = compute_status(
            now, expires_at, grace_ends_at, subscription.current_plan_code, grace_days
        )
        old_status = subscription.computed_status
        changed = status.value != old_status
        interval_elapsed = last_check is None or now - last_check >= check_interval

        if not (changed or interval_elapsed):
            return

        if status is SubscriptionStatus.GRACE and grace_ends_at is None:
            subscription.grace_ends_at = grace_deadline(expires_at, None, grace_days)

        subscription.computed_status = status.value
        subscription.last_status_check_at = now
        subscription.updated_at = now

        if not changed:
            await self.db.flush()
            return

        minutes_since = round((now - last_check).total_seconds() / 60) if last_check else None
        await self.repository.add_event(
            shop_id=subscription.shop_id,
            event_type=EventType.STATUS_CHANGED.value,
            created_at=now,
            triggered_by=TriggerSource.SYSTEM.value,
            metadata={
                "reason": "lazy_evaluation",
                "minutes_since_last_check": minutes_since,
            },
            old_status=old_status,
            new_status=status.value,
            old_plan_code=subscription.current_plan_code,
            new_plan_code=subscription.current_plan_code,
            old_expires_at=expires_at,
            new_expires_at=expires_at,
        )
        logger.info(
            f"Subscription status for shop {subscription.shop_id} changed "
            f"{old_status} -> {status.value}"
        )

    # ============================================================================
    # RENEW
    # ============================================================================

    async def renew(
        self,
        shop_id: int,
        plan_code: str,
        payment: Optional[PaymentDetails] = None,
        triggered_by_user_id: Optional[int] = None,
        triggered_by: TriggerSource = TriggerSource.USER,
        now: Optional[datetime] = None
    ) -> SubscriptionView:
        """
        Extend a shop's subscription by one period of ``plan_code``.

        The new period starts from the later of now and the current
        expiry, so time left on the old period is kept. Returns the
        freshly resolved view.
        """
        now = ensure_utc(now) if now else utcnow()

        async def work() -> EventType:
            subscription = await self._lock(shop_id)

            plan = await self.repository.get_plan(plan_code)
            if plan is None or not plan.is_active:
                raise PlanNotFound(plan_code)

            old_plan = await self.repository.get_plan(subscription.current_plan_code)
            old_price = Decimal(old_plan.price_inr) if old_plan else Decimal(0)
            new_price = Decimal(plan.price_inr)

            old_expires_at = ensure_utc(subscription.expires_at)
            extend_from = max(now, old_expires_at)
            new_expires_at = extend_from + timedelta(days=plan.duration_days)

            grace_days, _ = await self._settings()
            old_status = subscription.computed_status
            new_status = compute_status(now, new_expires_at, None, plan.plan_code, grace_days)
            event_type = classify_renewal(old_price, new_price)

            payment_id = None
            if payment is not None and new_price > 0:
                payment_row = await self.repository.add_payment(
                    shop_id=shop_id,
                    subscription_id=subscription.id,
                    amount=payment.amount if payment.amount is not None else new_price,
                    payment_method=payment.payment_method,
                    transaction_id=(
                        payment.transaction_id
                        or f"{payment.payment_method}-{shop_id}-{int(now.timestamp())}"
                    ),
                    created_at=now,
                    notes=payment.notes,
                )
                payment_id = payment_row.id

            old_plan_code = subscription.current_plan_code
            subscription.current_plan_code = plan.plan_code
            subscription.expires_at = new_expires_at
            subscription.grace_ends_at = None
            subscription.next_billing_date = new_expires_at
            subscription.computed_status = new_status.value
            subscription.last_status_check_at = now
            subscription.updated_at = now

            await self.repository.add_event(
                shop_id=shop_id,
                event_type=event_type.value,
                created_at=now,
                triggered_by=triggered_by.value,
                triggered_by_user_id=triggered_by_user_id,
                payment_id=payment_id,
                metadata={
                    "duration_days": plan.duration_days,
                    "extended_from": extend_from.isoformat(),
                    "price_inr": float(new_price),
                },
                old_plan_code=old_plan_code,
                new_plan_code=plan.plan_code,
                old_status=old_status,
                new_status=new_status.value,
                old_expires_at=old_expires_at,
                new_expires_at=new_expires_at,
            )
            logger.info(
                f"Shop {shop_id} {event_type.value} {old_plan_code} -> {plan.plan_code}, "
                f"expires {new_expires_at.isoformat()}"
            )
            return event_type

        await self._in_transaction(shop_id, work)
        return await self.resolve(shop_id, now=now)

    # ============================================================================
    # PROVISIONING & LOOKUPS
    # ============================================================================

    async def provision(
        self,
        shop_id: int,
        plan_code: str = FREE_TRIAL_PLAN_CODE,
        now: Optional[datetime] = None
    ) -> SubscriptionView:
        """
        Create the subscription row of a newly provisioned shop.

        A shop that already has one is left as it is.
        """
        now = ensure_utc(now) if now else utcnow()

        async def work() -> bool:
            if await self.repository.lock_by_shop(shop_id) is not None:
                return False

            plan = await self.repository.get_plan(plan_code)
            if plan is None or not plan.is_active:
                raise PlanNotFound(plan_code)

            grace_days, _ = await self._settings()
            expires_at = now + timedelta(days=plan.duration_days)
            status = compute_status(now, expires_at, None, plan.plan_code, grace_days)
            await self.repository.add_subscription(
                SubscriptionORM(
                    shop_id=shop_id,
                    current_plan_code=plan.plan_code,
                    started_at=now,
                    expires_at=expires_at,
                    next_billing_date=expires_at,
                    computed_status=status.value,
                    last_status_check_at=now,
                    created_at=now,
                )
            )
            await self.repository.add_event(
                shop_id=shop_id,
                event_type=EventType.CREATED.value,
                created_at=now,
                triggered_by=TriggerSource.SYSTEM.value,
                metadata={"reason": "shop_provisioned"},
                new_plan_code=plan.plan_code,
                new_status=status.value,
                new_expires_at=expires_at,
            )
            return True

        if await self._in_transaction(shop_id, work):
            logger.info(f"Provisioned {plan_code} subscription for shop {shop_id}")
        return await self.resolve(shop_id, now=now)

    async def list_events(self, shop_id: int, limit: int = 50) -> List[SubscriptionEventResponse]:
        try:
            events = await self.repository.list_events(shop_id, limit)
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e
        return [SubscriptionEventResponse.model_validate(event) for event in events]

    async def list_plans(self) -> List[PlanDetails]:
        try:
            plans = await self.repository.list_plans()
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e
        return [PlanDetails.model_validate(plan) for plan in plans]

    async def check_access(
        self,
        shop_id: int,
        action: str,
        current_count: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> AccessDecision:
        """
        Decide whether a shop may perform ``action``.

        Reads are always allowed; anything else needs a valid
        subscription, and ``create_station`` is capped by the plan's
        ``max_stations`` feature when one is set.
        """
        view = await self.resolve(shop_id, now=now)

        if action in READ_ACTIONS:
            return AccessDecision(allowed=True, status=view.computed_status)

        if not view.is_valid:
            return AccessDecision(
                allowed=False,
                reason="Your subscription has expired. Please renew to continue.",
                status=view.computed_status,
            )

        if action == "create_station" and view.plan is not None:
            max_stations = view.plan.features.get("max_stations")
            if max_stations is not None and (current_count or 0) >= int(max_stations):
                return AccessDecision(
                    allowed=False,
                    reason=f"Your plan allows at most {max_stations} stations",
                    status=view.computed_status,
                )

        return AccessDecision(allowed=True, status=view.computed_status)


def _to_view(
    subscription: SubscriptionORM,
    plan: Optional[SubscriptionPlanORM],
    now: datetime
) -> SubscriptionView:
    status = SubscriptionStatus(subscription.computed_status)
    expires_at = ensure_utc(subscription.expires_at)
    return SubscriptionView(
        shop_id=subscription.shop_id,
        plan_code=subscription.current_plan_code,
        computed_status=status,
        is_valid=status.is_valid,
        days_remaining=days_remaining(expires_at, now),
        started_at=ensure_utc(subscription.started_at),
        expires_at=expires_at,
        grace_ends_at=ensure_utc(subscription.grace_ends_at),
        last_status_check_at=ensure_utc(subscription.last_status_check_at),
        plan=PlanDetails.model_validate(plan) if plan else None,
    )
