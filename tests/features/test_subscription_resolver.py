from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.db.models.subscription import (
    Payment,
    Subscription,
    SubscriptionConfig,
    SubscriptionEvent,
)
from app.features.subscriptions.domain import (
    PersistenceFailure,
    PlanNotFound,
    ShopNotFound,
    SubscriptionStatus,
)
from app.features.subscriptions.schemas import PaymentDetails
from app.features.subscriptions.service import SubscriptionResolver
from app.utils.datetime_helper import ensure_utc

from tests.conftest import SHOP_ID


async def events_for(session, shop_id=SHOP_ID):
    result = await session.execute(
        select(SubscriptionEvent)
        .where(SubscriptionEvent.shop_id == shop_id)
        .order_by(SubscriptionEvent.id.asc())
    )
    return list(result.scalars().all())


async def stored_subscription(session_factory, shop_id=SHOP_ID):
    async with session_factory() as session:
        result = await session.execute(select(Subscription).where(Subscription.shop_id == shop_id))
        return result.scalar_one()


class FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


# ============================================================================
# Resolve
# ============================================================================

async def test_fresh_active_subscription_is_not_rewritten(db_session, make_subscription, now):
    row = await make_subscription(last_check_ago=timedelta(minutes=5))
    checked_at = ensure_utc(row.last_status_check_at)

    view = await SubscriptionResolver(db_session).resolve(SHOP_ID, now=now)

    assert view.computed_status is SubscriptionStatus.ACTIVE
    assert view.is_valid
    assert view.days_remaining == 10
    assert view.plan.plan_code == "BASIC"
    assert view.plan.features == {"max_stations": 5}
    assert ensure_utc(view.last_status_check_at) == checked_at
    assert await events_for(db_session) == []


async def test_stale_check_bumps_timestamp_without_event(
    db_session, session_factory, make_subscription, now
):
    await make_subscription(last_check_ago=timedelta(hours=2))

    await SubscriptionResolver(db_session).resolve(SHOP_ID, now=now)

    stored = await stored_subscription(session_factory)
    assert ensure_utc(stored.last_status_check_at) == now
    assert stored.computed_status == "active"
    assert await events_for(db_session) == []


async def test_entering_grace_persists_deadline_and_one_event(
    db_session, session_factory, make_subscription, now
):
    row = await make_subscription(expires_in=timedelta(days=-1), computed_status="active")
    expires_at = ensure_utc(row.expires_at)

    view = await SubscriptionResolver(db_session).resolve(SHOP_ID, now=now)

    assert view.computed_status is SubscriptionStatus.GRACE
    assert view.is_valid
    assert view.days_remaining == -1
    stored = await stored_subscription(session_factory)
    assert stored.computed_status == "grace"
    assert ensure_utc(stored.grace_ends_at) == expires_at + timedelta(days=3)

    events = await events_for(db_session)
    assert len(events) == 1
    assert events[0].event_type == "status_changed"
    assert (events[0].old_status, events[0].new_status) == ("active", "grace")
    assert events[0].triggered_by == "system"
    assert events[0].event_metadata == {
        "reason": "lazy_evaluation",
        "minutes_since_last_check": 5,
    }


async def test_two_resolves_write_exactly_one_event(session_factory, make_subscription, now):
    await make_subscription(expires_in=timedelta(days=-1), computed_status="active")

    for _ in range(2):
        async with session_factory() as session:
            view = await SubscriptionResolver(session).resolve(SHOP_ID, now=now)
            assert view.computed_status is SubscriptionStatus.GRACE

    async with session_factory() as session:
        assert len(await events_for(session)) == 1


async def test_expired_trial_gets_no_grace(db_session, make_subscription, now):
    await make_subscription(
        plan_code="FREE_TRIAL", expires_in=timedelta(hours=-1), computed_status="trial"
    )

    view = await SubscriptionResolver(db_session).resolve(SHOP_ID, now=now)

    assert view.computed_status is SubscriptionStatus.EXPIRED
    assert not view.is_valid
    assert view.grace_ends_at is None


async def test_config_table_overrides_grace_period(db_session, make_subscription, now):
    db_session.add(SubscriptionConfig(key="grace_period_days", value="1"))
    await db_session.commit()
    await make_subscription(expires_in=timedelta(days=-2), computed_status="grace")

    view = await SubscriptionResolver(db_session).resolve(SHOP_ID, now=now)

    assert view.computed_status is SubscriptionStatus.EXPIRED


async def test_unknown_or_deleted_shop(db_session, make_subscription, now):
    with pytest.raises(ShopNotFound):
        await SubscriptionResolver(db_session).resolve(404, now=now)

    row = await make_subscription(shop_id=11)
    row.deleted_at = now
    await db_session.commit()

    with pytest.raises(ShopNotFound):
        await SubscriptionResolver(db_session).resolve(11, now=now)


async def test_database_error_becomes_persistence_failure(
    db_session, session_factory, make_subscription, now, monkeypatch
):
    await make_subscription(expires_in=timedelta(days=-1), computed_status="active")
    resolver = SubscriptionResolver(db_session)

    async def broken_add_event(**kwargs):
        raise OperationalError("INSERT", {}, FakeDriverError("08006"))

    monkeypatch.setattr(resolver.repository, "add_event", broken_add_event)

    with pytest.raises(PersistenceFailure):
        await resolver.resolve(SHOP_ID, now=now)

    # Rolled back as a whole: the status write went with the event
    stored = await stored_subscription(session_factory)
    assert stored.computed_status == "active"
    assert stored.grace_ends_at is None


async def test_serialization_failure_is_retried(db_session, make_subscription, now, monkeypatch):
    await make_subscription()
    resolver = SubscriptionResolver(db_session)
    real_lock = resolver.repository.lock_by_shop
    attempts = []

    async def flaky_lock(shop_id):
        attempts.append(shop_id)
        if len(attempts) == 1:
            raise OperationalError("SELECT", {}, FakeDriverError("40001"))
        return await real_lock(shop_id)

    monkeypatch.setattr(resolver.repository, "lock_by_shop", flaky_lock)

    view = await resolver.resolve(SHOP_ID, now=now)

    assert view.computed_status is SubscriptionStatus.ACTIVE
    assert len(attempts) == 2


async def test_serialization_failures_give_up_eventually(db_session, make_subscription, now, monkeypatch):
    await make_subscription()
    resolver = SubscriptionResolver(db_session)

    async def always_conflicting(shop_id):
        raise OperationalError("SELECT", {}, FakeDriverError("40001"))

    monkeypatch.setattr(resolver.repository, "lock_by_shop", always_conflicting)

    with pytest.raises(PersistenceFailure):
        await resolver.resolve(SHOP_ID, now=now)


# ============================================================================
# Renew
# ============================================================================

async def test_renew_keeps_remaining_days(db_session, make_subscription, now):
    await make_subscription(expires_in=timedelta(days=10))

    view = await SubscriptionResolver(db_session).renew(SHOP_ID, "BASIC", now=now)

    assert ensure_utc(view.expires_at) == now + timedelta(days=40)
    assert view.days_remaining == 40
    events = await events_for(db_session)
    assert [e.event_type for e in events] == ["renewed"]
    assert events[0].triggered_by == "user"
    assert events[0].event_metadata["duration_days"] == 30


async def test_upgrade_from_expired_starts_from_now_and_clears_grace(
    db_session, session_factory, make_subscription, now
):
    await make_subscription(
        expires_in=timedelta(days=-10),
        computed_status="expired",
        grace_ends_at=now - timedelta(days=7),
    )

    view = await SubscriptionResolver(db_session).renew(
        SHOP_ID, "PRO", triggered_by_user_id=42, now=now
    )

    assert view.computed_status is SubscriptionStatus.ACTIVE
    assert view.plan_code == "PRO"
    stored = await stored_subscription(session_factory)
    assert ensure_utc(stored.expires_at) == now + timedelta(days=30)
    assert ensure_utc(stored.next_billing_date) == now + timedelta(days=30)
    assert stored.grace_ends_at is None

    event = (await events_for(db_session))[-1]
    assert event.event_type == "upgraded"
    assert (event.old_plan_code, event.new_plan_code) == ("BASIC", "PRO")
    assert (event.old_status, event.new_status) == ("expired", "active")
    assert event.triggered_by_user_id == 42


async def test_downgrade_records_payment(db_session, make_subscription, now):
    await make_subscription(plan_code="PRO")

    await SubscriptionResolver(db_session).renew(
        SHOP_ID, "BASIC", payment=PaymentDetails(payment_method="UPI", transaction_id="utr-1"), now=now
    )

    payment = (await db_session.execute(select(Payment))).scalar_one()
    assert payment.amount == Decimal("999")
    assert payment.payment_method == "UPI"
    assert payment.transaction_id == "utr-1"
    event = (await events_for(db_session))[-1]
    assert event.event_type == "downgraded"
    assert event.payment_id == payment.id


async def test_free_plan_renewal_writes_no_payment(db_session, make_subscription, now):
    await make_subscription(plan_code="FREE_TRIAL", computed_status="trial")

    await SubscriptionResolver(db_session).renew(
        SHOP_ID, "FREE_TRIAL", payment=PaymentDetails(), now=now
    )

    assert (await db_session.execute(select(Payment))).scalars().all() == []


@pytest.mark.parametrize("plan_code", ["LEGACY", "NOPE"])
async def test_renew_rejects_missing_or_inactive_plan(
    db_session, session_factory, make_subscription, now, plan_code
):
    row = await make_subscription()
    expires_at = ensure_utc(row.expires_at)

    with pytest.raises(PlanNotFound):
        await SubscriptionResolver(db_session).renew(SHOP_ID, plan_code, now=now)

    stored = await stored_subscription(session_factory)
    assert ensure_utc(stored.expires_at) == expires_at
    assert await events_for(db_session) == []


async def test_renew_unknown_shop(db_session, plans, now):
    with pytest.raises(ShopNotFound):
        await SubscriptionResolver(db_session).renew(404, "BASIC", now=now)


# ============================================================================
# Provisioning, lookups and access
# ============================================================================

async def test_provision_creates_trial_once(db_session, plans, now):
    resolver = SubscriptionResolver(db_session)

    view = await resolver.provision(99, now=now)
    again = await resolver.provision(99, now=now + timedelta(days=1))

    assert view.computed_status is SubscriptionStatus.TRIAL
    assert view.days_remaining == 14
    assert ensure_utc(again.expires_at) == ensure_utc(view.expires_at)
    assert [e.event_type for e in await events_for(db_session, 99)] == ["created"]


async def test_provision_unknown_plan(db_session, plans, now):
    with pytest.raises(PlanNotFound):
        await SubscriptionResolver(db_session).provision(99, plan_code="NOPE", now=now)


async def test_list_events_newest_first(db_session, make_subscription, now):
    await make_subscription(expires_in=timedelta(days=-1), computed_status="active")
    resolver = SubscriptionResolver(db_session)
    await resolver.resolve(SHOP_ID, now=now)
    await resolver.renew(SHOP_ID, "BASIC", now=now + timedelta(minutes=1))

    events = await resolver.list_events(SHOP_ID)

    assert [e.event_type for e in events] == ["renewed", "status_changed"]
    assert events[1].event_metadata["reason"] == "lazy_evaluation"
    assert len(await resolver.list_events(SHOP_ID, limit=1)) == 1


async def test_list_plans_only_active_in_display_order(db_session, plans):
    codes = [plan.plan_code for plan in await SubscriptionResolver(db_session).list_plans()]

    assert codes == ["FREE_TRIAL", "BASIC", "PRO"]


async def test_check_access(db_session, make_subscription, now):
    await make_subscription()
    resolver = SubscriptionResolver(db_session)

    assert (await resolver.check_access(SHOP_ID, "create_station", current_count=4, now=now)).allowed
    capped = await resolver.check_access(SHOP_ID, "create_station", current_count=5, now=now)
    assert not capped.allowed
    assert "5" in capped.reason


async def test_check_access_when_expired(db_session, make_subscription, now):
    await make_subscription(expires_in=timedelta(days=-30), computed_status="expired")
    resolver = SubscriptionResolver(db_session)

    assert (await resolver.check_access(SHOP_ID, "read", now=now)).allowed
    assert (await resolver.check_access(SHOP_ID, "renew", now=now)).allowed
    blocked = await resolver.check_access(SHOP_ID, "start_timer", now=now)
    assert not blocked.allowed
    assert blocked.status is SubscriptionStatus.EXPIRED
