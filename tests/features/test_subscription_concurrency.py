"""Concurrent resolves against a real PostgreSQL database.

Run with TEST_DATABASE_URL=postgresql+psycopg://... pytest -m integration
"""
import asyncio
import os
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base import Base
from app.db.models.subscription import Subscription, SubscriptionEvent, SubscriptionPlan
from app.features.subscriptions.domain import SubscriptionStatus
from app.features.subscriptions.service import SubscriptionResolver
from app.utils.datetime_helper import utcnow

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set"),
]


@pytest.fixture
async def pg_sessions():
    engine = create_async_engine(TEST_DATABASE_URL, pool_size=10)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def test_parallel_resolves_write_one_transition(pg_sessions):
    now = utcnow()
    async with pg_sessions() as session:
        session.add(SubscriptionPlan(plan_code="BASIC", plan_name="Basic", price_inr=999, duration_days=30))
        await session.flush()
        session.add(
            Subscription(
                shop_id=1,
                current_plan_code="BASIC",
                started_at=now - timedelta(days=31),
                expires_at=now - timedelta(days=1),
                computed_status="active",
                last_status_check_at=now - timedelta(minutes=5),
                created_at=now - timedelta(days=31),
            )
        )
        await session.commit()

    async def resolve_once():
        async with pg_sessions() as session:
            return await SubscriptionResolver(session).resolve(1, now=now)

    views = await asyncio.gather(*(resolve_once() for _ in range(5)))

    assert {view.computed_status for view in views} == {SubscriptionStatus.GRACE}
    async with pg_sessions() as session:
        count = await session.scalar(
            select(func.count()).select_from(SubscriptionEvent).where(SubscriptionEvent.shop_id == 1)
        )
    assert count == 1
