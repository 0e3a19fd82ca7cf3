"""SQLAlchemy repository for subscriptions"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription import (
    Payment as PaymentORM,
    Subscription as SubscriptionORM,
    SubscriptionConfig as SubscriptionConfigORM,
    SubscriptionEvent as SubscriptionEventORM,
    SubscriptionPlan as SubscriptionPlanORM,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Row-level access to the subscription tables.

    Nothing here commits; SubscriptionResolver owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def begin_serializable(self) -> None:
        """Request SERIALIZABLE isolation for the transaction about to start"""
        if self.db.in_transaction():
            return
        if self.db.bind is not None and self.db.bind.dialect.name == "sqlite":
            # SQLite transactions are already serialized
            return
        await self.db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

    async def lock_by_shop(self, shop_id: int) -> Optional[SubscriptionORM]:
        """SELECT ... FOR UPDATE on the live subscription row of a shop"""
        stmt = (
            select(SubscriptionORM)
            .where(
                and_(
                    SubscriptionORM.shop_id == shop_id,
                    SubscriptionORM.deleted_at.is_(None)
                )
            )
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_plan(self, plan_code: str) -> Optional[SubscriptionPlanORM]:
        result = await self.db.execute(
            select(SubscriptionPlanORM).where(SubscriptionPlanORM.plan_code == plan_code)
        )
        return result.scalar_one_or_none()

    async def list_plans(self, active_only: bool = True) -> List[SubscriptionPlanORM]:
        stmt = select(SubscriptionPlanORM)
        if active_only:
            stmt = stmt.where(SubscriptionPlanORM.is_active.is_(True))
        stmt = stmt.order_by(SubscriptionPlanORM.display_order.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_events(self, shop_id: int, limit: int = 50) -> List[SubscriptionEventORM]:
        stmt = (
            select(SubscriptionEventORM)
            .where(SubscriptionEventORM.shop_id == shop_id)
            .order_by(SubscriptionEventORM.created_at.desc(), SubscriptionEventORM.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_config(self) -> Dict[str, str]:
        result = await self.db.execute(select(SubscriptionConfigORM))
        return {row.key: row.value for row in result.scalars().all()}

    async def add_subscription(self, subscription: SubscriptionORM) -> SubscriptionORM:
        self.db.add(subscription)
        await self.db.flush()
        return subscription

    async def add_event(
        self,
        shop_id: int,
        event_type: str,
        created_at: datetime,
        triggered_by: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
        **changes: Any
    ) -> SubscriptionEventORM:
        """Append one audit row; ``changes`` carries the old_/new_ columns"""
        event = SubscriptionEventORM(
            shop_id=shop_id,
            event_type=event_type,
            triggered_by=triggered_by,
            event_metadata=metadata or {},
            created_at=created_at,
            **changes,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def add_payment(
        self,
        shop_id: int,
        subscription_id: int,
        amount: Decimal,
        payment_method: str,
        transaction_id: str,
        created_at: datetime,
        notes: Optional[str] = None
    ) -> PaymentORM:
        payment = PaymentORM(
            shop_id=shop_id,
            subscription_id=subscription_id,
            amount=amount,
            payment_method=payment_method,
            transaction_id=transaction_id,
            status="COMPLETED",
            notes=notes,
            created_at=created_at,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment
