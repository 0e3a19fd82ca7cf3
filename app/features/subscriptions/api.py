"""Subscription API endpoints"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.features.subscriptions.domain import (
    PersistenceFailure,
    PlanNotFound,
    ShopNotFound,
    TriggerSource,
)
from app.features.subscriptions.schemas import (
    PlanDetails,
    RenewRequest,
    SubscriptionEventResponse,
    SubscriptionView,
)
from app.features.subscriptions.service import SubscriptionResolver
from app.middleware.auth import CurrentUser
from app.middleware.subscription import require_shop_context

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("", response_model=SubscriptionView)
async def get_subscription(
    user: CurrentUser = Depends(require_shop_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the resolved subscription of the caller's shop.

    Allowed even when the subscription has expired, so the client can
    show the renewal path.
    """
    try:
        return await SubscriptionResolver(db).resolve(user.shop_id)
    except ShopNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to resolve subscription: {str(e)}")


@router.post("/renew", response_model=SubscriptionView)
async def renew_subscription(
    request: RenewRequest,
    user: CurrentUser = Depends(require_shop_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Renew, upgrade or downgrade the shop's plan.

    Raises:
        404: Shop or plan not found
        500: Database failure, nothing was written
    """
    try:
        return await SubscriptionResolver(db).renew(
            user.shop_id,
            request.plan_code,
            payment=request.payment,
            triggered_by_user_id=user.user_id,
            triggered_by=TriggerSource.ADMIN if user.is_super_admin else TriggerSource.USER,
        )
    except (ShopNotFound, PlanNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to renew subscription: {str(e)}")


@router.get("/events", response_model=List[SubscriptionEventResponse])
async def get_subscription_events(
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_shop_context),
    db: AsyncSession = Depends(get_db)
):
    """Audit log of the shop's subscription, newest first"""
    try:
        return await SubscriptionResolver(db).list_events(user.shop_id, limit)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch events: {str(e)}")


@router.get("/plans", response_model=List[PlanDetails])
async def get_plans(
    user: CurrentUser = Depends(require_shop_context),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await SubscriptionResolver(db).list_plans()
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch plans: {str(e)}")
