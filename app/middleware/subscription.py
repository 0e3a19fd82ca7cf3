"""
Request preconditions for shop-scoped routes.

Evaluated in order as chained FastAPI dependencies:
authenticate -> shop context -> subscription validity -> handler.
"""
import logging
from dataclasses import replace
from typing import Optional

from fastapi import Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.features.subscriptions.domain import PersistenceFailure, ShopNotFound
from app.features.subscriptions.service import SubscriptionResolver
from app.middleware.auth import CurrentUser, get_current_user

logger = logging.getLogger(__name__)


def subscription_expired_detail(status: str) -> dict:
    """Machine-readable body of a 402 response"""
    return {
        "error": "Subscription Expired",
        "code": "SUBSCRIPTION_EXPIRED",
        "status": status,
        "message": f"Your subscription is {status}. Please renew to continue the service.",
    }


async def require_shop_context(
    user: CurrentUser = Depends(get_current_user),
    shop_id: Optional[int] = Query(None, alias="shopId")
) -> CurrentUser:
    """
    Resolve the shop a request acts on.

    Super admins may act on any shop through ``?shopId=``; everyone
    else is pinned to the shop in their token.
    """
    if user.is_super_admin and shop_id is not None:
        return replace(user, shop_id=shop_id)
    if user.shop_id is None:
        raise HTTPException(status_code=400, detail="Shop context missing")
    return user


async def require_active_subscription(
    user: CurrentUser = Depends(require_shop_context),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    """Reject requests from shops whose subscription is no longer valid"""
    if user.is_super_admin:
        return user

    resolver = SubscriptionResolver(db)
    try:
        view = await resolver.resolve(user.shop_id)
    except ShopNotFound:
        raise HTTPException(status_code=403, detail="No subscription found for this shop")
    except PersistenceFailure as e:
        logger.error(f"Subscription check failed for shop {user.shop_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify subscription")

    if not view.is_valid:
        logger.info(f"Blocked request from shop {user.shop_id}: subscription {view.computed_status.value}")
        raise HTTPException(
            status_code=402,
            detail=subscription_expired_detail(view.computed_status.value),
        )
    return user
