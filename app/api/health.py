"""Liveness, database and push-channel status of the cafe backend"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.db.session import get_pool_stats
from app.features.stations.push_hub import hub
from app.utils.datetime_helper import server_time_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])

SERVICE_NAME = "gamers-spot-backend"
POOL_WARNING_PERCENT = 80
POOL_CRITICAL_PERCENT = 90


def pool_status(utilization: float) -> str:
    if utilization >= POOL_CRITICAL_PERCENT:
        return "critical"
    if utilization >= POOL_WARNING_PERCENT:
        return "warning"
    return "healthy"


@router.get("/")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Liveness plus a database round trip.

    Station timers and subscription checks both need the database, so an
    unreachable one turns the response into a 503. The server clock and
    open push sockets are reported alongside.
    """
    database = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database round trip failed: {e}")
        database = "unreachable"

    clock = server_time_payload()
    body = {
        "status": "healthy" if database == "ok" else "degraded",
        "service": SERVICE_NAME,
        "database": database,
        "timestamp": clock["timestamp"],
        "serverTime": clock["dateTimeString"],
        "pushConnections": hub.total_connections(),
    }
    if database != "ok":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@router.get("/pool")
async def get_pool_health():
    """
    Connection pool utilization.

    Subscription resolves hold a row lock and a connection for their
    whole transaction, so this is the number to watch under load.
    """
    stats = get_pool_stats()
    capacity = stats["size"] + stats["max_overflow"]
    utilization = (stats["checked_out"] / capacity * 100) if capacity > 0 else 0
    return {
        "status": pool_status(utilization),
        "inUse": stats["checked_out"],
        "available": stats["checked_in"],
        "overflow": stats["overflow"],
        "capacity": capacity,
        "utilizationPercent": round(utilization, 2),
    }


@router.get("/push")
async def get_push_health():
    """Open paid-event sockets across all shops"""
    return {
        "shops": hub.shop_count(),
        "connections": hub.total_connections(),
    }
