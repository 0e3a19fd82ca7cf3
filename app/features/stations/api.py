"""Stations, paid events and push channel endpoints"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
)
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.features.stations.domain import (
    InvalidTransfer,
    PaidEvent,
    StationNotFound,
    StationRecord,
)
from app.features.stations.push_hub import hub
from app.features.stations.schemas import (
    PaidEventCreate,
    PaidEventCreated,
    StationUpdate,
    TransferRequest,
    TransferResponse,
)
from app.features.stations.service import StationService
from app.middleware.auth import CurrentUser, user_from_payload, verify_token
from app.middleware.subscription import require_active_subscription

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api", tags=["stations"])


@router.get("/stations", response_model=List[StationRecord])
async def list_stations(
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    return await StationService(db).list_stations(user.shop_id)


# Registered before /stations/{station_id} so "transfer" is not read as an id
@router.post("/stations/transfer", response_model=TransferResponse)
async def transfer_station(
    request: TransferRequest,
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a running session onto an idle station of the same game type.

    Raises:
        404: Either station not found
        409: Source not running, target not idle or game types differ
    """
    try:
        await StationService(db).transfer_session(
            user.shop_id, request.from_station_id, request.to_station_id
        )
    except StationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransfer as e:
        raise HTTPException(status_code=409, detail=str(e))

    return TransferResponse(
        message="Session transferred successfully",
        from_station_id=request.from_station_id,
        to_station_id=request.to_station_id,
    )


@router.get("/stations/{station_id}", response_model=StationRecord)
async def get_station(
    station_id: int,
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await StationService(db).get_station(user.shop_id, station_id)
    except StationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/stations/{station_id}", response_model=StationRecord)
async def update_station(
    station_id: int,
    update: StationUpdate,
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    """Partial single-station write; last write wins unless guarded by expectedStartTime"""
    try:
        return await StationService(db).update_station(user.shop_id, station_id, update)
    except StationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/paid-events", response_model=PaidEventCreated, status_code=201)
async def create_paid_event(
    request: PaidEventCreate,
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    """
    Record that stations were invoiced.

    The targeted stations are reset server-side and a ``paid_event``
    message goes out to every open socket of the shop.
    """
    event, delivered = await StationService(db).record_paid_event(user.shop_id, request)
    return PaidEventCreated(
        id=event.id,
        created_at=event.created_at,
        clients_notified=delivered,
    )


@router.get("/paid-events", response_model=List[PaidEvent])
async def list_paid_events(
    since: Optional[datetime] = Query(None),
    user: CurrentUser = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db)
):
    """Polling fallback for clients without a live socket"""
    return await StationService(db).list_paid_events(user.shop_id, since)


@router.websocket("/ws")
async def shop_events_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Shop-scoped push channel; the token comes in the query string"""
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = user_from_payload(verify_token(token))
    except HTTPException as e:
        logger.info(f"Rejected WebSocket connection: {e.detail}")
        await websocket.close(code=4401)
        return
    if user.shop_id is None:
        await websocket.close(code=4400)
        return

    await websocket.accept()
    hub.register(user.shop_id, websocket)
    try:
        await websocket.send_json({"type": "connected", "shopId": user.shop_id})
        while True:
            # Inbound messages only keep the connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(user.shop_id, websocket)
