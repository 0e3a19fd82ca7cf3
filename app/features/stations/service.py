"""Station store service: single-station writes, transfers and paid resets"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.stations.domain import (
    InvalidTransfer,
    PaidEvent,
    SESSION_FIELDS,
    StationNotFound,
    StationRecord,
    idle_fields,
)
from app.features.stations.push_hub import ShopConnectionManager, hub
from app.features.stations.repository import StationRepository
from app.features.stations.schemas import PaidEventCreate, StationUpdate
from app.utils.datetime_helper import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Window used by GET /api/paid-events when no ``since`` is given
RECENT_PAID_EVENTS_WINDOW = timedelta(minutes=5)


class StationService:
    """Business logic for the Station Store"""

    def __init__(
        self,
        db: AsyncSession,
        push_hub: Optional[ShopConnectionManager] = None
    ):
        self.db = db
        self.repository = StationRepository(db)
        self.push_hub = push_hub or hub

    async def list_stations(self, shop_id: int) -> List[StationRecord]:
        return await self.repository.list_for_shop(shop_id)

    async def get_station(self, shop_id: int, station_id: int) -> StationRecord:
        station = await self.repository.get(shop_id, station_id)
        if station is None:
            raise StationNotFound(shop_id, station_id)
        return station

    async def update_station(
        self,
        shop_id: int,
        station_id: int,
        update: StationUpdate
    ) -> StationRecord:
        """
        Merge a partial update into the stored row and write it back.

        The merged record is re-validated so the flag invariants hold on
        what gets stored, whatever combination the caller sent. An update
        carrying ``expected_start_time`` only applies while that run is
        still ticking; otherwise the stored row is returned untouched.
        """
        try:
            row = await self.repository.get_row(shop_id, station_id, for_update=True)
            if row is None:
                raise StationNotFound(shop_id, station_id)

            current = StationRecord.model_validate(row)
            if update.expected_start_time is not None and not (
                current.is_running
                and not current.is_paused
                and current.start_time == update.expected_start_time
            ):
                logger.info(
                    f"Dropped stale progress write for station {station_id} of shop {shop_id}"
                )
                await self.db.rollback()
                return current

            merged = StationRecord.model_validate(
                {**current.model_dump(), **update.changes()}
            )
            fields = {key: getattr(merged, key) for key in SESSION_FIELDS}
            fields["name"] = merged.name
            fields["game_type"] = merged.game_type

            saved = await self.repository.write_fields(row, fields)
            await self.db.commit()
            return saved
        except Exception:
            await self.db.rollback()
            raise

    async def transfer_session(
        self,
        shop_id: int,
        from_station_id: int,
        to_station_id: int
    ) -> None:
        """
        Move a running session onto an idle station of the same game type.

        Both rows are locked for the duration of the move; the source is
        left idle afterwards.
        """
        if from_station_id == to_station_id:
            raise InvalidTransfer("Source and target station must differ")

        try:
            rows = await self.repository.lock_pair(shop_id, from_station_id, to_station_id)
            source = rows.get(from_station_id)
            target = rows.get(to_station_id)
            if source is None:
                raise StationNotFound(shop_id, from_station_id)
            if target is None:
                raise StationNotFound(shop_id, to_station_id)

            if not source.is_running:
                raise InvalidTransfer("Source station is not running")
            if target.is_running or target.is_paused or (target.elapsed_time or 0) > 0:
                raise InvalidTransfer("Target station is not idle")
            if source.game_type != target.game_type:
                raise InvalidTransfer(
                    f"Game type mismatch: {source.game_type} vs {target.game_type}"
                )

            session = {key: getattr(source, key) for key in SESSION_FIELDS}
            await self.repository.write_fields(target, session)
            await self.repository.write_fields(source, idle_fields())
            await self.db.commit()
            logger.info(
                f"Transferred session for shop {shop_id} from station {from_station_id} "
                f"to {to_station_id}"
            )
        except Exception:
            await self.db.rollback()
            raise

    async def record_paid_event(self, shop_id: int, request: PaidEventCreate) -> tuple[PaidEvent, int]:
        """
        Store a paid event, reset the targeted stations, then broadcast.

        The resets are applied here so every client only has to adopt
        them; returns the stored event and the number of sockets reached.
        """
        try:
            event = await self.repository.create_paid_event(
                shop_id=shop_id,
                invoice_number=request.invoice_number,
                station_ids=request.station_ids,
                reset_data=request.reset_data,
                created_at=utcnow(),
            )
            for station_id in event.station_ids:
                row = await self.repository.get_row(shop_id, station_id, for_update=True)
                if row is None:
                    logger.warning(
                        f"Paid event {event.id} targets unknown station {station_id} in shop {shop_id}"
                    )
                    continue
                await self.repository.write_fields(row, event.reset_values_for(station_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Paid event {event.id} for shop {shop_id}, invoice {event.invoice_number or 'N/A'}, "
            f"stations {event.station_ids}"
        )
        delivered = await self.push_hub.broadcast(shop_id, paid_event_message(event))
        return event, delivered

    async def list_paid_events(
        self,
        shop_id: int,
        since: Optional[datetime] = None
    ) -> List[PaidEvent]:
        since = ensure_utc(since) if since else utcnow() - RECENT_PAID_EVENTS_WINDOW
        return await self.repository.list_paid_events(shop_id, since)


def paid_event_message(event: PaidEvent) -> Dict[str, Any]:
    """Push Channel message for a paid event"""
    return {
        "type": "paid_event",
        **event.model_dump(by_alias=True, mode="json", exclude={"shop_id", "processed"}),
    }
