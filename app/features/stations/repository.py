"""SQLAlchemy repository for stations and paid events"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.station import Station as StationORM
from app.db.models.paid_event import PaidEvent as PaidEventORM
from app.features.stations.domain import PaidEvent, StationRecord
from app.utils.datetime_helper import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _to_record(row: StationORM) -> StationRecord:
    return StationRecord.model_validate(row)


def _to_paid_event(row: PaidEventORM) -> PaidEvent:
    event = PaidEvent.model_validate(row)
    event.created_at = ensure_utc(event.created_at)
    return event


class StationRepository:
    """
    Data access for the stations and paid_events tables.

    Methods flush but never commit; the calling service owns the
    transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_shop(self, shop_id: int) -> List[StationRecord]:
        stmt = (
            select(StationORM)
            .where(StationORM.shop_id == shop_id)
            .order_by(StationORM.id.asc())
        )
        result = await self.db.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def get_row(
        self,
        shop_id: int,
        station_id: int,
        for_update: bool = False
    ) -> Optional[StationORM]:
        stmt = select(StationORM).where(
            and_(StationORM.shop_id == shop_id, StationORM.id == station_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, shop_id: int, station_id: int) -> Optional[StationRecord]:
        row = await self.get_row(shop_id, station_id)
        return _to_record(row) if row else None

    async def lock_pair(
        self,
        shop_id: int,
        first_id: int,
        second_id: int
    ) -> Dict[int, StationORM]:
        """Lock two station rows of one shop, in id order"""
        stmt = (
            select(StationORM)
            .where(
                and_(
                    StationORM.shop_id == shop_id,
                    StationORM.id.in_([first_id, second_id])
                )
            )
            .order_by(StationORM.id.asc())
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return {row.id: row for row in result.scalars().all()}

    async def create(self, shop_id: int, station_id: int, name: str, game_type: str) -> StationRecord:
        row = StationORM(
            id=station_id,
            shop_id=shop_id,
            name=name,
            game_type=game_type,
            updated_at=utcnow(),
        )
        self.db.add(row)
        await self.db.flush()
        return _to_record(row)

    async def write_fields(self, row: StationORM, fields: Dict[str, Any]) -> StationRecord:
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        await self.db.flush()
        return _to_record(row)

    # ------------------------------------------------------------------
    # Paid events
    # ------------------------------------------------------------------

    async def create_paid_event(
        self,
        shop_id: int,
        invoice_number: Optional[str],
        station_ids: List[int],
        reset_data: List[Dict[str, Any]],
        created_at: datetime
    ) -> PaidEvent:
        row = PaidEventORM(
            shop_id=shop_id,
            invoice_number=invoice_number,
            station_ids=list(station_ids),
            reset_data=list(reset_data),
            processed=True,
            created_at=created_at,
        )
        self.db.add(row)
        await self.db.flush()
        return _to_paid_event(row)

    async def list_paid_events(
        self,
        shop_id: int,
        since: datetime,
        limit: int = 50
    ) -> List[PaidEvent]:
        """Events created strictly after ``since``, newest first"""
        stmt = (
            select(PaidEventORM)
            .where(
                and_(
                    PaidEventORM.shop_id == shop_id,
                    PaidEventORM.created_at > since
                )
            )
            .order_by(PaidEventORM.created_at.desc(), PaidEventORM.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [_to_paid_event(row) for row in result.scalars().all()]
