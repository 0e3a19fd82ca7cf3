"""SQLAlchemy ORM model for paid_events table"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from sqlalchemy.sql import func

from app.db.base import Base


class PaidEvent(Base):
    """
    Invoice-paid notifications. Each row lists the stations that were
    billed and must be reset on every connected client of the shop.
    """
    __tablename__ = "paid_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, nullable=False, index=True)
    invoice_number = Column(String, nullable=True)
    station_ids = Column(JSON, nullable=False, default=list)
    # List of per-station field sets; empty means "default idle"
    reset_data = Column(JSON, nullable=False, default=list)
    processed = Column(Boolean, nullable=False, default=False)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<PaidEvent(id={self.id}, shop_id={self.shop_id}, stations={self.station_ids})>"
