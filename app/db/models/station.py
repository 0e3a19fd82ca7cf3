"""SQLAlchemy ORM model for stations table"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from sqlalchemy.sql import func

from app.db.base import Base


class Station(Base):
    """
    SQLAlchemy ORM model for the stations table.
    One row per gaming station, keyed by (shop_id, id). Last write wins,
    there is no row versioning.
    """
    __tablename__ = "stations"

    # Composite identity
    id = Column(Integer, primary_key=True, autoincrement=False)
    shop_id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False, default="")
    game_type = Column(String, nullable=False, default="Playstation")

    # Timer state
    elapsed_time = Column(Integer, nullable=False, default=0)
    is_running = Column(Boolean, nullable=False, default=False)
    is_paused = Column(Boolean, nullable=False, default=False)
    is_done = Column(Boolean, nullable=False, default=False)
    # Cafe wall-clock strings, "YYYY-MM-DD HH:MM:SS"
    start_time = Column(String, nullable=True)
    end_time = Column(String, nullable=True)
    paused_time = Column(Integer, nullable=False, default=0)
    pause_start_time = Column(String, nullable=True)

    # Customer / billing fields, opaque to the timer
    customer_name = Column(String, nullable=False, default="")
    customer_phone = Column(String, nullable=False, default="")
    extra_controllers = Column(Integer, nullable=False, default=0)
    snacks = Column(JSON, nullable=False, default=dict)
    snacks_enabled = Column(Boolean, nullable=False, default=False)

    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Station(shop_id={self.shop_id}, id={self.id}, "
            f"running={self.is_running}, paused={self.is_paused}, done={self.is_done})>"
        )
