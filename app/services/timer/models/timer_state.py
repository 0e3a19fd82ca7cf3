"""Timer state models"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TimerPhase(str, Enum):
    """Timer phase derived from the station flags"""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    DONE = "done"


class ServerTime(BaseModel):
    """One sample of the server clock (GET /api/time)"""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: int  # UTC epoch milliseconds
    iso: Optional[str] = None
    timezone: Optional[str] = None
    timezone_offset: Optional[str] = Field(default=None, alias="timezoneOffset")
