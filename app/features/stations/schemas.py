"""Request and response schemas for the stations API"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StationUpdate(BaseModel):
    """Partial single-station write; unset fields are left as stored"""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    game_type: Optional[str] = Field(default=None, alias="gameType")
    elapsed_time: Optional[int] = Field(default=None, alias="elapsedTime")
    is_running: Optional[bool] = Field(default=None, alias="isRunning")
    is_paused: Optional[bool] = Field(default=None, alias="isPaused")
    is_done: Optional[bool] = Field(default=None, alias="isDone")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    paused_time: Optional[int] = Field(default=None, alias="pausedTime")
    pause_start_time: Optional[str] = Field(default=None, alias="pauseStartTime")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    extra_controllers: Optional[int] = Field(default=None, alias="extraControllers")
    snacks: Optional[Dict[str, Any]] = None
    snacks_enabled: Optional[bool] = Field(default=None, alias="snacksEnabled")

    # Progress-write precondition: apply only while this run is still ticking
    expected_start_time: Optional[str] = Field(default=None, alias="expectedStartTime")

    def changes(self) -> Dict[str, Any]:
        # Explicit nulls only count for the nullable timestamp columns
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True, exclude={"expected_start_time"}).items()
            if value is not None or key in NULLABLE_FIELDS
        }


NULLABLE_FIELDS = {"start_time", "end_time", "pause_start_time"}


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_station_id: int = Field(alias="fromStationId")
    to_station_id: int = Field(alias="toStationId")


class TransferResponse(BaseModel):
    success: bool = True
    message: str
    from_station_id: int = Field(serialization_alias="from")
    to_station_id: int = Field(serialization_alias="to")


class PaidEventCreate(BaseModel):
    """Body of POST /api/paid-events"""
    model_config = ConfigDict(populate_by_name=True)

    invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber")
    station_ids: List[int] = Field(alias="stationIds", min_length=1)
    reset_data: List[Dict[str, Any]] = Field(default_factory=list, alias="resetData")


class PaidEventCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    id: int
    created_at: datetime = Field(serialization_alias="createdAt")
    clients_notified: int = Field(default=0, serialization_alias="clientsNotified")
