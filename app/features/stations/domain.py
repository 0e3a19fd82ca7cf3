"""Domain models for the stations feature"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MAX_ELAPSED_SECONDS = 86400

# Snack counters a freshly reset station starts with
DEFAULT_SNACKS: Dict[str, int] = {"cokeBottle": 0, "cokeCan": 0}


class StationRecord(BaseModel):
    """
    Timer state of a single station, as stored in the stations table.

    Wire names are camelCase; the customer/billing fields are carried
    through untouched by the timer logic.
    """
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    shop_id: Optional[int] = Field(default=None, alias="shopId")
    name: str = ""
    game_type: str = Field(default="Playstation", alias="gameType")

    elapsed_time: int = Field(default=0, alias="elapsedTime")
    is_running: bool = Field(default=False, alias="isRunning")
    is_paused: bool = Field(default=False, alias="isPaused")
    is_done: bool = Field(default=False, alias="isDone")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    paused_time: int = Field(default=0, alias="pausedTime")
    pause_start_time: Optional[str] = Field(default=None, alias="pauseStartTime")

    customer_name: str = Field(default="", alias="customerName")
    customer_phone: str = Field(default="", alias="customerPhone")
    extra_controllers: int = Field(default=0, alias="extraControllers")
    snacks: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_SNACKS))
    snacks_enabled: bool = Field(default=False, alias="snacksEnabled")

    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @model_validator(mode="after")
    def normalize_flags(self) -> "StationRecord":
        # done is terminal for the run: never running or paused at the same time
        if self.is_done:
            self.is_running = False
            self.is_paused = False
        # paused is a sub-state of running
        if self.is_paused and not self.is_running:
            self.is_running = True
        self.elapsed_time = min(max(int(self.elapsed_time or 0), 0), MAX_ELAPSED_SECONDS)
        self.paused_time = max(int(self.paused_time or 0), 0)
        return self

    @property
    def is_idle(self) -> bool:
        return not self.is_running and not self.is_done and self.elapsed_time == 0

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def idle_fields() -> Dict[str, Any]:
    """Field set (snake_case) of a station with no session on it"""
    return {
        "elapsed_time": 0,
        "is_running": False,
        "is_paused": False,
        "is_done": False,
        "start_time": None,
        "end_time": None,
        "paused_time": 0,
        "pause_start_time": None,
        "customer_name": "",
        "customer_phone": "",
        "extra_controllers": 0,
        "snacks": dict(DEFAULT_SNACKS),
        "snacks_enabled": False,
    }


# Fields that make up a running session, moved as a unit on transfer
SESSION_FIELDS: List[str] = list(idle_fields().keys())


class PaidEvent(BaseModel):
    """
    Notification that stations were invoiced and must be reset.

    ``reset_data`` is either empty (reset every targeted station to idle)
    or a list of per-station field sets, each carrying the station ``id``.
    """
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: Optional[int] = None
    shop_id: Optional[int] = Field(default=None, alias="shopId")
    invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber")
    station_ids: List[int] = Field(default_factory=list, alias="stationIds")
    reset_data: List[Dict[str, Any]] = Field(default_factory=list, alias="resetData")
    processed: bool = False
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @property
    def event_key(self) -> str:
        """Identity used to de-duplicate deliveries"""
        if self.id is not None:
            return f"id:{self.id}"
        ids = ",".join(str(i) for i in sorted(self.station_ids))
        return f"invoice:{self.invoice_number}:{ids}"

    def targets(self, station_id: int) -> bool:
        return station_id in self.station_ids

    def reset_values_for(self, station_id: int) -> Dict[str, Any]:
        """
        Resolve the snake_case field set to apply to one targeted station.

        Entries may use wire (camelCase) or attribute names; anything not
        supplied falls back to the idle value.
        """
        values = idle_fields()
        for entry in self.reset_data:
            entry_id = entry.get("id", entry.get("stationId"))
            if entry_id is not None and int(entry_id) != station_id:
                continue
            if entry_id is None and len(self.reset_data) > 1:
                continue
            parsed = StationRecord.model_validate({"id": station_id, **entry})
            for key in values:
                if key in entry or _alias_of(key) in entry:
                    values[key] = getattr(parsed, key)
            break
        return values


def _alias_of(field_name: str) -> str:
    field = StationRecord.model_fields[field_name]
    return field.alias or field_name


class StationNotFound(LookupError):
    """Raised when a (shop, station) row does not exist"""

    def __init__(self, shop_id: int, station_id: int):
        super().__init__(f"Station {station_id} not found for shop {shop_id}")
        self.shop_id = shop_id
        self.station_id = station_id


class InvalidTransfer(ValueError):
    """Raised when a session cannot be moved between two stations"""
