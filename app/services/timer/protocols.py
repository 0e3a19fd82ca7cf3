"""Collaborator contracts the timer engine depends on"""
from typing import Any, Dict, List, Protocol

from app.features.stations.domain import StationRecord
from app.services.timer.models.timer_state import ServerTime


class ServerClockService(Protocol):
    async def get_server_time(self) -> ServerTime:
        """Raises ServerTimeUnavailable when the clock cannot be sampled"""
        ...


class StationStore(Protocol):
    async def read_station(self, shop_id: int, station_id: int) -> StationRecord:
        """Raises StoreReadFailed when the row cannot be read"""
        ...

    async def write_station(self, shop_id: int, partial: Dict[str, Any]) -> None:
        """
        Write a partial record; ``partial["id"]`` names the station.

        With ``expected_start_time`` set the write is dropped unless the
        stored row is still running, unpaused, from that start.

        Raises PersistenceWriteFailed when the write is not accepted.
        """
        ...

    async def list_stations(self, shop_id: int) -> List[StationRecord]:
        ...
