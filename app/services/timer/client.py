"""HTTP transport for the timer engine"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.features.stations.domain import PaidEvent, StationRecord
from app.features.stations.schemas import StationUpdate
from app.services.timer.errors import (
    PersistenceWriteFailed,
    ServerTimeUnavailable,
    StoreReadFailed,
)
from app.services.timer.models.timer_state import ServerTime

logger = logging.getLogger(__name__)


class GameStationClient:
    """
    Server Clock Service and Station Store backed by the backend API.

    The shop is taken from the bearer token; ``shop_id`` arguments only
    label log lines and errors.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )
        if http_client is not None and token:
            self.http.headers.update(headers)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def __aenter__(self) -> "GameStationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get_server_time(self) -> ServerTime:
        try:
            response = await self.http.get("/api/time")
            response.raise_for_status()
            return ServerTime.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise ServerTimeUnavailable(str(e)) from e

    async def read_station(self, shop_id: int, station_id: int) -> StationRecord:
        try:
            response = await self.http.get(f"/api/stations/{station_id}")
            response.raise_for_status()
            return StationRecord.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise StoreReadFailed(f"Station {station_id} of shop {shop_id}: {e}") from e

    async def list_stations(self, shop_id: int) -> List[StationRecord]:
        try:
            response = await self.http.get("/api/stations")
            response.raise_for_status()
            return [StationRecord.model_validate(item) for item in response.json()]
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise StoreReadFailed(f"Stations of shop {shop_id}: {e}") from e

    async def write_station(self, shop_id: int, partial: Dict[str, Any]) -> None:
        fields = {key: value for key, value in partial.items() if key != "id"}
        station_id = partial["id"]
        body = StationUpdate.model_validate(fields).model_dump(
            by_alias=True, exclude_unset=True, mode="json"
        )
        try:
            response = await self.http.patch(f"/api/stations/{station_id}", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise PersistenceWriteFailed(f"Station {station_id} of shop {shop_id}: {e}") from e

    async def fetch_paid_events(self, since: Optional[datetime] = None) -> List[PaidEvent]:
        params = {"since": since.isoformat()} if since else None
        try:
            response = await self.http.get("/api/paid-events", params=params)
            response.raise_for_status()
            return [PaidEvent.model_validate(item) for item in response.json()]
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning(f"Paid event poll failed: {e}")
            return []
