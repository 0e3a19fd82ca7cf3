"""Routes paid events from the push channel to station engines"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.config import PAID_EVENT_POLL_SECONDS
from app.features.stations.domain import PaidEvent
from app.services.timer.cache import RecentKeys
from app.services.timer.client import GameStationClient
from app.services.timer.engine import TimerEngine

logger = logging.getLogger(__name__)


class PaidEventListener:
    """
    Fans ``paid_event`` messages out to the engines of the stations they target.

    Messages can arrive from a WebSocket (call ``dispatch`` per message)
    or from the polling fallback; deliveries are de-duplicated by event
    identity, so overlapping sources are harmless.
    """

    def __init__(
        self,
        client: Optional[GameStationClient] = None,
        poll_seconds: float = PAID_EVENT_POLL_SECONDS
    ):
        self.client = client
        self.poll_seconds = poll_seconds
        self._engines: Dict[int, List[TimerEngine]] = {}
        self._seen = RecentKeys()
        self._last_seen_at: Optional[datetime] = None
        self._poll_task: Optional[asyncio.Task] = None

    def register(self, engine: TimerEngine) -> None:
        self._engines.setdefault(engine.station_id, []).append(engine)

    def unregister(self, engine: TimerEngine) -> None:
        engines = self._engines.get(engine.station_id, [])
        if engine in engines:
            engines.remove(engine)
        if not engines:
            self._engines.pop(engine.station_id, None)

    def dispatch(self, message: Dict[str, Any]) -> int:
        """Apply one push message; returns how many engines adopted it"""
        if message.get("type") != "paid_event":
            return 0
        try:
            event = PaidEvent.model_validate(message)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed paid event: {e}")
            return 0

        if not self._seen.add(event.event_key):
            return 0
        if event.created_at and (self._last_seen_at is None or event.created_at > self._last_seen_at):
            self._last_seen_at = event.created_at

        applied = 0
        for station_id in event.station_ids:
            for engine in list(self._engines.get(station_id, [])):
                if engine.apply_paid_event(event):
                    applied += 1
        logger.info(f"Paid event {event.event_key} applied to {applied} station engine(s)")
        return applied

    async def poll_once(self) -> int:
        if self.client is None:
            return 0
        events = await self.client.fetch_paid_events(since=self._last_seen_at)
        applied = 0
        # Oldest first so later resets win
        for event in reversed(events):
            applied += self.dispatch(
                {"type": "paid_event", **event.model_dump(by_alias=True, mode="json")}
            )
        return applied

    async def _poll_loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.poll_seconds)

    def start_polling(self) -> None:
        if self.client is None:
            raise ValueError("Polling needs a GameStationClient")
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
