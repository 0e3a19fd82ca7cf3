"""Fast local cache of per-station timer state"""
import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Hashable, Optional

from pydantic import ValidationError

from app.config import PAID_EVENT_KEYS_KEPT
from app.features.stations.domain import StationRecord

logger = logging.getLogger(__name__)


class TimerStateCache:
    """
    Last known state of each station, written on every tick.

    Kept in memory; when ``path`` is given the whole map is mirrored to
    a JSON file so a restarted client can fall back to it when the
    Station Store is unreachable.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._entries: Dict[int, dict] = {}
        if self.path and self.path.exists():
            self._load_file()

    def _load_file(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._entries = {int(key): value for key, value in raw.items()}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable timer cache {self.path}: {e}")
            self._entries = {}

    def _write_file(self) -> None:
        if not self.path:
            return
        try:
            self.path.write_text(
                json.dumps({str(key): value for key, value in self._entries.items()}),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"Failed to write timer cache {self.path}: {e}")

    def save(self, record: StationRecord) -> None:
        self._entries[record.id] = record.to_wire()
        self._write_file()

    def load(self, station_id: int) -> Optional[StationRecord]:
        entry = self._entries.get(station_id)
        if entry is None:
            return None
        try:
            return StationRecord.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Dropping invalid cache entry for station {station_id}: {e}")
            self.clear(station_id)
            return None

    def clear(self, station_id: int) -> None:
        if self._entries.pop(station_id, None) is not None:
            self._write_file()


class RecentKeys:
    """Most recently seen keys, oldest dropped once ``limit`` is reached"""

    def __init__(self, limit: int = PAID_EVENT_KEYS_KEPT):
        self.limit = max(int(limit), 1)
        self._keys: "OrderedDict[Hashable, None]" = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: Hashable) -> bool:
        """Remember ``key``; returns False when it was already known"""
        if key in self._keys:
            self._keys.move_to_end(key)
            return False
        self._keys[key] = None
        while len(self._keys) > self.limit:
            self._keys.popitem(last=False)
        return True
