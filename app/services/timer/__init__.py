"""Client-side station timer engine"""

from app.services.timer.cache import TimerStateCache
from app.services.timer.client import GameStationClient
from app.services.timer.clock import SyncState, compute_elapsed, estimate_server_time
from app.services.timer.engine import TimerEngine
from app.services.timer.errors import (
    InvalidTransition,
    PersistenceWriteFailed,
    ServerTimeUnavailable,
    StoreReadFailed,
    TimerError,
)
from app.services.timer.models.timer_state import ServerTime, TimerPhase
from app.services.timer.push import PaidEventListener

__all__ = [
    "GameStationClient",
    "InvalidTransition",
    "PaidEventListener",
    "PersistenceWriteFailed",
    "ServerTime",
    "ServerTimeUnavailable",
    "StoreReadFailed",
    "SyncState",
    "TimerEngine",
    "TimerError",
    "TimerPhase",
    "TimerStateCache",
    "compute_elapsed",
    "estimate_server_time",
]
