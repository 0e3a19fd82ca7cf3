"""
Server clock reconciliation for a single station.

All derived timing state of one station lives in a ``SyncState`` owned
by its engine; the functions here take that struct explicitly.
"""
import time
from dataclasses import dataclass
from typing import Optional

from app.features.stations.domain import MAX_ELAPSED_SECONDS


def monotonic_ms() -> float:
    return time.monotonic() * 1000


def wall_ms() -> float:
    return time.time() * 1000


@dataclass
class SyncState:
    # Authoritative start of the current run (server epoch ms)
    start_ms: Optional[int] = None
    # Milliseconds spent paused during the current run
    paused_ms: int = 0
    # Server time the in-flight pause began
    pause_start_ms: Optional[int] = None

    # Last server sample and the client monotonic reading taken with it
    last_server_ms: Optional[int] = None
    last_client_ms: Optional[float] = None
    # server - client wall clock, used until the first sample lands
    offset_ms: float = 0.0

    @property
    def has_anchor(self) -> bool:
        return self.last_server_ms is not None and self.last_client_ms is not None

    def clear_run(self) -> None:
        self.start_ms = None
        self.paused_ms = 0
        self.pause_start_ms = None

    def clear(self) -> None:
        self.clear_run()
        self.last_server_ms = None
        self.last_client_ms = None
        self.offset_ms = 0.0


def anchor_sample(
    state: SyncState,
    server_ms: int,
    client_monotonic_ms: float,
    client_wall_ms: float
) -> None:
    """Re-anchor the estimate to a fresh server sample"""
    state.last_server_ms = int(server_ms)
    state.last_client_ms = client_monotonic_ms
    state.offset_ms = server_ms - client_wall_ms


def estimate_server_time(
    state: SyncState,
    client_monotonic_ms: float,
    client_wall_ms: float
) -> int:
    """
    Current server time without a round trip.

    Last sample plus monotonic time since it was taken; falls back to
    the wall clock corrected by the last known offset.
    """
    if state.has_anchor:
        return int(state.last_server_ms + (client_monotonic_ms - state.last_client_ms))
    return int(client_wall_ms + state.offset_ms)


def compute_elapsed(state: SyncState, server_now_ms: int) -> int:
    """Running seconds of the current run at ``server_now_ms``, clamped"""
    if state.start_ms is None:
        return 0
    elapsed = (server_now_ms - state.start_ms - state.paused_ms) // 1000
    return int(min(max(elapsed, 0), MAX_ELAPSED_SECONDS))


def pause_duration_ms(pause_start_ms: Optional[int], now_ms: int) -> int:
    if pause_start_ms is None:
        return 0
    return int(max(now_ms - pause_start_ms, 0))


def paused_seconds(state: SyncState) -> int:
    """Whole seconds paused, as stored in pausedTime"""
    return state.paused_ms // 1000
