"""Timer Engine - elapsed time of one station on one client"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from app.config import (
    PAID_RESET_GUARD_SECONDS,
    TIMER_FLUSH_EVERY_TICKS,
    TIMER_RESYNC_SECONDS,
    TIMER_TICK_SECONDS,
)
from app.features.stations.domain import PaidEvent, StationRecord, idle_fields
from app.services.timer import clock
from app.services.timer.cache import RecentKeys, TimerStateCache
from app.services.timer.clock import (
    SyncState,
    anchor_sample,
    compute_elapsed,
    estimate_server_time,
    pause_duration_ms,
    paused_seconds,
)
from app.services.timer.errors import (
    InvalidTransition,
    PersistenceWriteFailed,
    ServerTimeUnavailable,
    StoreReadFailed,
)
from app.services.timer.models.timer_state import TimerPhase
from app.services.timer.protocols import ServerClockService, StationStore
from app.utils.datetime_helper import format_wall_clock, parse_wall_clock

logger = logging.getLogger(__name__)

Observer = Callable[[StationRecord], Any]


def phase_of(record: Optional[StationRecord]) -> TimerPhase:
    if record is None:
        return TimerPhase.IDLE
    if record.is_done:
        return TimerPhase.DONE
    if record.is_running and record.is_paused:
        return TimerPhase.PAUSED
    if record.is_running:
        return TimerPhase.RUNNING
    return TimerPhase.IDLE


def same_run(stored: StationRecord, local: StationRecord) -> bool:
    """True when the stored row is still ticking the run held locally"""
    return (
        stored.is_running
        and not stored.is_paused
        and not stored.is_done
        and stored.start_time == local.start_time
    )


class TimerEngine:
    """
    Tracks one station's elapsed time on one connected client.

    The Station Store is the authority: every transition starts with a
    fresh read and is written back before observers hear about it.
    Between transitions the displayed value is estimated from the last
    server clock sample plus local monotonic time, so ticks need no
    network round trip. Tick and resync loops run as asyncio tasks and
    are cancelled while the station is not visible.
    """

    def __init__(
        self,
        shop_id: int,
        station_id: int,
        clock_service: ServerClockService,
        store: StationStore,
        cache: Optional[TimerStateCache] = None,
        tick_seconds: float = TIMER_TICK_SECONDS,
        resync_seconds: float = TIMER_RESYNC_SECONDS,
        flush_every_ticks: int = TIMER_FLUSH_EVERY_TICKS,
        guard_seconds: float = PAID_RESET_GUARD_SECONDS,
        monotonic_ms: Callable[[], float] = clock.monotonic_ms,
        wall_ms: Callable[[], float] = clock.wall_ms,
    ):
        self.shop_id = shop_id
        self.station_id = station_id
        self.clock_service = clock_service
        self.store = store
        self.cache = cache or TimerStateCache()

        self.tick_seconds = tick_seconds
        self.resync_seconds = resync_seconds
        self.flush_every_ticks = max(1, flush_every_ticks)
        self.guard_seconds = guard_seconds
        self._monotonic_ms = monotonic_ms
        self._wall_ms = wall_ms

        self.record: Optional[StationRecord] = None
        self.sync = SyncState()
        self._elapsed = 0
        self._observers: List[Observer] = []

        self._visible = True
        self._tick_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._ticks_since_flush = 0
        self._start_in_flight = False
        self._guard_until_ms = 0.0
        self._applied_events = RecentKeys()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def elapsed(self) -> int:
        return self._elapsed

    @property
    def phase(self) -> TimerPhase:
        return phase_of(self.record)

    @property
    def loops_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    @property
    def guard_active(self) -> bool:
        return self._monotonic_ms() < self._guard_until_ms

    def on_change(self, observer: Observer) -> None:
        self._observers.append(observer)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self.record)
            except Exception as e:
                logger.error(f"Timer observer failed for station {self.station_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def estimated_server_now(self) -> int:
        return estimate_server_time(self.sync, self._monotonic_ms(), self._wall_ms())

    async def resync(self) -> None:
        """
        Re-anchor to a fresh server sample.

        On failure the previous anchor and offset stay in use.
        """
        try:
            sample = await self.clock_service.get_server_time()
        except ServerTimeUnavailable as e:
            logger.warning(f"Server time unavailable for station {self.station_id}, keeping last anchor: {e}")
            return
        anchor_sample(self.sync, sample.timestamp, self._monotonic_ms(), self._wall_ms())
        self._recompute()

    async def _server_now(self) -> int:
        await self.resync()
        return self.estimated_server_now()

    def _recompute(self) -> None:
        """Derive elapsed from the run's start while ticking"""
        record = self.record
        if record is None or not record.is_running or record.is_paused:
            return
        if self.sync.start_ms is None or self.guard_active:
            return
        self._elapsed = compute_elapsed(self.sync, self.estimated_server_now())
        record.elapsed_time = self._elapsed

    # ------------------------------------------------------------------
    # Ground truth
    # ------------------------------------------------------------------

    def _adopt(self, record: StationRecord) -> None:
        """
        Take a record as ground truth and rebuild the run state from it.

        Stored timestamps and pausedTime only have second resolution, so
        locally held values of the same run that round to the stored ones
        are kept.
        """
        start_ms = parse_wall_clock(record.start_time)
        same_run = (
            self.sync.start_ms is not None
            and record.start_time == format_wall_clock(self.sync.start_ms)
        )
        if same_run:
            start_ms = self.sync.start_ms
        pause_start_ms = parse_wall_clock(record.pause_start_time)
        if (
            self.sync.pause_start_ms is not None
            and record.pause_start_time == format_wall_clock(self.sync.pause_start_ms)
        ):
            pause_start_ms = self.sync.pause_start_ms

        self.record = record
        self.sync.start_ms = start_ms if (record.is_running or record.is_done) else None
        if not (same_run and paused_seconds(self.sync) == record.paused_time):
            self.sync.paused_ms = record.paused_time * 1000
        self.sync.pause_start_ms = pause_start_ms if record.is_paused else None
        self._elapsed = record.elapsed_time
        self._recompute()

    async def _fresh_read(self) -> StationRecord:
        try:
            record = await self.store.read_station(self.shop_id, self.station_id)
        except StoreReadFailed as e:
            if self.record is None:
                raise
            logger.warning(f"Fresh read failed for station {self.station_id}, using local state: {e}")
            return self.record
        self._adopt(record)
        return record

    async def hydrate(self) -> StationRecord:
        """Load the station, falling back to the local cache when the store is unreachable"""
        try:
            record = await self.store.read_station(self.shop_id, self.station_id)
        except StoreReadFailed:
            record = self.cache.load(self.station_id)
            if record is None:
                raise
            logger.warning(f"Station {self.station_id} hydrated from local cache")

        await self.resync()
        self._adopt(record)
        self.cache.save(self.record)
        if self.phase is TimerPhase.RUNNING:
            self._start_loops()
        return self.record

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _commit(self, changes: Dict[str, Any], loops: Optional[str] = None) -> StationRecord:
        """
        Apply a transition locally, write it, then notify observers.

        The local state keeps the transition even if the write fails.
        """
        base = self.record.model_dump() if self.record else {"id": self.station_id}
        self.record = StationRecord.model_validate({**base, **changes})
        self._elapsed = self.record.elapsed_time
        self.cache.save(self.record)

        if loops == "start":
            self._start_loops()
        elif loops == "stop":
            self._stop_loops()

        try:
            await self.store.write_station(self.shop_id, {"id": self.station_id, **changes})
        except PersistenceWriteFailed as e:
            logger.error(f"Write failed for station {self.station_id}: {e}")
            raise

        self._ticks_since_flush = 0
        self._notify()
        return self.record

    async def start(self) -> StationRecord:
        if self._start_in_flight:
            raise InvalidTransition("start", self.phase.value, "a start is already in progress")

        self._start_in_flight = True
        try:
            fresh = await self._fresh_read()
            if fresh.is_running or fresh.is_done:
                raise InvalidTransition("start", phase_of(fresh).value)

            now = await self._server_now()
            self.sync.start_ms = now
            self.sync.paused_ms = 0
            self.sync.pause_start_ms = None
            logger.info(f"Starting station {self.station_id} at {format_wall_clock(now)}")

            return await self._commit(
                {
                    "elapsed_time": 0,
                    "is_running": True,
                    "is_paused": False,
                    "is_done": False,
                    "start_time": format_wall_clock(now),
                    "end_time": None,
                    "paused_time": 0,
                    "pause_start_time": None,
                },
                loops="start",
            )
        finally:
            self._start_in_flight = False

    async def pause(self) -> StationRecord:
        fresh = await self._fresh_read()
        if not fresh.is_running or fresh.is_paused:
            raise InvalidTransition("pause", phase_of(fresh).value)

        now = await self._server_now()
        elapsed = compute_elapsed(self.sync, now) if self.sync.start_ms is not None else fresh.elapsed_time
        self.sync.pause_start_ms = now

        return await self._commit(
            {
                "elapsed_time": elapsed,
                "is_running": True,
                "is_paused": True,
                "paused_time": paused_seconds(self.sync),
                "pause_start_time": format_wall_clock(now),
            },
            loops="stop",
        )

    async def resume(self) -> StationRecord:
        fresh = await self._fresh_read()
        if not fresh.is_paused:
            raise InvalidTransition("resume", phase_of(fresh).value)

        now = await self._server_now()
        self.sync.paused_ms += pause_duration_ms(self.sync.pause_start_ms, now)
        self.sync.pause_start_ms = None
        elapsed = compute_elapsed(self.sync, now) if self.sync.start_ms is not None else fresh.elapsed_time

        return await self._commit(
            {
                "elapsed_time": elapsed,
                "is_running": True,
                "is_paused": False,
                "paused_time": paused_seconds(self.sync),
                "pause_start_time": None,
            },
            loops="start",
        )

    async def done(self) -> StationRecord:
        fresh = await self._fresh_read()
        if not fresh.is_running:
            raise InvalidTransition("finish", phase_of(fresh).value)

        now = await self._server_now()
        if fresh.is_paused:
            # Fold the in-flight pause so the final value excludes it
            self.sync.paused_ms += pause_duration_ms(self.sync.pause_start_ms, now)
            self.sync.pause_start_ms = None
        elapsed = compute_elapsed(self.sync, now) if self.sync.start_ms is not None else fresh.elapsed_time

        return await self._commit(
            {
                "elapsed_time": elapsed,
                "is_running": False,
                "is_paused": False,
                "is_done": True,
                "end_time": format_wall_clock(now),
                "paused_time": paused_seconds(self.sync),
                "pause_start_time": None,
            },
            loops="stop",
        )

    async def continue_session(self) -> StationRecord:
        """
        Reopen a finished session.

        A synthetic start of ``now - elapsed`` is stored so ticking picks
        up from the frozen value and a reload recomputes the same number.
        """
        fresh = await self._fresh_read()
        if not fresh.is_done:
            raise InvalidTransition("continue", phase_of(fresh).value)

        now = await self._server_now()
        elapsed = fresh.elapsed_time
        synthetic_start = now - elapsed * 1000
        self.sync.start_ms = synthetic_start
        self.sync.paused_ms = 0
        self.sync.pause_start_ms = None

        return await self._commit(
            {
                "elapsed_time": elapsed,
                "is_running": True,
                "is_paused": False,
                "is_done": False,
                "start_time": format_wall_clock(synthetic_start),
                "end_time": None,
                "paused_time": 0,
                "pause_start_time": None,
            },
            loops="start",
        )

    async def reset(self) -> StationRecord:
        self._stop_loops()
        self.sync.clear_run()
        return await self._commit(idle_fields())

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------

    def apply_paid_event(self, event: PaidEvent) -> bool:
        """
        Adopt an external reset for this station.

        The server has already written the reset, so nothing is written
        here. A short guard keeps the tick loop from overwriting it.
        Returns False when the event does not target this station or was
        already applied.
        """
        if not event.targets(self.station_id):
            return False
        if not self._applied_events.add(event.event_key):
            return False

        values = event.reset_values_for(self.station_id)
        base = self.record.model_dump() if self.record else {"id": self.station_id, "shop_id": self.shop_id}
        record = StationRecord.model_validate({**base, **values})

        self._stop_loops()
        self.sync.clear_run()
        self._adopt(record)
        self._guard_until_ms = self._monotonic_ms() + self.guard_seconds * 1000
        self.cache.save(self.record)
        logger.info(f"Applied paid event {event.event_key} to station {self.station_id}")

        self._notify()
        if self.phase is TimerPhase.RUNNING:
            self._start_loops()
        return True

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """
        Advance the displayed value from the local clock.

        Saves to the local cache every tick; returns True when a store
        flush is due.
        """
        if self.phase is not TimerPhase.RUNNING or self.guard_active:
            return False
        if self.sync.start_ms is None:
            return False

        self._elapsed = compute_elapsed(self.sync, self.estimated_server_now())
        self.record.elapsed_time = self._elapsed
        self.cache.save(self.record)

        self._ticks_since_flush += 1
        if self._ticks_since_flush >= self.flush_every_ticks:
            self._ticks_since_flush = 0
            return True
        return False

    async def flush(self) -> None:
        """
        Opportunistic elapsed write for the run this engine is ticking.

        The stored row is re-read first: when another client has paused,
        finished, reset or restarted the station, its state is adopted
        instead of written over. The write carries the run's start so the
        store can drop it if the row changes in between. A failure only
        costs one write.
        """
        record = self.record
        if record is None or self.phase is not TimerPhase.RUNNING:
            return
        try:
            stored = await self.store.read_station(self.shop_id, self.station_id)
        except StoreReadFailed as e:
            logger.warning(f"Skipping elapsed flush for station {self.station_id}: {e}")
            return

        if not same_run(stored, record):
            logger.info(f"Station {self.station_id} changed on another client, adopting stored state")
            self._adopt(stored)
            self.cache.save(self.record)
            self._notify()
            if self.phase is TimerPhase.RUNNING:
                self._start_loops()
            else:
                self._stop_loops()
            return

        try:
            await self.store.write_station(
                self.shop_id,
                {
                    "id": self.station_id,
                    "elapsed_time": self._elapsed,
                    "expected_start_time": record.start_time,
                },
            )
        except PersistenceWriteFailed as e:
            logger.warning(f"Elapsed flush failed for station {self.station_id}: {e}")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            if self.tick():
                await self.flush()

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.resync_seconds)
            await self.resync()

    def _start_loops(self) -> None:
        if not self._visible:
            return
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._tick_loop())
        if self._resync_task is None or self._resync_task.done():
            self._resync_task = asyncio.create_task(self._resync_loop())

    def _stop_loops(self) -> List[asyncio.Task]:
        stopped = []
        for task in (self._tick_task, self._resync_task):
            if task is not None and not task.done():
                task.cancel()
                stopped.append(task)
        self._tick_task = None
        self._resync_task = None
        return stopped

    # ------------------------------------------------------------------
    # Visibility & lifecycle
    # ------------------------------------------------------------------

    async def set_visible(self, visible: bool) -> None:
        """
        Hidden: stop ticking, leave the stored state alone.
        Visible: resync, re-read the station and pick ticking back up.
        """
        self._visible = visible
        if not visible:
            self._stop_loops()
            return

        await self.resync()
        try:
            record = await self.store.read_station(self.shop_id, self.station_id)
            self._adopt(record)
        except StoreReadFailed as e:
            logger.warning(f"Re-read on visibility failed for station {self.station_id}: {e}")
            self._recompute()
        if self.phase is TimerPhase.RUNNING:
            self._start_loops()
        else:
            self._stop_loops()

    async def close(self) -> None:
        stopped = self._stop_loops()
        if stopped:
            await asyncio.gather(*stopped, return_exceptions=True)
