import os

# Must be set before anything imports app.db.session
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, Dict, List  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.db.base import Base  # noqa: E402
from app.db import models  # noqa: E402,F401
from app.db.models.station import Station as StationORM  # noqa: E402
from app.db.models.subscription import (  # noqa: E402
    Subscription as SubscriptionORM,
    SubscriptionPlan as SubscriptionPlanORM,
)
from app.features.stations.domain import StationRecord  # noqa: E402
from app.services.timer.errors import (  # noqa: E402
    PersistenceWriteFailed,
    ServerTimeUnavailable,
    StoreReadFailed,
)
from app.services.timer.models.timer_state import ServerTime  # noqa: E402

# A whole second, so stored wall-clock strings round-trip exactly
SERVER_EPOCH_MS = 1_760_000_000_000
SHOP_ID = 7


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "integration: needs a real PostgreSQL database (TEST_DATABASE_URL)"
    )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def plans(db_session):
    rows = [
        SubscriptionPlanORM(
            plan_code="FREE_TRIAL", plan_name="Free Trial", price_inr=0,
            duration_days=14, features={"max_stations": 3}, display_order=0,
        ),
        SubscriptionPlanORM(
            plan_code="BASIC", plan_name="Basic", price_inr=999,
            duration_days=30, features={"max_stations": 5}, display_order=1,
        ),
        SubscriptionPlanORM(
            plan_code="PRO", plan_name="Pro", price_inr=1999,
            duration_days=30, features={"max_stations": 20}, display_order=2,
        ),
        SubscriptionPlanORM(
            plan_code="LEGACY", plan_name="Legacy", price_inr=499,
            duration_days=30, features={}, is_active=False, display_order=9,
        ),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return {row.plan_code: row for row in rows}


@pytest.fixture
def make_subscription(db_session, plans, now):
    async def _make(
        shop_id: int = SHOP_ID,
        plan_code: str = "BASIC",
        expires_in: timedelta = timedelta(days=10),
        computed_status: str = "active",
        last_check_ago: timedelta = timedelta(minutes=5),
        grace_ends_at: datetime | None = None,
    ) -> SubscriptionORM:
        row = SubscriptionORM(
            shop_id=shop_id,
            current_plan_code=plan_code,
            started_at=now - timedelta(days=20),
            expires_at=now + expires_in,
            grace_ends_at=grace_ends_at,
            computed_status=computed_status,
            last_status_check_at=now - last_check_ago,
            created_at=now - timedelta(days=20),
        )
        db_session.add(row)
        await db_session.commit()
        return row
    return _make


@pytest.fixture
def make_station(db_session):
    async def _make(station_id: int, shop_id: int = SHOP_ID, **fields: Any) -> StationORM:
        row = StationORM(
            id=station_id,
            shop_id=shop_id,
            name=fields.pop("name", f"PS-{station_id}"),
            game_type=fields.pop("game_type", "Playstation"),
            **fields,
        )
        db_session.add(row)
        await db_session.commit()
        return row
    return _make


# ============================================================================
# Timer fakes
# ============================================================================

class FakeClock:
    """
    Server, client wall and client monotonic clocks under test control.

    ``advance`` moves all three together; ``skew_wall`` drifts only the
    client wall clock.
    """

    def __init__(self, server_ms: int = SERVER_EPOCH_MS):
        self.server_ms = server_ms
        self.monotonic = 5_000.0
        self.wall = float(server_ms - 2_000)

    def advance(self, seconds: float) -> None:
        self.server_ms += int(seconds * 1000)
        self.monotonic += seconds * 1000
        self.wall += seconds * 1000

    def advance_client_only(self, seconds: float) -> None:
        self.monotonic += seconds * 1000
        self.wall += seconds * 1000

    def skew_wall(self, seconds: float) -> None:
        self.wall += seconds * 1000

    def monotonic_ms(self) -> float:
        return self.monotonic

    def wall_ms(self) -> float:
        return self.wall


class FakeClockService:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.available = True
        self.calls = 0

    async def get_server_time(self) -> ServerTime:
        self.calls += 1
        if not self.available:
            raise ServerTimeUnavailable("clock offline")
        return ServerTime(timestamp=self.clock.server_ms)


class FakeStationStore:
    """In-memory Station Store with switchable failures"""

    def __init__(self):
        self.rows: Dict[int, StationRecord] = {}
        self.writes: List[Dict[str, Any]] = []
        self.fail_reads = False
        self.fail_writes = False

    def put(self, record: StationRecord) -> None:
        self.rows[record.id] = record

    async def read_station(self, shop_id: int, station_id: int) -> StationRecord:
        if self.fail_reads or station_id not in self.rows:
            raise StoreReadFailed(f"station {station_id} unavailable")
        return self.rows[station_id].model_copy(deep=True)

    async def write_station(self, shop_id: int, partial: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise PersistenceWriteFailed("store rejected write")
        self.writes.append(dict(partial))
        fields = dict(partial)
        expected_start = fields.pop("expected_start_time", None)
        row = self.rows[fields["id"]]
        if expected_start is not None and not (
            row.is_running and not row.is_paused and row.start_time == expected_start
        ):
            return
        self.rows[fields["id"]] = StationRecord.model_validate({**row.model_dump(), **fields})

    async def list_stations(self, shop_id: int) -> List[StationRecord]:
        return [row.model_copy(deep=True) for row in self.rows.values()]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def clock_service(fake_clock):
    return FakeClockService(fake_clock)


@pytest.fixture
def station_store():
    store = FakeStationStore()
    store.put(StationRecord(id=1, shop_id=SHOP_ID, name="PS-1"))
    store.put(StationRecord(id=2, shop_id=SHOP_ID, name="PS-2"))
    return store


@pytest.fixture
async def make_engine(fake_clock, clock_service, station_store):
    from app.services.timer.engine import TimerEngine

    engines = []

    def _make(station_id: int = 1, **kwargs: Any) -> TimerEngine:
        kwargs.setdefault("tick_seconds", 3600)
        kwargs.setdefault("resync_seconds", 3600)
        engine = TimerEngine(
            shop_id=SHOP_ID,
            station_id=station_id,
            clock_service=clock_service,
            store=station_store,
            monotonic_ms=fake_clock.monotonic_ms,
            wall_ms=fake_clock.wall_ms,
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        await engine.close()


# ============================================================================
# HTTP
# ============================================================================

def bearer(shop_id=SHOP_ID, role: str = "SHOP_OWNER", user_id: int = 1) -> Dict[str, str]:
    from app.middleware.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, shop_id, role)}"}


@pytest.fixture
async def client(session_factory):
    """ASGI client against the app, with get_db bound to the test database"""
    from httpx import ASGITransport, AsyncClient

    from app.db import get_db
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
