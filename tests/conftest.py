"""Pytest configuration and fixtures."""

import asyncio
import tempfile
from decimal import Decimal
from functools import partial
from pathlib import Path

import pytest

from evtally.database import Database
from evtally.engine import ChargingEngine
from evtally.models import ChargingPoint, PointStatus, Station


@pytest.fixture(scope="session")
def event_loop_policy():
    """Set event loop policy for async tests."""
    return asyncio.get_event_loop_policy()


@pytest.fixture
async def temp_db():
    """Create a temporary SQLite database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    # Initialize database with schema
    db = Database(db_path)
    await db.initialize_schema()

    yield db

    # Cleanup
    await db.disconnect()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
async def db_connection(temp_db):
    """Provide a database connection for testing."""
    conn = await temp_db.connect()
    yield conn
    # Connection is cleaned up by temp_db fixture


async def seed_station(
    engine: ChargingEngine,
    station_id: str = "ST1",
    price_per_kwh: str = "5000",
    points: int = 2,
    idle_fee_per_minute: str = "1000",
    power_kw: str = "50",
    connector_type: str = "CCS2",
    vehicle_compatibility: list[str] | None = None,
):
    """Create a station with ``points`` Available points named <station>-P1, <station>-P2, ..."""
    station = await engine.station_repo.upsert(
        Station(
            id=station_id,
            name=f"Station {station_id}",
            price_per_kwh=Decimal(price_per_kwh),
            vehicle_compatibility=vehicle_compatibility or [],
        )
    )
    created = []
    for n in range(1, points + 1):
        created.append(
            await engine.point_repo.upsert(
                ChargingPoint(
                    id=f"{station_id}-P{n}",
                    station_id=station_id,
                    name=f"Point {n}",
                    power_kw=Decimal(power_kw),
                    connector_type=connector_type,
                    status=PointStatus.AVAILABLE,
                    idle_fee_per_minute=Decimal(idle_fee_per_minute),
                )
            )
        )
    return station, created


@pytest.fixture
async def engine(db_connection):
    """A ChargingEngine with no plugins on a fresh database."""
    return ChargingEngine(db_connection)


@pytest.fixture
def seed(engine):
    """seed_station bound to the engine fixture."""
    return partial(seed_station, engine)


@pytest.fixture
async def station(engine):
    """Station ST1 (5000/kWh) with points ST1-P1 and ST1-P2 (50 kW, 1000/idle minute)."""
    station, _ = await seed_station(engine)
    return station
