"""Shared test fixtures for the candle mirror."""

from collections.abc import AsyncIterator
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

from candle_mirror.data.database import CandleDatabase
from candle_mirror.data.store import CandleStore
from candle_mirror.models import CandleInterval, Instrument
from factories import BASE_TS, HOUR, FakeCandleSource, FakeClock


@pytest.fixture
def instrument() -> Instrument:
    """BTC/USDT hourly with a 0.01 price step."""
    return Instrument(
        instrument_id="BTC/USDT",
        ticker="BTC",
        interval=CandleInterval.ONE_HOUR,
        price_step=Decimal("0.01"),
    )


@pytest.fixture
def fake_source() -> FakeCandleSource:
    """Empty in-memory candle source; tests fill .bars."""
    return FakeCandleSource()


@pytest.fixture
def clock() -> FakeClock:
    """Clock parked 100 hours after BASE_TS."""
    return FakeClock(BASE_TS + 100 * HOUR)


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[CandleDatabase]:
    """Connected CandleDatabase on a temp file, closed after the test."""
    db = CandleDatabase(str(tmp_path / "candles.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database: CandleDatabase) -> CandleStore:
    return CandleStore(database)
