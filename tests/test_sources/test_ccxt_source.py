"""Tests for CcxtCandleSource.

All tests use a mocked ccxt exchange object to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import ccxt.async_support as ccxt_async
import pytest

from candle_mirror.config import SourceSettings
from candle_mirror.models import CandleInterval
from candle_mirror.sources.ccxt_source import CcxtCandleSource, build_exchange
from factories import BASE_TS, HOUR

BASE_MS = BASE_TS * 1000
HOUR_MS = HOUR * 1000


def _row(i: int, volume: float | None = 12.7) -> list:
    """ccxt OHLCV row for the i-th hourly bar after BASE_TS."""
    return [BASE_MS + i * HOUR_MS, 100.5 + i, 101.25 + i, 99.75 + i, 100.0 + i, volume]


def _paged_exchange(rows: list[list]) -> MagicMock:
    """Exchange whose fetch_ohlcv serves rows newest-first, limit at a time."""

    async def fetch_ohlcv(
        symbol: str,
        timeframe: str = "1h",
        since: int = 0,
        limit: int = 1000,
        params: dict | None = None,
    ) -> list[list]:
        page = [r for r in rows if r[0] >= since][:limit]
        return list(reversed(page))

    exchange = MagicMock()
    exchange.fetch_ohlcv = AsyncMock(side_effect=fetch_ohlcv)
    exchange.load_markets = AsyncMock(return_value={"BTC/USDT": {}})
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def settings() -> SourceSettings:
    return SourceSettings(
        exchange_id="bybit",
        page_limit=3,
        max_retries=3,
        retry_base_delay=0.0,
        fetch_batch_delay=0.0,
    )


def _source(settings: SourceSettings, exchange: MagicMock, now: int = BASE_TS + 1_000 * HOUR) -> CcxtCandleSource:
    return CcxtCandleSource(settings, exchange=exchange, clock=lambda: now)


class TestFetchCandles:
    """Pagination, ordering, filtering and conversion."""

    @pytest.mark.asyncio
    async def test_pages_forward_and_stops_at_to(self, settings: SourceSettings) -> None:
        exchange = _paged_exchange([_row(i) for i in range(20)])
        source = _source(settings, exchange)

        candles = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 7 * HOUR
        )

        assert [c.timestamp for c in candles] == [BASE_TS + i * HOUR for i in range(7)]
        assert exchange.fetch_ohlcv.await_count == 3
        first_call = exchange.fetch_ohlcv.await_args_list[0]
        assert first_call.kwargs["since"] == BASE_MS
        assert first_call.kwargs["timeframe"] == "1h"
        assert first_call.kwargs["limit"] == 3

    @pytest.mark.asyncio
    async def test_empty_page_ends_pagination(self, settings: SourceSettings) -> None:
        exchange = _paged_exchange([_row(i) for i in range(4)])
        source = _source(settings, exchange)

        candles = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 50 * HOUR
        )

        assert len(candles) == 4
        assert exchange.fetch_ohlcv.await_count == 3

    @pytest.mark.asyncio
    async def test_rows_outside_span_are_dropped(self, settings: SourceSettings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(
            side_effect=[[_row(-1), _row(0), _row(1), _row(2)], []]
        )
        source = _source(settings, exchange)

        candles = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 2 * HOUR
        )

        assert [c.timestamp for c in candles] == [BASE_TS, BASE_TS + HOUR]

    @pytest.mark.asyncio
    async def test_row_conversion(self, settings: SourceSettings) -> None:
        exchange = _paged_exchange([_row(0), _row(1, volume=None)])
        now = BASE_TS + HOUR + HOUR // 2  # second bar still forming
        source = _source(settings, exchange, now=now)

        first, second = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 2 * HOUR
        )

        assert first.open == Decimal("100.5")
        assert first.high == Decimal("101.25")
        assert first.low == Decimal("99.75")
        assert first.close == Decimal("100.0")
        assert first.volume == 12
        assert first.is_complete is True
        assert second.volume == 0
        assert second.is_complete is False

    @pytest.mark.asyncio
    async def test_monthly_page_boundary_keeps_every_bar(self) -> None:
        """February is shorter than the nominal month; March must not be skipped."""
        feb, mar, apr, may = 1_706_745_600, 1_709_251_200, 1_711_929_600, 1_714_521_600
        rows = [[ts * 1000, 1.0, 1.0, 1.0, 1.0, 1.0] for ts in (feb, mar, apr)]
        settings = SourceSettings(page_limit=1, retry_base_delay=0.0, fetch_batch_delay=0.0)
        source = _source(settings, _paged_exchange(rows), now=mar)

        candles = await source.fetch_candles("BTC/USDT", CandleInterval.ONE_MONTH, feb, may)

        assert [c.timestamp for c in candles] == [feb, mar, apr]
        # February ends on March 1, not 30 days after it started
        assert [c.is_complete for c in candles] == [True, False, False]

    @pytest.mark.asyncio
    async def test_no_progress_guard(self, settings: SourceSettings) -> None:
        """An exchange that ignores since must not loop forever."""
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(return_value=[_row(0)])
        source = _source(settings, exchange)

        candles = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS + 5 * HOUR, BASE_TS + 9 * HOUR
        )

        assert candles == []
        assert exchange.fetch_ohlcv.await_count == 1


class TestRetry:
    """Exponential backoff around each page call."""

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, settings: SourceSettings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(
            side_effect=[ccxt_async.NetworkError("timeout"), [_row(0), _row(1)]]
        )
        source = _source(settings, exchange)

        candles = await source.fetch_candles(
            "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 2 * HOUR
        )

        assert len(candles) == 2
        assert exchange.fetch_ohlcv.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_reraises(self, settings: SourceSettings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(
            side_effect=ccxt_async.ExchangeNotAvailable("maintenance")
        )
        source = _source(settings, exchange)

        with pytest.raises(ccxt_async.ExchangeNotAvailable):
            await source.fetch_candles(
                "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 2 * HOUR
            )

        assert exchange.fetch_ohlcv.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_waits_longer(self) -> None:
        settings = SourceSettings(max_retries=2, retry_base_delay=1.0, fetch_batch_delay=0.0)
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(
            side_effect=[ccxt_async.RateLimitExceeded("slow down"), [_row(0)]]
        )
        source = _source(settings, exchange)

        with patch(
            "candle_mirror.sources.ccxt_source.asyncio.sleep", new=AsyncMock()
        ) as sleep:
            await source.fetch_candles(
                "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + HOUR
            )

        sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_zero_retries_raises_instead_of_returning_nothing(
        self, settings: SourceSettings
    ) -> None:
        settings.max_retries = 0
        exchange = _paged_exchange([_row(0), _row(1)])
        source = _source(settings, exchange)

        with pytest.raises(ValueError):
            await source.fetch_candles(
                "BTC/USDT", CandleInterval.ONE_HOUR, BASE_TS, BASE_TS + 2 * HOUR
            )

        exchange.fetch_ohlcv.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_and_close(self, settings: SourceSettings) -> None:
        exchange = _paged_exchange([])
        source = _source(settings, exchange)

        await source.connect()
        await source.close()

        exchange.load_markets.assert_awaited_once()
        exchange.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_build_exchange_uses_exchange_id(self) -> None:
        exchange = build_exchange(SourceSettings(exchange_id="binance"))
        try:
            assert isinstance(exchange, ccxt_async.binance)
            assert exchange.enableRateLimit is True
        finally:
            await exchange.close()
