"""ccxt-backed remote candle source with forward pagination and retry.

Wraps a ccxt.async_support exchange and turns fetch_ohlcv pages into
Candle batches for an arbitrary [from, to) span.

CRITICAL implementation notes:
- ccxt speaks milliseconds; the core speaks seconds. Convert only here.
- Some exchanges return klines newest first: always sort each page.
- A page can overlap the previous one; the store absorbs duplicates but
  the batch handed back is de-duplicated anyway.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

import ccxt.async_support as ccxt_async

from candle_mirror.config import SourceSettings
from candle_mirror.logging import get_logger
from candle_mirror.models import Candle, CandleInterval
from candle_mirror.sources.base import CandleSource

logger = get_logger(__name__)


def build_exchange(settings: SourceSettings) -> ccxt_async.Exchange:
    """Instantiate the configured ccxt async exchange."""
    exchange_cls = getattr(ccxt_async, settings.exchange_id)
    config: dict = {"enableRateLimit": True}
    api_key = settings.api_key.get_secret_value()
    if api_key:
        config["apiKey"] = api_key
        config["secret"] = settings.api_secret.get_secret_value()
    return exchange_cls(config)


class CcxtCandleSource(CandleSource):
    """Fetches historical OHLCV bars from a ccxt exchange.

    Usage:
        source = CcxtCandleSource(settings.source)
        await source.connect()
        try:
            candles = await source.fetch_candles("BTC/USDT", CandleInterval.ONE_HOUR, t0, t1)
        finally:
            await source.close()
    """

    def __init__(
        self,
        settings: SourceSettings,
        exchange: ccxt_async.Exchange | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._exchange = exchange if exchange is not None else build_exchange(settings)
        self._clock = clock

    async def connect(self) -> None:
        """Load markets so symbol lookups work."""
        logger.info("connecting_to_exchange", exchange=self._settings.exchange_id)
        markets = await self._exchange.load_markets()
        logger.info(
            "exchange_connected",
            exchange=self._settings.exchange_id,
            market_count=len(markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("exchange_connection_closed", exchange=self._settings.exchange_id)

    async def fetch_candles(
        self,
        instrument_id: str,
        interval: CandleInterval,
        from_ts: int,
        to_ts: int,
    ) -> list[Candle]:
        """Walk FORWARD from from_ts to to_ts collecting bars.

        Uses since/limit pagination. Stops on an empty page, when the page
        reaches to_ts, or when a page makes no progress.

        Raises:
            ValueError: max_retries is below 1, so no request was made.
        """
        until_ms = to_ts * 1000
        current_ms = from_ts * 1000
        fetched_at = int(self._clock())
        by_ts: dict[int, Candle] = {}

        while current_ms < until_ms:
            batch = await self._fetch_with_retry(
                self._exchange.fetch_ohlcv,
                instrument_id,
                timeframe=interval.value,
                since=current_ms,
                limit=self._settings.page_limit,
            )
            if not batch:
                break

            batch.sort(key=lambda row: row[0])
            for row in batch:
                if current_ms <= row[0] < until_ms:
                    candle = _row_to_candle(row, interval, fetched_at)
                    by_ts[candle.timestamp] = candle

            newest_ms = batch[-1][0]
            if newest_ms < current_ms:
                break  # No progress guard -- avoid infinite loop
            # Bar lengths vary (months), so resume just past the newest bar
            current_ms = newest_ms + 1

            if current_ms < until_ms:
                await asyncio.sleep(self._settings.fetch_batch_delay)

        candles = [by_ts[ts] for ts in sorted(by_ts)]
        logger.info(
            "candles_fetched",
            instrument_id=instrument_id,
            interval=interval.value,
            from_ts=from_ts,
            to_ts=to_ts,
            count=len(candles),
        )
        return candles

    async def _fetch_with_retry(self, fetch_fn: Callable, *args, **kwargs) -> list:
        """Execute a fetch function with exponential backoff retry.

        Retries up to max_retries times with delays: 1s, 2s, 4s, 8s, 16s.
        Handles ccxt rate limit errors with a longer delay multiplier.
        Re-raises on final failure.
        """
        max_retries = self._settings.max_retries
        base_delay = self._settings.retry_base_delay

        for attempt in range(max_retries):
            try:
                return await fetch_fn(*args, **kwargs)
            except ccxt_async.BaseError as e:
                if attempt == max_retries - 1:
                    logger.error(
                        "fetch_failed_permanently",
                        error=str(e),
                        attempts=max_retries,
                    )
                    raise

                delay = base_delay * (2**attempt)

                if isinstance(e, ccxt_async.RateLimitExceeded):
                    delay *= 3
                    logger.warning(
                        "rate_limit_exceeded",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                    )
                else:
                    logger.warning(
                        "fetch_retry",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )

                await asyncio.sleep(delay)

        raise ValueError(f"max_retries must be at least 1, got {max_retries}")


def _row_to_candle(row: list, interval: CandleInterval, fetched_at: int) -> Candle:
    """Convert a ccxt [ms, open, high, low, close, volume] row to a Candle."""
    timestamp = int(row[0]) // 1000
    volume = row[5] if row[5] is not None else 0
    return Candle(
        timestamp=timestamp,
        open=Decimal(str(row[1])),
        high=Decimal(str(row[2])),
        low=Decimal(str(row[3])),
        close=Decimal(str(row[4])),
        volume=int(volume),
        is_complete=interval.bar_end(timestamp) <= fetched_at,
    )
