"""Candle storage facade.

One object per open SQLite mirror: owns the database handle, store,
working-set cache and reconciler, and ties them to a single open/close
lifecycle.
"""

from collections.abc import Callable, Sequence
from typing import Self

from candle_mirror.data.database import CandleDatabase
from candle_mirror.data.store import CandleStore
from candle_mirror.logging import get_logger
from candle_mirror.models import Candle, Instrument
from candle_mirror.pricing import PriceConverter, quantize_price
from candle_mirror.sources.base import CandleSource
from candle_mirror.sync.reconciler import Reconciler
from candle_mirror.sync.working_set import WorkingSetCache

logger = get_logger(__name__)


class CandleStorage:
    """Local candle mirror with in-memory range queries.

    Usage:
        storage = await CandleStorage.open(
            "data/candles.db", source, instruments, want_from, update=True
        )
        async with storage:
            bars = storage.candles("BTC/USDT", from_ts, to_ts)
            await storage.update("BTC/USDT")

    Callers must not query while an update is in flight, and must not
    close while one is running.
    """

    def __init__(
        self,
        database: CandleDatabase,
        source: CandleSource,
        clock: Callable[[], int] | None = None,
        price_converter: PriceConverter = quantize_price,
    ) -> None:
        self._database = database
        self.store = CandleStore(database, price_converter)
        self.cache = WorkingSetCache()
        self.reconciler = Reconciler(self.store, source, self.cache, clock=clock)

    @classmethod
    async def open(
        cls,
        db_path: str,
        source: CandleSource,
        instruments: Sequence[Instrument],
        want_from: int,
        *,
        update: bool = False,
        window_from: int | None = None,
        window_to: int | None = None,
        clock: Callable[[], int] | None = None,
        price_converter: PriceConverter = quantize_price,
    ) -> Self:
        """Open the SQLite file, reconcile every instrument, load working sets.

        Raises:
            StoreUnavailable: The database cannot be opened.
            MirrorError: Any reconciliation failure; the database is closed
                before it propagates.
        """
        database = CandleDatabase(db_path)
        await database.connect()
        storage = cls(database, source, clock=clock, price_converter=price_converter)
        try:
            await storage.reconciler.reconcile(
                instruments,
                want_from,
                update=update,
                window_from=window_from,
                window_to=window_to,
            )
        except BaseException:
            await database.close()
            raise
        return storage

    def candles(self, instrument_id: str, from_ts: int, to_ts: int) -> list[Candle]:
        """Range query against the working set. No I/O."""
        return self.cache.query(instrument_id, from_ts, to_ts)

    async def candles_all(self, instrument_id: str) -> list[Candle]:
        """Read the full durable history for a reconciled instrument."""
        instrument = self.reconciler.get_instrument(instrument_id)
        candles = await self.store.read_all_candles(instrument)
        logger.info(
            "candles_read_from_storage",
            ticker=instrument.ticker,
            count=len(candles),
        )
        return candles

    async def update(self, instrument_id: str) -> int:
        """Catch an instrument up to now. Returns candles inserted."""
        return await self.reconciler.update_to_now(instrument_id)

    async def load_history(self, instrument: Instrument, from_ts: int) -> int:
        """Download [from_ts, now) for a new instrument and make it queryable."""
        return await self.reconciler.load_history(instrument, from_ts)

    async def close(self) -> None:
        """Release the SQLite handle and drop the working sets."""
        self.cache.clear()
        await self._database.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
