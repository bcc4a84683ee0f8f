"""Entry point for the candle mirror.

Loads settings, connects the ccxt candle source, reconciles every configured
instrument against the local SQLite mirror, logs what is stored, and exits.

Component wiring order:
1. AppSettings (configuration)
2. Logging setup
3. CcxtCandleSource (remote bars)
4. CandleStorage (database, store, reconciler, working-set cache)
"""

import asyncio
import time

from candle_mirror.config import AppSettings
from candle_mirror.logging import get_logger, setup_logging
from candle_mirror.sources.ccxt_source import CcxtCandleSource
from candle_mirror.storage import CandleStorage

_DAY = 86_400


async def run(settings: AppSettings | None = None) -> None:
    """Sync the configured instruments once and report the store status."""
    # 1. Load settings
    settings = settings or AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("candle_mirror.main")

    instruments = [i.to_instrument() for i in settings.instruments]
    if not instruments:
        logger.warning("no_instruments_configured")
        return

    now = int(time.time())
    want_from = now - settings.storage.lookback_days * _DAY
    window_from = None
    if settings.storage.window_days is not None:
        window_from = now - settings.storage.window_days * _DAY

    # 3. Create candle source
    source = CcxtCandleSource(settings.source)
    try:
        await source.connect()

        # 4. Open storage (reconciles and loads working sets)
        storage = await CandleStorage.open(
            settings.storage.db_path,
            source,
            instruments,
            want_from,
            update=settings.storage.update,
            window_from=window_from,
        )
        async with storage:
            status = await storage.store.get_data_status()
            logger.info("candle_mirror_status", **status)
            for instrument_id, instrument in storage.reconciler.instruments.items():
                logger.info(
                    "instrument_synced",
                    ticker=instrument.ticker,
                    first_synced=instrument.first_synced,
                    last_synced=instrument.last_synced,
                    stored=await storage.store.count_candles(instrument_id),
                    in_memory=len(storage.cache.get(instrument_id).candles),
                )
    finally:
        await source.close()
        logger.info("candle_mirror_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
