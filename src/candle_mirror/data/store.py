"""Typed SQLite read/write abstraction for candles and sync checkpoints.

Provides CandleStore with typed methods for committing candle batches,
upserting per-instrument checkpoints, and reading candles back in time
order. All SQL is isolated behind this interface.

CRITICAL: A checkpoint is only written after its candles are committed.
Duplicate (instrument_id, time) rows are absorbed by ON CONFLICT DO NOTHING;
any other write error rolls back the whole batch.
"""

from collections.abc import Sequence

import aiosqlite

from candle_mirror.data.database import CandleDatabase
from candle_mirror.exceptions import CheckpointInconsistent, CommitFailed
from candle_mirror.logging import get_logger
from candle_mirror.models import Candle, Instrument, SyncCheckpoint
from candle_mirror.pricing import PriceConverter, quantize_price

logger = get_logger(__name__)

_INSERT_CANDLE_SQL = (
    "INSERT INTO candles "
    "(instrument_id, open, close, high, low, volume, time, is_complete) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT (instrument_id, time) DO NOTHING"
)

_UPSERT_CHECKPOINT_SQL = (
    "INSERT INTO sync_checkpoints (instrument_id, first_time, last_time) "
    "VALUES (?, ?, ?) "
    "ON CONFLICT (instrument_id) DO UPDATE SET "
    "first_time = excluded.first_time, last_time = excluded.last_time"
)

_SELECT_CANDLES_SQL = (
    "SELECT time, open, high, low, close, volume, is_complete FROM candles"
)


class CandleStore:
    """Async SQLite store for mirrored candles and their sync checkpoints.

    Wraps CandleDatabase with typed read/write methods. All SQL access
    goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with CandleDatabase("data/candles.db") as database:
            store = CandleStore(database)
            inserted = await store.commit_candles(instrument, now, candles)
    """

    def __init__(
        self,
        database: CandleDatabase,
        price_converter: PriceConverter = quantize_price,
    ) -> None:
        self._database = database
        self._to_price = price_converter

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def commit_candles(
        self,
        instrument: Instrument,
        checkpoint_time: int,
        candles: Sequence[Candle],
    ) -> int:
        """Commit a candle batch in one transaction, then advance the checkpoint.

        The checkpoint row becomes (instrument.first_synced, checkpoint_time).
        Returns the number of rows actually inserted (duplicates excluded).

        Raises:
            CommitFailed: A non-duplicate insert error; nothing from the batch
                was kept.
            CheckpointInconsistent: The candles are durable but the checkpoint
                upsert failed.
        """
        instrument_id = instrument.instrument_id
        db = self._database.db

        data = [
            (
                instrument_id,
                float(c.open),
                float(c.close),
                float(c.high),
                float(c.low),
                c.volume,
                c.timestamp,
                1 if c.is_complete else 0,
            )
            for c in candles
        ]

        try:
            inserted = 0
            if data:
                cursor = await db.executemany(_INSERT_CANDLE_SQL, data)
                inserted = cursor.rowcount
            await db.commit()
        except aiosqlite.Error as exc:
            await db.rollback()
            logger.error(
                "candle_commit_rolled_back",
                instrument_id=instrument_id,
                candles=len(data),
                error=str(exc),
            )
            raise CommitFailed(instrument_id, len(data), str(exc)) from exc

        logger.info(
            "candles_committed",
            ticker=instrument.ticker,
            total=len(data),
            inserted=inserted,
        )

        first_synced = (
            instrument.first_synced
            if instrument.first_synced is not None
            else checkpoint_time
        )
        await self._upsert_checkpoint(instrument_id, first_synced, checkpoint_time)
        return inserted

    async def _upsert_checkpoint(
        self, instrument_id: str, first_synced: int, last_synced: int
    ) -> None:
        db = self._database.db
        try:
            await db.execute(
                _UPSERT_CHECKPOINT_SQL, (instrument_id, first_synced, last_synced)
            )
            await db.commit()
        except aiosqlite.Error as exc:
            await db.rollback()
            logger.warning(
                "checkpoint_update_failed",
                instrument_id=instrument_id,
                last_synced=last_synced,
                error=str(exc),
            )
            raise CheckpointInconsistent(instrument_id, last_synced, str(exc)) from exc

        logger.debug(
            "checkpoint_updated",
            instrument_id=instrument_id,
            first_synced=first_synced,
            last_synced=last_synced,
        )

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def read_checkpoints(self) -> dict[str, SyncCheckpoint]:
        """Return every committed checkpoint keyed by instrument id."""
        cursor = await self._database.db.execute(
            "SELECT instrument_id, first_time, last_time FROM sync_checkpoints"
        )
        rows = await cursor.fetchall()
        checkpoints = {
            row[0]: SyncCheckpoint(
                instrument_id=row[0],
                first_synced=row[1],
                last_synced=row[2],
            )
            for row in rows
        }
        logger.info("checkpoints_read", instruments=len(checkpoints))
        return checkpoints

    async def read_all_candles(self, instrument: Instrument) -> list[Candle]:
        """Return every stored candle for an instrument, ordered by time ASC."""
        return await self.read_candles_in_range(instrument)

    async def read_candles_in_range(
        self,
        instrument: Instrument,
        from_ts: int | None = None,
        to_ts: int | None = None,
    ) -> list[Candle]:
        """Query candles for an instrument within an optional time range.

        Both bounds are inclusive. Prices are converted back onto the
        instrument's price step. Returns list of Candle ordered by time ASC.
        """
        conditions = ["instrument_id = ?"]
        params: list = [instrument.instrument_id]

        if from_ts is not None:
            conditions.append("time >= ?")
            params.append(from_ts)
        if to_ts is not None:
            conditions.append("time <= ?")
            params.append(to_ts)

        where = " AND ".join(conditions)
        cursor = await self._database.db.execute(
            f"{_SELECT_CANDLES_SQL} WHERE {where} ORDER BY time ASC",
            params,
        )
        rows = await cursor.fetchall()
        step = instrument.price_step
        candles = [
            Candle(
                timestamp=row[0],
                open=self._to_price(row[1], step),
                high=self._to_price(row[2], step),
                low=self._to_price(row[3], step),
                close=self._to_price(row[4], step),
                volume=row[5],
                is_complete=bool(row[6]),
            )
            for row in rows
        ]
        logger.debug(
            "candles_read",
            ticker=instrument.ticker,
            count=len(candles),
            from_ts=from_ts,
            to_ts=to_ts,
        )
        return candles

    async def count_candles(self, instrument_id: str | None = None) -> int:
        """Count stored candles, for one instrument or across the store."""
        if instrument_id is None:
            cursor = await self._database.db.execute("SELECT COUNT(*) FROM candles")
        else:
            cursor = await self._database.db.execute(
                "SELECT COUNT(*) FROM candles WHERE instrument_id = ?",
                (instrument_id,),
            )
        return (await cursor.fetchone())[0]

    async def get_data_status(self) -> dict:
        """Get aggregate store status for logging.

        Returns dict with total_instruments, total_candles, earliest_time,
        latest_time, last_sync.
        """
        db = self._database.db

        cursor = await db.execute("SELECT COUNT(*) FROM sync_checkpoints")
        total_instruments = (await cursor.fetchone())[0]

        cursor = await db.execute("SELECT COUNT(*), MIN(time), MAX(time) FROM candles")
        total_candles, earliest_time, latest_time = await cursor.fetchone()

        cursor = await db.execute("SELECT MAX(last_time) FROM sync_checkpoints")
        last_sync = (await cursor.fetchone())[0]

        return {
            "total_instruments": total_instruments,
            "total_candles": total_candles,
            "earliest_time": earliest_time,
            "latest_time": latest_time,
            "last_sync": last_sync,
        }
