"""Async SQLite database manager for the candle mirror.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from candle_mirror.exceptions import StoreUnavailable
from candle_mirror.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS candles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    instrument_id TEXT NOT NULL,
    open REAL,
    close REAL,
    high REAL,
    low REAL,
    volume INTEGER,
    time INTEGER NOT NULL,
    is_complete INTEGER NOT NULL DEFAULT 1,
    UNIQUE (instrument_id, time)
);

CREATE TABLE IF NOT EXISTS sync_checkpoints (
    instrument_id TEXT PRIMARY KEY,
    first_time INTEGER NOT NULL,
    last_time INTEGER NOT NULL
);
"""


class CandleDatabase:
    """Async SQLite connection manager for the candle mirror.

    Manages database lifecycle including the liveness probe, schema
    creation, WAL mode configuration, and clean resource cleanup.

    Usage:
        async with CandleDatabase("/path/to/candles.db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/candles.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open the database, probe it, configure pragmas, and create schema.

        Creates the parent directory if it does not exist. Safe to call on
        an existing file: every schema statement is idempotent.

        Raises:
            StoreUnavailable: The file cannot be opened or fails the probe.
        """
        try:
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)

            cursor = await self._connection.execute("SELECT 1")
            if await cursor.fetchone() != (1,):
                raise StoreUnavailable(self._db_path, "liveness probe failed")

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")

            await self._create_tables()
            await self._ensure_schema_version()
        except (OSError, aiosqlite.Error) as exc:
            await self._abort_connect()
            logger.error("candle_db_unavailable", db_path=self._db_path, error=str(exc))
            raise StoreUnavailable(self._db_path, str(exc)) from exc
        except StoreUnavailable:
            await self._abort_connect()
            raise

        logger.info("candle_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("candle_db_closed", db_path=self._db_path)

    async def _abort_connect(self) -> None:
        if self._connection is not None:
            try:
                await self._connection.close()
            except aiosqlite.Error:
                logger.warning("candle_db_close_failed", db_path=self._db_path)
            self._connection = None

    async def _create_tables(self) -> None:
        """Create all tables if they do not exist."""
        assert self._connection is not None
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.commit()

    async def _ensure_schema_version(self) -> None:
        """Insert schema version if not already set."""
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()
