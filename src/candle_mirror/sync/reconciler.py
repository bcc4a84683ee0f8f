"""Checkpoint-driven candle reconciliation.

Brings the store's coverage for each requested instrument in line with a
desired start time, fetching only what is missing, then loads the working
set used for range queries.

Per instrument, against the committed checkpoint:
- no checkpoint              -> fetch [want_from, now), checkpoint (want_from, now)
- want_from >= first_synced  -> covered, adopt the checkpoint, no fetch
- want_from <  first_synced  -> fetch [want_from, first_synced),
                                checkpoint (want_from, previous last_synced)

Any failure aborts the pass. Instruments finished before the failure stay
committed; nothing is rolled back across instruments.
"""

import dataclasses
import time
from collections.abc import Callable, Sequence

from candle_mirror.data.store import CandleStore
from candle_mirror.exceptions import (
    InstrumentAlreadySynced,
    InstrumentUnknown,
    RemoteFetchFailed,
)
from candle_mirror.logging import get_logger, instrument_context
from candle_mirror.models import Candle, Instrument, SyncCheckpoint, WorkingSet
from candle_mirror.sources.base import CandleSource
from candle_mirror.sync.working_set import WorkingSetCache

logger = get_logger(__name__)


def _unix_now() -> int:
    return int(time.time())


class Reconciler:
    """Sole owner of the instrument descriptors and sole checkpoint writer.

    Descriptors are copied in and replaced wholesale after each successful
    commit, so a failed fetch or commit leaves the previous one in place.

    Args:
        store: Durable candle store.
        source: Remote candle source.
        cache: Working-set cache to (re)load after reconciliation.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        store: CandleStore,
        source: CandleSource,
        cache: WorkingSetCache,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._cache = cache
        self._clock = clock or _unix_now
        self._instruments: dict[str, Instrument] = {}

    @property
    def instruments(self) -> dict[str, Instrument]:
        """Snapshot of the known instrument descriptors."""
        return {k: dataclasses.replace(v) for k, v in self._instruments.items()}

    def get_instrument(self, instrument_id: str) -> Instrument:
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            raise InstrumentUnknown(instrument_id)
        return dataclasses.replace(instrument)

    def ticker(self, instrument_id: str) -> str:
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            return "not found"
        return instrument.ticker

    # ──────────────────────────────────────────────
    # Full reconciliation
    # ──────────────────────────────────────────────

    async def reconcile(
        self,
        instruments: Sequence[Instrument],
        want_from: int,
        *,
        update: bool = False,
        window_from: int | None = None,
        window_to: int | None = None,
    ) -> None:
        """Backfill missing history, optionally catch up to now, load working sets.

        Instruments are processed in the given order and the pass stops at
        the first failure.

        Args:
            instruments: Instruments to mirror. Their sync fields are ignored.
            want_from: Oldest timestamp the store must cover.
            update: Also fetch [last_synced, now) for every instrument.
            window_from: Lower bound of the working set (None = all history).
            window_to: Upper bound of the working set (None = all history).
        """
        checkpoints = await self._store.read_checkpoints()
        logger.info(
            "reconcile_started",
            instruments=len(instruments),
            stored_instruments=len(checkpoints),
            want_from=want_from,
            update=update,
        )

        for requested in instruments:
            with instrument_context(requested.instrument_id, requested.ticker):
                await self._sync_instrument(
                    requested, want_from, checkpoints.get(requested.instrument_id)
                )

        if update:
            for requested in instruments:
                await self.update_to_now(requested.instrument_id)

        for requested in instruments:
            await self.load_working_set(requested.instrument_id, window_from, window_to)

        logger.info("reconcile_complete", instruments=len(instruments))

    async def _sync_instrument(
        self,
        requested: Instrument,
        want_from: int,
        checkpoint: SyncCheckpoint | None,
    ) -> None:
        instrument_id = requested.instrument_id

        if checkpoint is None:
            logger.info("instrument_not_in_storage", want_from=want_from)
            now = self._clock()
            candles = await self._fetch(requested, want_from, now)
            synced = dataclasses.replace(
                requested, first_synced=want_from, last_synced=now
            )
            await self._store.commit_candles(synced, now, candles)
            self._instruments[instrument_id] = synced
            return

        if want_from >= checkpoint.first_synced:
            self._instruments[instrument_id] = dataclasses.replace(
                requested,
                first_synced=checkpoint.first_synced,
                last_synced=checkpoint.last_synced,
            )
            logger.debug(
                "instrument_covered",
                first_synced=checkpoint.first_synced,
                last_synced=checkpoint.last_synced,
            )
            return

        logger.info(
            "older_candles_missing",
            want_from=want_from,
            first_synced=checkpoint.first_synced,
        )
        candles = await self._fetch(requested, want_from, checkpoint.first_synced)
        synced = dataclasses.replace(
            requested, first_synced=want_from, last_synced=checkpoint.last_synced
        )
        await self._store.commit_candles(synced, checkpoint.last_synced, candles)
        self._instruments[instrument_id] = synced

    # ──────────────────────────────────────────────
    # Incremental operations
    # ──────────────────────────────────────────────

    async def update_to_now(self, instrument_id: str) -> int:
        """Fetch [last_synced, now), commit it, and extend the working set.

        A loaded working set that reaches last_synced gets the new bars
        appended directly instead of being reloaded from storage.

        Returns the number of candles inserted into the store.

        Raises:
            InstrumentUnknown: The instrument was never reconciled.
        """
        instrument = self._instruments.get(instrument_id)
        if instrument is None or instrument.last_synced is None:
            raise InstrumentUnknown(instrument_id)

        with instrument_context(instrument_id, instrument.ticker):
            logger.info("candles_updating", last_synced=instrument.last_synced)
            now = self._clock()
            candles = await self._fetch(instrument, instrument.last_synced, now)
            synced = dataclasses.replace(instrument, last_synced=now)
            inserted = await self._store.commit_candles(synced, now, candles)
        self._instruments[instrument_id] = synced

        # A working set that stops short of last_synced would get a hole; leave it be
        if instrument_id in self._cache:
            covered_to = self._cache.get(instrument_id).covered_to
            if covered_to is not None and covered_to >= instrument.last_synced:
                self._cache.append(instrument_id, candles, covered_to=now)
        return inserted

    async def load_history(self, instrument: Instrument, from_ts: int) -> int:
        """Initial download of [from_ts, now) for a single new instrument.

        Registers the descriptor and loads the fetched batch straight into
        the working set. Returns the number of candles inserted.

        Raises:
            InstrumentAlreadySynced: The instrument is registered or has a
                stored checkpoint. Use reconcile() to extend its history.
        """
        instrument_id = instrument.instrument_id
        known = self._instruments.get(instrument_id)
        if known is not None and known.first_synced is not None and known.last_synced is not None:
            raise InstrumentAlreadySynced(instrument_id, known.first_synced, known.last_synced)
        checkpoint = (await self._store.read_checkpoints()).get(instrument_id)
        if checkpoint is not None:
            raise InstrumentAlreadySynced(
                instrument_id, checkpoint.first_synced, checkpoint.last_synced
            )

        with instrument_context(instrument_id, instrument.ticker):
            now = self._clock()
            candles = await self._fetch(instrument, from_ts, now)
            synced = dataclasses.replace(
                instrument, first_synced=from_ts, last_synced=now
            )
            inserted = await self._store.commit_candles(synced, now, candles)
        self._instruments[instrument_id] = synced
        self._cache.load(instrument_id, candles, covered_from=from_ts, covered_to=now)
        return inserted

    async def load_working_set(
        self,
        instrument_id: str,
        window_from: int | None = None,
        window_to: int | None = None,
    ) -> WorkingSet:
        """Reload an instrument's working set from the store.

        Coverage is the intersection of the requested window and the
        instrument's synced range.
        """
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            raise InstrumentUnknown(instrument_id)

        candles = await self._store.read_candles_in_range(
            instrument, window_from, window_to
        )
        covered_from = _later(window_from, instrument.first_synced)
        covered_to = _earlier(window_to, instrument.last_synced)
        return self._cache.load(instrument_id, candles, covered_from, covered_to)

    # ──────────────────────────────────────────────
    # Source access
    # ──────────────────────────────────────────────

    async def _fetch(self, instrument: Instrument, from_ts: int, to_ts: int) -> list[Candle]:
        """Call the remote source, wrapping any failure in RemoteFetchFailed."""
        try:
            return await self._source.fetch_candles(
                instrument.instrument_id, instrument.interval, from_ts, to_ts
            )
        except Exception as exc:
            logger.error(
                "remote_fetch_failed",
                from_ts=from_ts,
                to_ts=to_ts,
                error=str(exc),
            )
            raise RemoteFetchFailed(
                instrument.instrument_id, from_ts, to_ts, str(exc)
            ) from exc


def _later(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _earlier(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)
