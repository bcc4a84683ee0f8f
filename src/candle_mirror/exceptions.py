"""Custom exceptions for the candle mirror.

Every error the storage, sync and query layers raise derives from
MirrorError and carries the instrument and time range it concerns, so a
caller can decide whether to retry, backfill or give up.
"""


class MirrorError(Exception):
    """Base exception for all candle mirror errors."""


class StoreUnavailable(MirrorError):
    """Raised when the SQLite file cannot be opened, probed or initialized."""

    def __init__(self, db_path: str, reason: str = "") -> None:
        self.db_path = db_path
        message = f"candle store unavailable at {db_path!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RemoteFetchFailed(MirrorError):
    """Raised when the remote candle source fails for a requested span."""

    def __init__(self, instrument_id: str, from_ts: int, to_ts: int, reason: str = "") -> None:
        self.instrument_id = instrument_id
        self.from_ts = from_ts
        self.to_ts = to_ts
        super().__init__(
            f"fetch failed for {instrument_id} [{from_ts}, {to_ts}): {reason}"
        )


class CommitFailed(MirrorError):
    """Raised when a non-duplicate write error rolls back a candle batch."""

    def __init__(self, instrument_id: str, candle_count: int, reason: str = "") -> None:
        self.instrument_id = instrument_id
        self.candle_count = candle_count
        super().__init__(
            f"commit of {candle_count} candles for {instrument_id} rolled back: {reason}"
        )


class CheckpointInconsistent(MirrorError):
    """Raised when candles committed but the sync checkpoint upsert failed.

    The candles are durable; the stored checkpoint understates coverage.
    The next reconciliation re-fetches the span and the duplicate bars are
    absorbed, so this heals on its own.
    """

    def __init__(self, instrument_id: str, checkpoint_time: int, reason: str = "") -> None:
        self.instrument_id = instrument_id
        self.checkpoint_time = checkpoint_time
        super().__init__(
            f"checkpoint for {instrument_id} not advanced to {checkpoint_time}: {reason}"
        )


class InstrumentUnknown(MirrorError):
    """Raised for an instrument that was never reconciled or loaded."""

    def __init__(self, instrument_id: str) -> None:
        self.instrument_id = instrument_id
        super().__init__(
            f"{instrument_id} not found in candle storage, reconcile or load_history() first"
        )


class RangeNotCovered(MirrorError):
    """Raised when a query window starts outside the loaded candle coverage."""

    def __init__(
        self,
        instrument_id: str,
        from_ts: int,
        covered_from: int | None = None,
        covered_to: int | None = None,
    ) -> None:
        self.instrument_id = instrument_id
        self.from_ts = from_ts
        self.covered_from = covered_from
        self.covered_to = covered_to
        super().__init__(
            f"{instrument_id} candles not found in storage from={from_ts} "
            f"(covered {covered_from}..{covered_to}), backfill or update first"
        )


class InstrumentAlreadySynced(MirrorError):
    """Raised when an initial download is requested for a mirrored instrument."""

    def __init__(self, instrument_id: str, first_synced: int, last_synced: int) -> None:
        self.instrument_id = instrument_id
        self.first_synced = first_synced
        self.last_synced = last_synced
        super().__init__(
            f"{instrument_id} already synced {first_synced}..{last_synced}, "
            "reconcile to extend its history"
        )
