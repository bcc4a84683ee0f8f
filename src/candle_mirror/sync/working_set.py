"""In-memory working set of candles and the range query engine.

Each instrument gets a time-ordered candle list loaded from the store.
Queries never touch SQLite. A query window must start inside the range the
working set was loaded for; outside it the caller gets RangeNotCovered and
is expected to backfill or update first.
"""

from bisect import bisect_right
from collections.abc import Sequence

from candle_mirror.exceptions import InstrumentUnknown, RangeNotCovered
from candle_mirror.logging import get_logger
from candle_mirror.models import Candle, WorkingSet

logger = get_logger(__name__)


class WorkingSetCache:
    """Per-instrument candle lists for fast range queries.

    Not synchronized: callers serialize update passes against queries.
    """

    def __init__(self) -> None:
        self._sets: dict[str, WorkingSet] = {}

    def __contains__(self, instrument_id: object) -> bool:
        return instrument_id in self._sets

    def __len__(self) -> int:
        return len(self._sets)

    def load(
        self,
        instrument_id: str,
        candles: Sequence[Candle],
        covered_from: int | None = None,
        covered_to: int | None = None,
    ) -> WorkingSet:
        """Replace the working set for an instrument.

        Missing coverage bounds default to the first / last candle.
        """
        ordered = sorted(candles, key=_timestamp)
        if covered_from is None and ordered:
            covered_from = ordered[0].timestamp
        if covered_to is None and ordered:
            covered_to = ordered[-1].timestamp

        working_set = WorkingSet(
            instrument_id=instrument_id,
            candles=ordered,
            covered_from=covered_from,
            covered_to=covered_to,
        )
        self._sets[instrument_id] = working_set
        logger.info(
            "working_set_loaded",
            instrument_id=instrument_id,
            candles=len(ordered),
            covered_from=covered_from,
            covered_to=covered_to,
        )
        return working_set

    def append(
        self,
        instrument_id: str,
        candles: Sequence[Candle],
        covered_to: int | None = None,
    ) -> int:
        """Append newer candles to a loaded working set.

        Candles at or before the current last bar are dropped so the set
        stays strictly increasing. Returns the number appended.
        """
        working_set = self.get(instrument_id)
        last_ts = working_set.candles[-1].timestamp if working_set.candles else None

        appended = 0
        for candle in sorted(candles, key=_timestamp):
            if last_ts is not None and candle.timestamp <= last_ts:
                continue
            working_set.candles.append(candle)
            last_ts = candle.timestamp
            appended += 1

        if working_set.covered_from is None and working_set.candles:
            working_set.covered_from = working_set.candles[0].timestamp
        new_to = covered_to if covered_to is not None else last_ts
        if new_to is not None and (
            working_set.covered_to is None or new_to > working_set.covered_to
        ):
            working_set.covered_to = new_to

        logger.debug(
            "working_set_appended",
            instrument_id=instrument_id,
            appended=appended,
            covered_to=working_set.covered_to,
        )
        return appended

    def get(self, instrument_id: str) -> WorkingSet:
        """Return the loaded working set or raise InstrumentUnknown."""
        working_set = self._sets.get(instrument_id)
        if working_set is None:
            raise InstrumentUnknown(instrument_id)
        return working_set

    def discard(self, instrument_id: str) -> None:
        self._sets.pop(instrument_id, None)

    def clear(self) -> None:
        self._sets.clear()

    def query(self, instrument_id: str, from_ts: int, to_ts: int) -> list[Candle]:
        """Return candles strictly after from_ts up to and including to_ts.

        The lower bound is the first candle with timestamp > from_ts; the
        upper bound is the first candle with timestamp > to_ts. A candle
        exactly at from_ts is never returned.

        Raises:
            InstrumentUnknown: No working set is loaded for the instrument.
            RangeNotCovered: The working set is empty, or from_ts lies
                before covered_from or after covered_to.
        """
        working_set = self.get(instrument_id)
        candles = working_set.candles

        if (
            not candles
            or working_set.covered_from is None
            or working_set.covered_to is None
            or from_ts < working_set.covered_from
            or from_ts > working_set.covered_to
        ):
            logger.warning(
                "range_not_covered",
                instrument_id=instrument_id,
                from_ts=from_ts,
                covered_from=working_set.covered_from,
                covered_to=working_set.covered_to,
            )
            raise RangeNotCovered(
                instrument_id,
                from_ts,
                working_set.covered_from,
                working_set.covered_to,
            )

        lower = bisect_right(candles, from_ts, key=_timestamp)
        upper = bisect_right(candles, to_ts, key=_timestamp)
        if upper < lower:
            return []
        return candles[lower:upper]


def _timestamp(candle: Candle) -> int:
    return candle.timestamp
