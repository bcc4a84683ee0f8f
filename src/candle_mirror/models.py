"""Data models for instruments, candles and sync checkpoints.

CRITICAL: Prices are Decimal in memory. SQLite stores them as REAL, so every
read goes back through the instrument's price step (see candle_mirror.pricing).
All timestamps are Unix seconds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class CandleInterval(str, Enum):
    """Bar duration. Values double as ccxt timeframe strings."""

    ONE_MINUTE = "1m"
    TWO_MINUTES = "2m"
    THREE_MINUTES = "3m"
    FIVE_MINUTES = "5m"
    TEN_MINUTES = "10m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    TWO_HOURS = "2h"
    FOUR_HOURS = "4h"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"

    @property
    def seconds(self) -> int:
        """Nominal bar length in seconds (a month counts as 30 days)."""
        return _INTERVAL_SECONDS[self]

    def bar_end(self, timestamp: int) -> int:
        """End of the bar starting at timestamp.

        Monthly bars end on the first of the next calendar month (UTC).
        """
        if self is not CandleInterval.ONE_MONTH:
            return timestamp + self.seconds
        start = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1, day=1)
        else:
            end = start.replace(month=start.month + 1, day=1)
        return int(end.timestamp())


_INTERVAL_SECONDS: dict[CandleInterval, int] = {
    CandleInterval.ONE_MINUTE: 60,
    CandleInterval.TWO_MINUTES: 120,
    CandleInterval.THREE_MINUTES: 180,
    CandleInterval.FIVE_MINUTES: 300,
    CandleInterval.TEN_MINUTES: 600,
    CandleInterval.FIFTEEN_MINUTES: 900,
    CandleInterval.THIRTY_MINUTES: 1_800,
    CandleInterval.ONE_HOUR: 3_600,
    CandleInterval.TWO_HOURS: 7_200,
    CandleInterval.FOUR_HOURS: 14_400,
    CandleInterval.ONE_DAY: 86_400,
    CandleInterval.ONE_WEEK: 604_800,
    CandleInterval.ONE_MONTH: 2_592_000,
}


@dataclass
class Candle:
    """A single price bar.

    timestamp marks the bar start. is_complete is False while the bar is
    still forming on the exchange.
    """

    timestamp: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int
    is_complete: bool = True


@dataclass
class Instrument:
    """Descriptor of one mirrored instrument.

    first_synced / last_synced stay None until the instrument has been
    reconciled against the store.
    """

    instrument_id: str
    interval: CandleInterval = CandleInterval.ONE_HOUR
    price_step: Decimal = Decimal("0.01")
    ticker: str = ""
    first_synced: int | None = None
    last_synced: int | None = None

    def __post_init__(self) -> None:
        if not self.ticker:
            self.ticker = self.instrument_id


@dataclass
class SyncCheckpoint:
    """Committed sync range for one instrument, as stored in sync_checkpoints."""

    instrument_id: str
    first_synced: int
    last_synced: int


@dataclass
class WorkingSet:
    """Time-ordered candles held in memory for one instrument.

    covered_from / covered_to are the bounds the candles were loaded for,
    which can be wider than the first and last bar.
    """

    instrument_id: str
    candles: list[Candle] = field(default_factory=list)
    covered_from: int | None = None
    covered_to: int | None = None

    @property
    def timestamps(self) -> list[int]:
        return [c.timestamp for c in self.candles]
