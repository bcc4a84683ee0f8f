"""Abstract remote candle source interface.

The reconciler depends only on this contract. Transport, auth and retry
live in the concrete implementation.
"""

from abc import ABC, abstractmethod

from candle_mirror.models import Candle, CandleInterval


class CandleSource(ABC):
    """Abstract base class for remote historical candle providers."""

    async def connect(self) -> None:
        """Prepare the underlying client (load markets, open sessions)."""

    async def close(self) -> None:
        """Release the underlying client."""

    @abstractmethod
    async def fetch_candles(
        self,
        instrument_id: str,
        interval: CandleInterval,
        from_ts: int,
        to_ts: int,
    ) -> list[Candle]:
        """Fetch bars for an instrument covering at most [from_ts, to_ts).

        Returns candles ordered by timestamp ASC. Raises on failure; a
        partial batch is never returned.
        """
        ...
