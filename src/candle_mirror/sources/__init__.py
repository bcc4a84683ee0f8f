"""Remote candle sources -- historical bars via ccxt."""

from candle_mirror.sources.base import CandleSource
from candle_mirror.sources.ccxt_source import CcxtCandleSource

__all__ = ["CandleSource", "CcxtCandleSource"]
