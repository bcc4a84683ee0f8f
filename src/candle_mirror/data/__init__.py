"""Durable candle persistence layer.

Provides SQLite database management and the typed store for candles and
per-instrument sync checkpoints.
"""

from candle_mirror.data.database import CandleDatabase
from candle_mirror.data.store import CandleStore

__all__ = ["CandleDatabase", "CandleStore"]
