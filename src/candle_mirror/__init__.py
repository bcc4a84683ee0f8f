"""Local SQLite mirror of historical exchange candles with in-memory range queries."""

__version__ = "0.1.0"
