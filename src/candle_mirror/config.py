"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from candle_mirror.models import CandleInterval, Instrument


class StorageSettings(BaseSettings):
    """Local candle storage configuration.

    Controls where the SQLite mirror lives, how far back history is kept,
    and which window is loaded into memory for range queries.
    All fields configurable via STORAGE_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/candles.db"
    update: bool = True  # catch up every instrument to now on open
    lookback_days: int = 30
    window_days: int | None = None  # None loads the full mirrored history


class SourceSettings(BaseSettings):
    """Remote candle source (ccxt exchange) settings."""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")

    exchange_id: str = "bybit"
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    page_limit: int = 1000  # bars per fetch_ohlcv call
    max_retries: int = Field(default=5, ge=1)
    retry_base_delay: float = 1.0
    fetch_batch_delay: float = 0.1


class InstrumentSettings(BaseModel):
    """One instrument to mirror, e.g. {"instrument_id": "BTC/USDT", "price_step": "0.1"}."""

    instrument_id: str
    ticker: str = ""
    interval: CandleInterval = CandleInterval.ONE_HOUR
    price_step: Decimal = Field(default=Decimal("0.01"), gt=0)

    def to_instrument(self) -> Instrument:
        return Instrument(
            instrument_id=self.instrument_id,
            ticker=self.ticker,
            interval=self.interval,
            price_step=self.price_step,
        )


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"
    storage: StorageSettings = StorageSettings()
    source: SourceSettings = SourceSettings()
    instruments: list[InstrumentSettings] = []
