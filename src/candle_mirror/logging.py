"""Structured logging for the candle mirror, built on structlog.

Sync passes bind the instrument being worked on into structlog's
contextvars, so every line logged below the reconciler (fetch pages,
commits, working-set loads) carries instrument_id and ticker without
passing them down explicitly.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Both libraries log every request or statement at DEBUG
_NOISY_LOGGERS = ("ccxt", "aiosqlite")


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structlog on top of stdlib logging.

    log_format is "json" for machine-readable output or "console" for
    human-readable output. Any other value falls back to console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def instrument_context(instrument_id: str, ticker: str) -> Iterator[None]:
    """Bind instrument_id and ticker to every log line inside the block."""
    with structlog.contextvars.bound_contextvars(
        instrument_id=instrument_id, ticker=ticker
    ):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
