"""
Structured logging configuration using structlog.

Backtest runs print their report on stdout, so every log line goes to
stderr (and optionally a file). Console output uses rich tracebacks;
JSON output suits collecting logs from scheduled runs.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from config.settings import Settings

# Request lines from the HTTP stack duplicate candle_fetch_* events
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _build_handlers(level: int, log_file: Optional[Path]) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _build_renderer(json_format: bool):
    if json_format:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.RichTracebackFormatter(
            show_locals=False,
            max_frames=10,
        ),
    )


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = False,
) -> None:
    """
    Configure structured logging for backtest runs and the market-data client.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        json_format: Render JSON lines instead of the colored console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers = _build_handlers(level, log_file)

    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _build_renderer(json_format),
        ],
    )
    for handler in handlers:
        handler.setFormatter(formatter)


def setup_logging_from_settings(settings: "Settings") -> None:
    """Configure logging from the LOG_LEVEL / LOG_FILE / LOG_JSON settings."""
    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        json_format=settings.log_json,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to `name` (typically __name__)."""
    return structlog.get_logger(name)
