"""
Logging Configuration for the Sales Data Warehouse

structlog over the standard library: every record, including those from
SQLAlchemy and other libraries, goes through one formatter and is rendered
as JSON lines or as console output.

Context bound with ``structlog.contextvars`` (run id, stage, table during a
refresh) is merged into every event.
"""

import logging
import sys
from typing import IO, Dict, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level

from dwh.config.settings import get_settings

# Libraries that are chatty at INFO
QUIET_LOGGERS: Dict[str, int] = {
    "asyncio": logging.WARNING,
    "faker": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str, stream: IO):
    if log_format == "json":
        return JSONRenderer(sort_keys=False)
    return structlog.dev.ConsoleRenderer(colors=stream.isatty())


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[IO] = None,
) -> None:
    """
    Route structlog and stdlib logging through a single handler.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override renderer ("json" or "text")
        stream: Output stream, stderr by default so command output stays clean
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    log_format = log_format or settings.monitoring.log_format
    stream = stream or sys.stderr

    numeric_level = getattr(logging, level, logging.INFO)
    shared = _shared_processors()

    structlog.configure(
        processors=shared + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ProcessorFormatter(
        processor=_renderer(log_format, stream),
        foreign_pre_chain=shared,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(quiet_level, numeric_level))

    # SQL echo is opt-in through POSTGRES_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    structlog.get_logger(__name__).debug(
        "Logging configured",
        level=level,
        format=log_format,
        environment=settings.app_env,
    )
