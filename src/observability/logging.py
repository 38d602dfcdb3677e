"""
structlog setup for the provider and the vdb CLI.

Production renders one JSON object per line; every other environment
gets colored console output. Provider modules log through
``structlog.get_logger(__name__)``, the storage and observability
layers through the standard library, and both end up here.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import Settings, get_settings
from src.observability.tracing import add_trace_context

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("asyncio", "asyncpg", "opentelemetry")


def build_processors(settings: Settings) -> list[Processor]:
    """Processor chain for the given environment."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # trace_id/span_id on every entry while a provider span is open
    if settings.tracing_enabled:
        processors.append(add_trace_context)

    if settings.is_production:
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging(settings: Settings | None = None, level: str | None = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        settings: Settings to read environment and level from
            (defaults to get_settings())
        level: Overrides settings.log_level, e.g. "DEBUG" for --debug

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Created collection", collection="docs", dimension=768)
    """
    settings = settings or get_settings()
    level_name = (level or settings.log_level).upper()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
