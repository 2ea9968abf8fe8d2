"""
Structured logging for the relay.

Every event carries ``service="chat_relay"``. Operators read the console
renderer on a terminal; deployments behind a log shipper set
``LOG_FORMAT=json`` to get one JSON object per line.
"""

import logging
import sys
from typing import Any, List

import structlog
from structlog.typing import FilteringBoundLogger, Processor

SERVICE_NAME = "chat_relay"
LOG_FORMATS = ("console", "json")


def _add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "console") -> None:
    """Route relay events to stderr.

    Unknown level names fall back to INFO.

    Raises:
        ValueError: If log_format is not one of LOG_FORMATS
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name, component=name.rsplit(".", 1)[-1])
