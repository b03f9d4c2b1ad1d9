"""
Logging setup for the service.

structlog sits on top of the stdlib logging module so that uvicorn, celery
and our own modules all end up in the same stream.
"""
import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import FilteringBoundLogger


def configure_logging(level: str = "INFO", format_json: bool = False) -> None:
    """
    Configure structlog for the whole process.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        format_json: Emit one JSON object per line instead of console output
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stdout,
        format="%(message)s",
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)


def get_state_logger(name: str) -> FilteringBoundLogger:
    """Logger bound for contract status changes."""
    return get_logger(name).bind(subsystem="contract_lifecycle")


def log_status_change(
    logger: FilteringBoundLogger,
    participant_id: int,
    from_status: Optional[str],
    to_status: str,
    trigger: str,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    bound = logger.bind(
        participant_id=participant_id,
        from_status=from_status,
        to_status=to_status,
        trigger=trigger,
    )
    if context:
        bound = bound.bind(**context)
    bound.info("contract status changed")
