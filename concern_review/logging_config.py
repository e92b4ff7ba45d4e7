"""Structured logging for the concern review service"""

import sys
import logging
from typing import Any, Optional
import structlog
from structlog.types import EventDict, Processor

from concern_review.config import settings

SERVICE_NAME = "concern-review"

# Marks handlers installed here so repeated setup replaces only its own
_HANDLER_MARK = "_concern_review_handler"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service and environment to log entries"""
    event_dict["environment"] = settings.environment
    event_dict["service"] = SERVICE_NAME
    return event_dict


def _build_handler(output: str) -> logging.Handler:
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(output, mode="a", encoding="utf-8")


def setup_logging(output: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    Route structlog and stdlib logging through one JSON or console renderer.

    Workflow modules log named events through structlog; database and API
    modules use ``logging.getLogger``. Both end up on the same handler,
    with the request context bound by ``bind_request_context`` merged in.

    Args:
        output: ``stdout``, ``stderr`` or a file path (defaults to LOG_OUTPUT)
        level: Log level name (defaults to LOG_LEVEL)
    """
    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.logging.format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # stdlib records: keep fields passed through ``extra=``
        foreign_pre_chain=[*shared_processors, structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = _build_handler(output or settings.logging.output)
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_MARK, True)

    root = logging.getLogger()
    for old in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(old)
        old.close()
    root.addHandler(handler)
    root.setLevel(log_level)


def bind_request_context(request_id: str, **values: Any) -> None:
    """Attach the request id (and any extra values) to every log entry of this request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
