"""
Structured logging for the tiering service.

Human-readable console lines by default, one JSON object per line when
TIERING_OBSERVABILITY_JSON_LOGS is set. Everything goes to stderr so that
CLI commands can print JSON results on stdout.

Policy executions and retrievals tag their log lines with a correlation id
(the execution id or the retrieval query id):

    from tiering.common.logging import get_logger, set_correlation_id

    logger = get_logger(__name__, component="lifecycle")

    set_correlation_id(execution_id)
    logger.info("Partition archived", table="transactions", partition_id=12)
"""

import contextvars
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from tiering.common.config import config

# Each asyncio task gets its own copy, so concurrent retrievals don't mix ids
_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(correlation_id: str) -> None:
    """Tag every log line in the current thread or task with `correlation_id`."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor copying the context's correlation id into the event."""
    correlation_id = _correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def configure_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog for the process.

    Called once on import with the observability settings. Calling it again
    (for example from a test) replaces the configuration.

    Args:
        json_output: Render JSON instead of console lines
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


class TieringLogger:
    """
    Logger handed out to tiering modules.

    A thin layer over a structlog BoundLogger that stamps every line with the
    component that emitted it (warehouse, lifecycle, retrieval, cli).
    """

    def __init__(self, logger: structlog.BoundLogger, component: Optional[str] = None):
        self._logger = logger.bind(component=component) if component else logger

    def bind(self, **kwargs: Any) -> "TieringLogger":
        """Return a logger that adds `kwargs` to every line."""
        return TieringLogger(self._logger.bind(**kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._logger.exception(message, **kwargs)


def get_logger(name: str, component: Optional[str] = None, **initial_context: Any) -> TieringLogger:
    """
    Get a structured logger for a module.

    Args:
        name: Module name (typically __name__)
        component: Component name, e.g. "lifecycle"
        **initial_context: Extra context bound to every line

    Example:
        logger = get_logger(__name__, component="retrieval")
        logger.warning("Long retrieval with default session", table="transactions")
    """
    base_logger = structlog.get_logger(name)
    if initial_context:
        base_logger = base_logger.bind(**initial_context)
    return TieringLogger(base_logger, component)


configure_logging(
    json_output=config.observability.json_logs,
    log_level=config.observability.log_level,
)
