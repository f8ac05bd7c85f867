"""Structured logging configuration.

Features:
- JSON and text format support
- Cluster context correlation
- Service context injection
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from clusterkit.config import LogFormat, LogLevel, get_settings

# Context variables for the cluster being evaluated
cluster_id_var: ContextVar[str | None] = ContextVar("cluster_id", default=None)
context_name_var: ContextVar[str | None] = ContextVar("context_name", default=None)


def add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service context to log events."""
    settings = get_settings()
    event_dict["service"] = settings.app_name
    event_dict["environment"] = settings.environment.value
    return event_dict


def add_cluster_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add cluster context from context variables."""
    if cluster_id := cluster_id_var.get():
        event_dict.setdefault("cluster_id", cluster_id)
    if context_name := context_name_var.get():
        event_dict.setdefault("context", context_name)
    return event_dict


def setup_logging(
    log_level: LogLevel | None = None,
    log_format: LogFormat | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Override log level (defaults to settings.log_level)
        log_format: Override log format (defaults to settings.log_format)
    """
    settings = get_settings()

    level = log_level or settings.log_level
    fmt = log_format or settings.log_format

    level_str = level.value if hasattr(level, "value") else str(level).upper()
    numeric_level = getattr(logging, level_str)

    # Configure standard library logging
    logging.basicConfig(
        level=numeric_level,
        stream=sys.stderr,
        format="%(message)s",
    )

    # Shared processors for both JSON and text formats
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        add_service_context,
        add_cluster_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    fmt_str = fmt.value if hasattr(fmt, "value") else str(fmt).lower()
    if fmt_str == LogFormat.JSON.value:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (defaults to module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class ClusterContext:
    """Context manager binding a cluster to every log line emitted inside it.

    Usage:
        with ClusterContext(cluster_id=str(record.id), context_name=record.context_name):
            logger.info("Resolving credentials")  # Includes cluster_id and context
    """

    def __init__(
        self,
        cluster_id: str | None = None,
        context_name: str | None = None,
    ):
        self.cluster_id = cluster_id
        self.context_name = context_name
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> "ClusterContext":
        if self.cluster_id:
            self._tokens.append((cluster_id_var, cluster_id_var.set(self.cluster_id)))
        if self.context_name:
            self._tokens.append((context_name_var, context_name_var.set(self.context_name)))
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


@contextmanager
def external_call(
    logger: structlog.stdlib.BoundLogger,
    service: str,
    operation: str,
) -> Iterator[dict[str, Any]]:
    """Time a call to a subprocess or storage backend and log its outcome.

    Fields put into the yielded dict are added to the completion event. An
    ``error`` field, or an exception escaping the block, marks the call failed.
    """
    logger.debug("External call started", external_service=service, external_operation=operation)
    outcome: dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield outcome
    except Exception as e:
        outcome.setdefault("error", str(e) or type(e).__name__)
        raise
    finally:
        fields = {
            "external_service": service,
            "external_operation": operation,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            **outcome,
        }
        if fields.get("error"):
            logger.warning("External call failed", **fields)
        else:
            logger.debug("External call completed", **fields)
