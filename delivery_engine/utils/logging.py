"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from delivery_engine.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        # JSON logging for production
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        # Human-readable logging for development
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LifecycleLogger:
    """Specialized logger for task lifecycle events of one delivery partner."""

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        self.logger = get_logger("delivery_engine.lifecycle")

    def log_transition(
        self,
        task_id: str,
        from_status: str | None,
        to_status: str,
        source: str,
        **kwargs: Any,
    ) -> None:
        """Log a task moving between states.

        ``source`` is ``gateway`` when the backend confirmed the change and
        ``local`` when it was applied against the mirror only.
        """
        self.logger.info(
            "task_transition",
            actor_id=self.actor_id,
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            source=source,
            **kwargs,
        )

    def log_gateway_fallback(
        self,
        operation: str,
        error: str,
        **kwargs: Any,
    ) -> None:
        """Log a gateway call that degraded to the local mirror."""
        self.logger.warning(
            "gateway_fallback",
            actor_id=self.actor_id,
            operation=operation,
            error=error,
            **kwargs,
        )

    def log_rejected(
        self,
        operation: str,
        task_id: str,
        kind: str,
        **kwargs: Any,
    ) -> None:
        """Log an operation returned to the caller as a failure."""
        self.logger.info(
            "operation_rejected",
            actor_id=self.actor_id,
            operation=operation,
            task_id=task_id,
            kind=kind,
            **kwargs,
        )

    def log_persistence_failure(
        self,
        operation: str,
        keys: list[str],
        **kwargs: Any,
    ) -> None:
        """Log a mirror write that did not land."""
        self.logger.error(
            "persistence_failure",
            actor_id=self.actor_id,
            operation=operation,
            keys=keys,
            **kwargs,
        )
