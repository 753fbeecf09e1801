"""Logging configuration using structlog."""

import logging
import sys
from typing import Any
from uuid import UUID

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


def setup_logging(debug: bool = False) -> None:
    """Configure structlog for structured logging.

    Args:
        debug: If True, use colored console output. If False, use JSON for production.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set library log levels to reduce noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("temporalio").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Optional logger name.

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)


def bind_instance_context(
    instance_id: UUID | None,
    workflow_id: UUID | None = None,
    actor_id: Any | None = None,
) -> None:
    """Bind workflow-instance context to all subsequent log calls.

    Args:
        instance_id: The instance being driven (None for transient instances).
        workflow_id: The workflow definition the instance runs.
        actor_id: Optional acting user id.
                  Only logged if settings.log_user_ids is True.
    """
    from src.approvals.core.config import get_settings

    if instance_id is not None:
        bind_contextvars(instance_id=str(instance_id))
    if workflow_id is not None:
        bind_contextvars(workflow_id=str(workflow_id))
    if actor_id is not None and get_settings().log_user_ids:
        bind_contextvars(actor_id=str(actor_id))


def clear_instance_context() -> None:
    """Remove instance-scoped keys bound by bind_instance_context."""
    unbind_contextvars("instance_id", "workflow_id", "actor_id")
