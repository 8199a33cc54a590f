"""bodhit observability module - structured logging and lifecycle events.

Logs are structured JSON via structlog. Mentor lifecycle events (intake,
streaming, staging, apply) go through :func:`log_mentor_event` so they can be
picked up by a log aggregation pipeline.

Usage:
    from bodhit.observability import get_logger

    logger = get_logger(__name__)
    logger.info("batch_applied", succeeded=3, failed=0)
"""

from __future__ import annotations

from bodhit.observability.events import MentorEvent, log_batch_event, log_mentor_event
from bodhit.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "init_observability",
    "MentorEvent",
    "log_mentor_event",
    "log_batch_event",
]

_OBSERVABILITY_INITIALIZED = False


def init_observability() -> None:
    """Initialize logging for the process (idempotent).

    Not executed on import so `bodhit` can be used as a library without
    mutating global logging configuration.
    """
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    configure_logging()
    _OBSERVABILITY_INITIALIZED = True
