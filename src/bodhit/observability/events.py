"""Mentor lifecycle events.

Events are emitted through structlog so they can be forwarded to an
observability backend by the log pipeline.

Usage:
    from bodhit.observability.events import MentorEvent, log_mentor_event

    log_mentor_event(MentorEvent.INTAKE_CONFIRMED, conversation_id=conv_id)
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "MentorEvent",
    "log_mentor_event",
    "log_batch_event",
]


class MentorEvent(str, Enum):
    """Conversation lifecycle events."""

    CODE_REQUEST_REFUSED = "mentor_code_request_refused"
    INTAKE_PARSED = "mentor_intake_parsed"
    INTAKE_INCOMPLETE = "mentor_intake_incomplete"
    INTAKE_CONFIRMED = "mentor_intake_confirmed"
    INTAKE_REJECTED = "mentor_intake_rejected"
    CONFIRMATION_MISMATCH = "mentor_confirmation_mismatch"
    STREAM_STARTED = "mentor_stream_started"
    STREAM_COMPLETED = "mentor_stream_completed"
    STREAM_ABORTED = "mentor_stream_aborted"
    STREAM_FAILED = "mentor_stream_failed"
    COMMANDS_EXTRACTED = "mentor_commands_extracted"
    MENTOR_REPORT_SAVED = "mentor_report_saved"


def _get_timestamp() -> str:
    """Get ISO timestamp."""
    return datetime.now(timezone.utc).isoformat()


def log_mentor_event(
    event: MentorEvent,
    conversation_id: str | None = None,
    error: str | None = None,
    extra: Dict[str, Any] | None = None,
) -> None:
    """Log a conversation lifecycle event.

    Args:
        event: Lifecycle event type
        conversation_id: Conversation identifier, when one exists
        error: Error message if the step failed
        extra: Additional attributes
    """
    log_data: Dict[str, Any] = {
        "event_type": "mentor",
        "event_name": event.value,
        "timestamp": _get_timestamp(),
    }

    if conversation_id:
        log_data["conversation_id"] = conversation_id
    if error:
        log_data["error"] = error[:500]
    if extra:
        log_data.update(extra)

    logger.info("mentor_event", **log_data)


def log_batch_event(
    family: str,
    action: str,  # "staged", "applied", "cancelled"
    size: int,
    succeeded: int | None = None,
    failed: int | None = None,
    conversation_id: str | None = None,
) -> None:
    """Log a confirmation-gate event for a staged operation batch.

    Args:
        family: Operation family ("file" or "milestone")
        action: What happened to the batch
        size: Number of operations in the batch
        succeeded: Operations that applied cleanly (applied batches only)
        failed: Operations that errored or had an unknown action
        conversation_id: Conversation identifier, when one exists
    """
    log_data: Dict[str, Any] = {
        "event_type": "batch",
        "event_name": f"batch_{action}",
        "timestamp": _get_timestamp(),
        "family": family,
        "action": action,
        "size": size,
    }

    if conversation_id:
        log_data["conversation_id"] = conversation_id
    if succeeded is not None:
        log_data["succeeded"] = succeeded
    if failed is not None:
        log_data["failed"] = failed

    logger.info("batch_event", **log_data)
