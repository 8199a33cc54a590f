from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, MutableMapping

import structlog

conversation_id_var: ContextVar[str] = ContextVar("conversation_id", default="")


def _add_conversation_id(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    conversation_id = conversation_id_var.get("")
    if conversation_id:
        event_dict.setdefault("conversation_id", conversation_id)
    return event_dict


def configure_logging(level: str | None = None) -> None:
    """Configure structlog with JSON output and contextvar support."""

    timestamper = structlog.processors.TimeStamper(fmt="iso")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            _add_conversation_id,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if level is None:
        from bodhit.config import settings

        level = settings.log_level
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a configured structlog logger."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def get_conversation_id() -> str:
    """Return the current conversation ID from contextvars."""

    return conversation_id_var.get("")


logger = get_logger("bodhit")
