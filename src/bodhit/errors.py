"""Domain-specific exceptions for the mentor engine.

Parsing and decoding errors are recovered inside the component that detects
them; only transport failures and batch reports reach the caller.
"""

from __future__ import annotations


class MentorError(Exception):
    """Base class for mentor engine errors."""

    error: str = "mentor_error"

    def __init__(self, message: str, *, error: str | None = None):
        super().__init__(message)
        if error:
            self.error = error


class IntakeParseError(MentorError):
    """One or more required intake fields were missing."""

    error = "intake_parse_error"

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing intake fields: {', '.join(missing)}")
        self.missing = list(missing)


class ConfirmationMismatch(MentorError):
    """A reply other than yes/no arrived while awaiting intake confirmation."""

    error = "confirmation_mismatch"


class StreamDecodeError(MentorError):
    """An event line did not hold a complete JSON payload."""

    error = "stream_decode_error"


class TransportError(MentorError):
    """The assistant transport failed; surfaced to the user, never retried."""

    error = "transport_error"
    title: str = "Connection Error"
    description: str = "Failed to connect to AI. Please try again."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        description: str | None = None,
    ):
        super().__init__(message or self.description)
        self.status_code = status_code
        if description:
            self.description = description


class RateLimitedError(TransportError):
    error = "rate_limited"
    title = "Rate Limited"
    description = "Too many requests. Please wait a moment and try again."


class CreditsExhaustedError(TransportError):
    error = "credits_exhausted"
    title = "Credits Exhausted"
    description = "AI credits have been used up. Please add more credits."


class OperationApplyError(MentorError):
    """A single staged operation could not be applied."""

    error = "operation_apply_error"


class UnknownAction(MentorError):
    """An operation carried an action tag outside its family."""

    error = "unknown_action"

    def __init__(self, action: object):
        super().__init__(f"Unknown action: {action!r}")
        self.action = action


class DispatcherBusyError(MentorError):
    """A batch was confirmed while another batch was still being applied."""

    error = "dispatcher_busy"
