"""Intake negotiation.

Before any guidance is streamed the student must supply four project facts
and explicitly confirm them. The collector is a three-state machine:

    Collecting -> AwaitingConfirmation -> Confirmed
                  AwaitingConfirmation -> Collecting   (on "no")

States are separate frozen types, so "awaiting confirmation" and "confirmed"
can never be true at the same time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Union

from bodhit.errors import ConfirmationMismatch, IntakeParseError
from bodhit.mentor.prompts import (
    INTAKE_CONFIRMED,
    INTAKE_ECHO_TEMPLATE,
    INTAKE_FORMAT_HELP,
    INTAKE_REJECTED,
)
from bodhit.observability.events import MentorEvent, log_mentor_event
from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "IntakeRecord",
    "Collecting",
    "AwaitingConfirmation",
    "Confirmed",
    "IntakeState",
    "IntakeReply",
    "IntakeCollector",
    "INTAKE_ALIASES",
    "parse_intake",
    "try_parse_intake",
]

_KEY_VALUE = re.compile(r"^([^:]+):\s*(.+)$")

# Checked in order; the first alias with a non-empty value wins.
INTAKE_ALIASES: Dict[str, tuple[str, ...]] = {
    "project_idea": ("project idea", "project"),
    "tech_stack": ("tech stack", "tech"),
    "skill_level": ("skill level", "skill"),
    "timeline": ("timeline", "timeframe"),
}

_YES = re.compile(r"yes", re.IGNORECASE)
_NO = re.compile(r"no", re.IGNORECASE)


@dataclass(frozen=True)
class IntakeRecord:
    """The four project facts gathered before guidance begins."""

    project_idea: str
    tech_stack: str
    skill_level: str
    timeline: str

    def echo(self) -> str:
        return INTAKE_ECHO_TEMPLATE.format(
            project_idea=self.project_idea,
            tech_stack=self.tech_stack,
            skill_level=self.skill_level,
            timeline=self.timeline,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "project_idea": self.project_idea,
            "tech_stack": self.tech_stack,
            "skill_level": self.skill_level,
            "timeline": self.timeline,
        }


@dataclass(frozen=True)
class Collecting:
    name = "collecting"


@dataclass(frozen=True)
class AwaitingConfirmation:
    record: IntakeRecord
    name = "parsed_awaiting_confirm"


@dataclass(frozen=True)
class Confirmed:
    record: IntakeRecord
    name = "confirmed"


IntakeState = Union[Collecting, AwaitingConfirmation, Confirmed]


@dataclass(frozen=True)
class IntakeReply:
    """What the collector says back, plus the record it just confirmed (if any)."""

    content: str
    message_type: str
    confirmed_record: Optional[IntakeRecord] = None


def parse_intake(text: str) -> IntakeRecord:
    """Parse ``key: value`` lines into an :class:`IntakeRecord`.

    Line order and unrelated lines do not matter. Raises
    :class:`IntakeParseError` listing the fields that are still missing.
    """
    fields: Dict[str, str] = {}
    for raw_line in re.split(r"\r?\n", text):
        line = raw_line.strip()
        if not line:
            continue
        match = _KEY_VALUE.match(line)
        if match:
            fields[match.group(1).strip().lower()] = match.group(2)

    values: Dict[str, str] = {}
    missing: list[str] = []
    for target, aliases in INTAKE_ALIASES.items():
        value = next((fields[a] for a in aliases if fields.get(a)), "")
        if not value:
            missing.append(target)
        values[target] = value

    if missing:
        raise IntakeParseError(missing)
    return IntakeRecord(**values)


def try_parse_intake(text: str) -> IntakeRecord | None:
    try:
        return parse_intake(text)
    except IntakeParseError:
        return None


class IntakeCollector:
    """Drives the intake negotiation one user message at a time."""

    def __init__(self, state: IntakeState | None = None):
        self.state: IntakeState = state or Collecting()

    @property
    def confirmed(self) -> bool:
        return isinstance(self.state, Confirmed)

    @property
    def awaiting_confirmation(self) -> bool:
        return isinstance(self.state, AwaitingConfirmation)

    @property
    def intake(self) -> IntakeRecord | None:
        if isinstance(self.state, (AwaitingConfirmation, Confirmed)):
            return self.state.record
        return None

    def handle(self, text: str) -> IntakeReply:
        """Advance the state machine with one (already trimmed) user message."""
        if isinstance(self.state, Confirmed):
            raise RuntimeError("Intake already confirmed; route messages to the stream")
        if isinstance(self.state, AwaitingConfirmation):
            return self._handle_confirmation(self.state, text)
        return self._handle_collecting(text)

    def _handle_collecting(self, text: str) -> IntakeReply:
        try:
            record = parse_intake(text)
        except IntakeParseError as exc:
            log_mentor_event(MentorEvent.INTAKE_INCOMPLETE, extra={"missing": exc.missing})
            return IntakeReply(INTAKE_FORMAT_HELP, "question")

        self.state = AwaitingConfirmation(record)
        log_mentor_event(MentorEvent.INTAKE_PARSED)
        return IntakeReply(record.echo(), "question")

    def _handle_confirmation(self, state: AwaitingConfirmation, text: str) -> IntakeReply:
        try:
            accepted = _read_confirmation(text)
        except ConfirmationMismatch as exc:
            # Re-ask; the reply is never reparsed as fresh intake.
            log_mentor_event(MentorEvent.CONFIRMATION_MISMATCH, error=str(exc))
            return IntakeReply(state.record.echo(), "question")

        if accepted:
            self.state = Confirmed(state.record)
            log_mentor_event(MentorEvent.INTAKE_CONFIRMED)
            return IntakeReply(INTAKE_CONFIRMED, "explanation", confirmed_record=state.record)

        self.state = Collecting()
        log_mentor_event(MentorEvent.INTAKE_REJECTED)
        return IntakeReply(INTAKE_REJECTED, "explanation")


def _read_confirmation(text: str) -> bool:
    if _YES.fullmatch(text):
        return True
    if _NO.fullmatch(text):
        return False
    raise ConfirmationMismatch(f"Expected yes/no, got {text[:40]!r}")
