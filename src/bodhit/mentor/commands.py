"""Fenced command extraction from finalized assistant text.

The assistant embeds structured requests in its reply as tagged fences::

    ```FILE_OPS
    [{"action": "create", "path": "/src/a.ts", "content": "x"}]
    ```

Each tag is scanned independently and only the first span per tag is used.
An unterminated fence or a body that is not valid JSON yields ``None`` for
that tag and never affects the other tags.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "FENCE",
    "FILE_OPS_TAG",
    "MENTOR_REPORT_TAG",
    "MILESTONE_OPS_TAG",
    "FencedBlock",
    "ExtractedCommands",
    "extract_fenced_json",
    "extract_file_ops",
    "extract_mentor_report",
    "extract_milestone_ops",
    "extract_commands",
]

FENCE = "```"
FILE_OPS_TAG = "FILE_OPS"
MENTOR_REPORT_TAG = "MENTOR_REPORT"
MILESTONE_OPS_TAG = "MILESTONE_OPS"


@dataclass(frozen=True)
class FencedBlock:
    """A successfully parsed fenced block: the trimmed body and its JSON value."""

    tag: str
    raw: str
    parsed: Any


def extract_fenced_json(text: str, tag: str) -> FencedBlock | None:
    """Return the first ``tag`` block in ``text`` if it is closed and valid JSON."""
    opening = FENCE + tag
    start = text.find(opening)
    if start == -1:
        return None
    body_start = start + len(opening)
    closing = text.find(FENCE, body_start)
    if closing == -1:
        logger.debug("fenced_block_unterminated", tag=tag)
        return None

    raw = text[body_start:closing].strip()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("fenced_block_invalid_json", tag=tag, error=str(exc))
        return None
    return FencedBlock(tag=tag, raw=raw, parsed=parsed)


def extract_file_ops(text: str) -> FencedBlock | None:
    return extract_fenced_json(text, FILE_OPS_TAG)


def extract_mentor_report(text: str) -> FencedBlock | None:
    return extract_fenced_json(text, MENTOR_REPORT_TAG)


def extract_milestone_ops(text: str) -> FencedBlock | None:
    return extract_fenced_json(text, MILESTONE_OPS_TAG)


@dataclass(frozen=True)
class ExtractedCommands:
    file_ops: Optional[FencedBlock] = None
    mentor_report: Optional[FencedBlock] = None
    milestone_ops: Optional[FencedBlock] = None

    @property
    def empty(self) -> bool:
        return self.file_ops is None and self.mentor_report is None and self.milestone_ops is None

    def tags(self) -> list[str]:
        return [
            block.tag
            for block in (self.file_ops, self.mentor_report, self.milestone_ops)
            if block is not None
        ]


def extract_commands(text: str) -> ExtractedCommands:
    """Run all three scanners over one finalized reply."""
    if not text:
        return ExtractedCommands()
    commands = ExtractedCommands(
        file_ops=extract_file_ops(text),
        mentor_report=extract_mentor_report(text),
        milestone_ops=extract_milestone_ops(text),
    )
    if not commands.empty:
        logger.info("commands_extracted", tags=commands.tags())
    return commands
