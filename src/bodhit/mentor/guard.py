"""Direct code-request detection.

Checked before any intake or streaming logic; a match is answered with a
refusal regardless of conversation state.
"""

from __future__ import annotations

import re

from bodhit.mentor.prompts import CODE_REQUEST_REFUSAL

__all__ = ["CODE_REQUEST_PATTERNS", "is_code_request", "refusal_message"]

CODE_REQUEST_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"give me the code",
        r"paste the code",
        r"implement for me",
        r"write the code",
        r"full implementation",
        r"complete solution",
    )
)


def is_code_request(text: str) -> bool:
    """Return True when the message asks the mentor to hand over code."""
    return any(pattern.search(text) for pattern in CODE_REQUEST_PATTERNS)


def refusal_message() -> str:
    return CODE_REQUEST_REFUSAL
