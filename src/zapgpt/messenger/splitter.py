"""Split an AI reply into chat-sized sentences.

A reply such as ``"Sure! See https://example.com/a.b for details. Thanks."``
is sent as several bubbles, one per sentence, the way a person would type
them. Periods inside URLs, e-mail addresses, quoted text, list numerals
("1. ") and dotted words ("e.g", "v2.0") do not end a sentence: those tokens
are masked before splitting and restored afterwards.
"""

from __future__ import annotations

import re

PROTECTED_PATTERN = re.compile(
    r"(https?://\S+)"  # URLs
    r"|(www\.\S+)"  # bare www hosts
    r"|(\S+@\S+\.\S+)"  # e-mail addresses
    r"|([\"'].*?[\"'])"  # quoted spans
    r"|(\b\d+\.\s)"  # list numerals
    r"|(\w+\.\w+)"  # dotted words / abbreviations
)

SENTENCE_PATTERN = re.compile(r"[^.?!]+(?:[.?!]+[\"']?|\Z)")

# Private-use code points never appear in model output and carry no
# sentence punctuation, so the splitter cannot cut inside a placeholder.
_OPEN = "\ue000"
_CLOSE = "\ue001"
_PLACEHOLDER_PATTERN = re.compile(f"{_OPEN}(\\d+){_CLOSE}")


def split_messages(text: str) -> list[str]:
    """Return the sentences of *text* in order, left-trimmed, empty ones dropped."""
    protected: list[str] = []

    def _mask(match: re.Match) -> str:
        protected.append(match.group(0))
        return f"{_OPEN}{len(protected) - 1}{_CLOSE}"

    masked = PROTECTED_PATTERN.sub(_mask, text)
    parts = SENTENCE_PATTERN.findall(masked) or [masked]

    if protected:
        parts = [
            _PLACEHOLDER_PATTERN.sub(lambda m: protected[int(m.group(1))], part)
            for part in parts
        ]

    return [chunk for chunk in (part.lstrip() for part in parts) if chunk]
