"""Untrusted-content isolation for prompts.

Diff text, commit messages and file contents are written by whoever
authored the change, so they are fenced in delimiters and scanned for
instruction-like phrases before reaching the model.  Code is never
rewritten: line numbers in the numbered diff must stay exact, so hits are
reported, not redacted.
"""

from __future__ import annotations

import re
import unicodedata

_BEGIN = "<<<BEGIN_UNTRUSTED_CODE>>>"
_END = "<<<END_UNTRUSTED_CODE>>>"

_INJECTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"ignore\s+(all\s+)?(previous|above)\s+instructions",
        r"disregard\s+(all\s+)?previous",
        r"you\s+are\s+now\b",
        r"reveal\s+your\s+(system\s+)?prompt",
        r"forget\s+(all\s+)?your\s+rules",
        r"override\s+(your\s+)?instructions",
        r"new\s+instructions?\s*:",
        r"report\s+no\s+issues",
        r"return\s+an\s+empty\s+(array|list)",
        r"<\s*/?\s*system\s*>",
    ]
]


def find_injections(text: str) -> list[str]:
    """Return the instruction-like phrases found in *text* (NFKC-normalized)."""
    normalized = unicodedata.normalize("NFKC", text)
    hits: list[str] = []
    for pattern in _INJECTION_PATTERNS:
        hits.extend(m.group(0) for m in pattern.finditer(normalized))
    return hits


def wrap(text: str) -> str:
    """Fence *text* in delimiters; embedded delimiter markers are defused."""
    safe = text.replace(_BEGIN, "[DELIMITER_STRIPPED]").replace(_END, "[DELIMITER_STRIPPED]")
    return f"{_BEGIN}\n{safe}\n{_END}"
