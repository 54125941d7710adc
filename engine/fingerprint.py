"""Stable content fingerprints for issues, tests and diffs.

Every function here is pure: no timestamps, no randomness, so the same
logical issue found in two separate runs maps to the same id.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from models.schemas import Diff

_LENGTH = 16


def generate_fingerprint(*parts: object) -> str:
    """SHA-256 of the `|`-joined parts, truncated to 16 hex chars."""
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:_LENGTH]


def generate_issue_fingerprint(
    file: str,
    anchor: Sequence[int] | str | None,
    category: str,
    message: str,
) -> str:
    """Fingerprint an issue anchored by a (start, end) line range or a snippet.

    An empty snippet degrades to (file, category, message) so issues the
    model could not anchor still dedup against each other.
    """
    if isinstance(anchor, str) or anchor is None:
        snippet = (anchor or "").strip()
        if not snippet:
            return generate_fingerprint(file, category, message)
        return generate_fingerprint(file, snippet, category, message)
    start, end = anchor[0], anchor[-1]
    return generate_fingerprint(file, start, end, category, message)


def generate_test_fingerprint(file: str, test_name: str, scenario: str) -> str:
    return generate_fingerprint(file, test_name, scenario)


def compute_content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:_LENGTH]


def compute_diff_fingerprint(diff: Diff) -> str:
    """Identify a diff by its per-file change counts, order-insensitive."""
    parts = sorted(f"{f.path}:{f.additions}:{f.deletions}" for f in diff.files)
    return compute_content_hash("|".join(parts))
