"""Unified-diff parser and line-numbering utilities.

Turns raw diff text into `Diff`/`FileDiff`/`Hunk` models and renders the
numbered view every review prompt is built from.  Each added or context
line is prefixed with `NEW_LINE_<n>:` carrying its new-file line number;
removed lines are shown but never numbered.  The prompt instructions in
engine/prompt_builder.py quote the same marker.

Parsing is lenient: odd input yields fewer (or zero) files and a warning,
never an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from models.schemas import ChangeType, Diff, FileDiff, Hunk

logger = logging.getLogger("engine.diff_parser")

NEW_LINE_PATTERN = re.compile(r"^NEW_LINE_(\d+):?")
_MARKER_TAIL_RE = re.compile(r"\s*<- (?:REVIEWABLE \((?:ADDED|CONTEXT)\)|NOT REVIEWABLE)\s*$")

_DIFF_GIT_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
_BINARY_RE = re.compile(r"^Binary files (.+) and (.+) differ$")
_REVISION_RE = re.compile(r"[Dd]\s*(\d+)")

FRONTEND_EXTENSIONS = (
    ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".vue", ".svelte",
    ".css", ".scss", ".sass", ".less", ".html",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalize_input(raw: str) -> str:
    text = raw.lstrip("\ufeff")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _clean_path(token: str) -> str | None:
    """Strip timestamps, quotes and the a/ b/ prefix; /dev/null → None."""
    path = token.split("\t", 1)[0].strip()
    if len(path) >= 2 and path[0] == '"' and path[-1] == '"':
        path = path[1:-1]
    if path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


class _Builder:
    """Accumulates files while walking the diff line by line."""

    def __init__(self) -> None:
        self.files: list[FileDiff] = []
        self.current: FileDiff | None = None
        self.hunk: Hunk | None = None
        self.old_left = 0
        self.new_left = 0
        # True between a `diff --git` header and its first hunk
        self.in_header = False
        self.old_side: str | None = None

    def start_file(self, path: str) -> FileDiff:
        self.current = FileDiff(path=path)
        self.files.append(self.current)
        self.hunk = None
        self.old_left = self.new_left = 0
        self.in_header = True
        self.old_side = None
        return self.current

    def in_hunk_body(self) -> bool:
        return self.hunk is not None and (self.old_left > 0 or self.new_left > 0)

    def consume_body(self, line: str) -> bool:
        """Count one hunk body line; False means the hunk ended early."""
        assert self.hunk is not None and self.current is not None
        tag = line[:1]
        if tag == "\\":
            self.hunk.lines.append(line)
        elif tag == "+":
            self.hunk.lines.append(line)
            self.current.additions += 1
            self.new_left -= 1
        elif tag == "-":
            self.hunk.lines.append(line)
            self.current.deletions += 1
            self.old_left -= 1
        elif tag == " " or line == "":
            # editors strip the single space off blank context lines
            self.hunk.lines.append(line or " ")
            self.old_left -= 1
            self.new_left -= 1
        else:
            logger.warning(
                "Hunk in %s ended early (%d old / %d new lines missing)",
                self.current.path, self.old_left, self.new_left,
            )
            self.hunk = None
            return False
        return True

    def consume_header(self, line: str) -> None:
        m = _DIFF_GIT_RE.match(line)
        if m:
            self.start_file(m.group(2))
            return

        if line.startswith("\\") and self.hunk is not None:
            self.hunk.lines.append(line)
            return

        m = _HUNK_RE.match(line)
        if m:
            if self.current is None:
                logger.warning("Hunk header without a file header: %s", line)
                return
            old_lines = int(m.group(2)) if m.group(2) is not None else 1
            new_lines = int(m.group(4)) if m.group(4) is not None else 1
            self.hunk = Hunk(
                old_start=int(m.group(1)),
                old_lines=old_lines,
                new_start=int(m.group(3)),
                new_lines=new_lines,
                section=m.group(5),
            )
            self.current.hunks.append(self.hunk)
            self.old_left, self.new_left = old_lines, new_lines
            self.in_header = False
            return

        if line.startswith("--- "):
            if self.current is None or not self.in_header:
                self.start_file(_clean_path(line[4:]) or "")
            self.old_side = _clean_path(line[4:])
            if self.old_side is None:
                self.current.change_type = ChangeType.added
            return

        if line.startswith("+++ ") and self.current is not None and self.in_header:
            new_side = _clean_path(line[4:])
            if new_side is None:
                self.current.change_type = ChangeType.deleted
                if self.old_side:
                    self.current.path = self.old_side
            else:
                self.current.path = new_side
                if self.old_side and self.old_side != new_side:
                    self.current.old_path = self.old_side
            return

        if self.current is None:
            m = _BINARY_RE.match(line)
            if m:
                old_side, new_side = _clean_path(m.group(1)), _clean_path(m.group(2))
                self.start_file(new_side or old_side or "")
                self._mark_binary(old_side, new_side)
            return

        if line.startswith("new file mode"):
            self.current.change_type = ChangeType.added
        elif line.startswith("deleted file mode"):
            self.current.change_type = ChangeType.deleted
        elif line.startswith("rename from "):
            self.current.old_path = line[len("rename from "):].strip()
        elif line.startswith("rename to "):
            self.current.path = line[len("rename to "):].strip()
        elif line.startswith("GIT binary patch"):
            self._mark_binary(self.current.path, self.current.path)
        else:
            m = _BINARY_RE.match(line)
            if m:
                self._mark_binary(_clean_path(m.group(1)), _clean_path(m.group(2)))

    def _mark_binary(self, old_side: str | None, new_side: str | None) -> None:
        assert self.current is not None
        self.current.binary = True
        self.current.hunks = []
        self.hunk = None
        if old_side is None and new_side is not None:
            self.current.change_type = ChangeType.added
        elif new_side is None and old_side is not None:
            self.current.change_type = ChangeType.deleted


def _parse_files(text: str) -> list[FileDiff]:
    builder = _Builder()
    for line in text.split("\n"):
        if builder.in_hunk_body() and builder.consume_body(line):
            continue
        builder.consume_header(line)
    return [f for f in builder.files if f.path]


# ---------------------------------------------------------------------------
# Public API: parsing
# ---------------------------------------------------------------------------

def parse_diff(raw: str, revision_id: str, metadata: dict | None = None) -> Diff:
    """Parse unified diff text; never raises on malformed input."""
    meta = metadata or {}
    text = _normalize_input(raw or "")
    try:
        files = _parse_files(text)
    except Exception as exc:
        logger.warning("Unparseable diff for %s: %s", revision_id, exc)
        files = []

    if text.strip() and not files:
        logger.warning("No file sections found in diff for %s", revision_id)

    diff = Diff(
        revision_id=revision_id,
        diff_id=meta.get("diff_id"),
        title=meta.get("title") or "",
        summary=meta.get("summary") or "",
        author=meta.get("author") or "",
        files=files,
        raw=raw or "",
    )
    diff.numbered_raw = generate_numbered_diff(diff)
    logger.info(
        "Parsed diff %s: %d files, +%d -%d",
        revision_id, len(files),
        sum(f.additions for f in files), sum(f.deletions for f in files),
    )
    return diff


def extract_revision_id(raw: str | None) -> str | None:
    """Normalize `12345`, `d12345`, `D 12345` or a URL to `D12345`."""
    if not raw or not raw.strip():
        return None
    trimmed = raw.strip()
    if trimmed.isdigit():
        return f"D{trimmed}"
    m = _REVISION_RE.search(trimmed)
    if m:
        return f"D{m.group(1)}"
    return None


def is_frontend_file(path: str) -> bool:
    return path.lower().endswith(FRONTEND_EXTENSIONS)


def filter_frontend_files(diff: Diff) -> Diff:
    """Copy of *diff* keeping only frontend sources; numbered view regenerated."""
    kept = [f for f in diff.files if is_frontend_file(f.path)]
    filtered = diff.model_copy(update={"files": kept})
    filtered.numbered_raw = generate_numbered_diff(filtered)
    return filtered


# ---------------------------------------------------------------------------
# Public API: numbered view
# ---------------------------------------------------------------------------

def _hunk_header(hunk: Hunk) -> str:
    return (
        f"@@ -{hunk.old_start},{hunk.old_lines} "
        f"+{hunk.new_start},{hunk.new_lines} @@{hunk.section}"
    )


def generate_numbered_diff(diff: Diff) -> str:
    """Render *diff* with `NEW_LINE_<n>:` markers on added/context lines.

    Derived only from `diff.files` (and the title/summary), so it can be
    regenerated at any time.
    """
    out: list[str] = []
    if diff.title:
        out.append(f"Title: {diff.title}")
    if diff.summary:
        out.append(f"Summary: {diff.summary}")
    if out:
        out.append("")

    for f in diff.files:
        header = f"File: {f.path}"
        if f.old_path and f.old_path != f.path:
            header += f" (renamed from {f.old_path})"
        out.append(header)
        out.append(f"Changes: +{f.additions} -{f.deletions}")
        if f.binary:
            out.append("(binary file, not reviewable)")
            out.append("")
            continue
        for hunk in f.hunks:
            out.append(_hunk_header(hunk))
            new_line = hunk.new_start
            for line in hunk.lines:
                tag, body = line[:1], line[1:]
                if tag == "+":
                    out.append(f"NEW_LINE_{new_line}: +{body}    <- REVIEWABLE (ADDED)")
                    new_line += 1
                elif tag == "-":
                    out.append(f"DELETED: -{body}    <- NOT REVIEWABLE")
                elif tag == "\\":
                    out.append(line)
                else:
                    out.append(f"NEW_LINE_{new_line}:  {body}    <- REVIEWABLE (CONTEXT)")
                    new_line += 1
        out.append("")
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Public API: line lookup
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReviewableLine:
    line: int
    kind: str  # "added" | "context"
    content: str
    raw: str


@dataclass(frozen=True)
class LineCheck:
    valid: bool
    line: int | None
    reason: str = ""
    suggestion: int | None = None


def get_reviewable_line_details(file: FileDiff) -> list[ReviewableLine]:
    details: list[ReviewableLine] = []
    for hunk in file.hunks:
        new_line = hunk.new_start
        for line in hunk.lines:
            tag = line[:1]
            if tag in ("-", "\\"):
                continue
            kind = "added" if tag == "+" else "context"
            details.append(ReviewableLine(new_line, kind, line[1:].strip(), line[1:]))
            new_line += 1
    return details


def get_reviewable_lines(file: FileDiff) -> set[int]:
    return {d.line for d in get_reviewable_line_details(file)}


def get_changed_line_ranges(file: FileDiff) -> list[tuple[int, int]]:
    """Inclusive new-side ranges of consecutive added lines."""
    ranges: list[tuple[int, int]] = []
    for d in get_reviewable_line_details(file):
        if d.kind != "added":
            continue
        if ranges and ranges[-1][1] == d.line - 1:
            ranges[-1] = (ranges[-1][0], d.line)
        else:
            ranges.append((d.line, d.line))
    return ranges


def find_new_line_number(file: FileDiff, target_line: int) -> int | None:
    """Return *target_line* if it exists on the new side of the diff."""
    if target_line in get_reviewable_lines(file):
        return target_line
    if file.change_type == ChangeType.added:
        return target_line
    return None


def validate_and_correct_line_number(
    file: FileDiff, target_line: int, max_distance: int = 3
) -> LineCheck:
    """Check a model-reported line; suggest the nearest reviewable line in its hunk."""
    reviewable = get_reviewable_lines(file)
    if target_line in reviewable:
        return LineCheck(True, target_line)

    reason = "line not in any hunk"
    for hunk in file.hunks:
        end = hunk.new_start + hunk.new_lines - 1
        if not hunk.new_start <= target_line <= end:
            continue
        reason = "line is in a deleted section"
        for distance in range(1, max_distance + 1):
            after = target_line + distance
            if after <= end and after in reviewable:
                return LineCheck(False, None, reason, after)
            before = target_line - distance
            if before >= hunk.new_start and before in reviewable:
                return LineCheck(False, None, reason, before)
        break
    return LineCheck(False, None, reason)


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)


def find_line_by_snippet(file: FileDiff, snippet: str) -> int | None:
    """Locate *snippet* among reviewable lines, preferring added lines.

    Tries an exact trimmed match, then substring, then a match ignoring all
    whitespace.  Removed lines are never returned.
    """
    target = (snippet or "").strip()
    if not target:
        return None
    details = get_reviewable_line_details(file)
    ordered = [d for d in details if d.kind == "added"] + [
        d for d in details if d.kind == "context"
    ]
    for d in ordered:
        if d.content == target:
            return d.line
    for d in ordered:
        if target in d.content:
            return d.line
    squashed = _squash(target)
    for d in ordered:
        if squashed in _squash(d.content):
            return d.line
    return None


def strip_line_marker(text: str) -> tuple[int | None, str]:
    """Split a line copied from the numbered diff into (line number, code).

    Text without a `NEW_LINE_<n>` marker comes back unchanged with no number.
    """
    stripped = text.strip()
    m = NEW_LINE_PATTERN.match(stripped)
    if not m:
        return None, text
    body = _MARKER_TAIL_RE.sub("", stripped[m.end():])
    if body.startswith(" "):
        body = body[1:]
    if body[:1] in ("+", " "):
        body = body[1:]
    return int(m.group(1)), body.strip()


def file_content_from_hunks(file: FileDiff) -> str:
    """Best-effort new-side text of the changed regions, for prompts."""
    parts: list[str] = []
    for hunk in file.hunks:
        body = [line[1:] for line in hunk.lines if line[:1] in ("+", " ")]
        parts.append("\n".join(body))
    return "\n...\n".join(parts)
