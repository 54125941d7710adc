"""Review pipeline - topic fan-out, line re-anchoring, dedup, comment merge.

Pipeline: diff → applicable topic agents (concurrent, semaphore-bounded)
         → issues re-anchored onto reviewable new-side lines
         → dedup by fingerprint → confidence filter → inline comments
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from engine.agents.base import AgentResult, ReviewContext
from engine.agents.topics import TOPICS, applicable_topics
from engine.diff_parser import (
    find_line_by_snippet,
    find_new_line_number,
    validate_and_correct_line_number,
)
from engine.fingerprint import generate_issue_fingerprint
from engine.registry import LazyRegistry
from engine.sanitizer import find_injections
from models.schemas import Diff, FileDiff, InlineComment, Issue, Severity

logger = logging.getLogger("engine.review")

_SEVERITY_RANK = {
    Severity.critical: 0,
    Severity.high: 1,
    Severity.medium: 2,
    Severity.low: 3,
}


@dataclass
class ReviewOutcome:
    topics: list[str]
    issues: list[Issue]
    agents: dict[str, AgentResult] = field(default_factory=dict)
    dropped: int = 0
    injection_hits: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def select_topics(paths: list[str], requested: list[str] | None = None) -> list[str]:
    if not requested:
        return applicable_topics(paths)
    selected = []
    for name in requested:
        key = name.strip().lower()
        if key in TOPICS and key not in selected:
            selected.append(key)
        else:
            logger.warning("Ignoring unknown or repeated topic %r", name)
    return selected


def anchor_issue(issue: Issue, file: FileDiff) -> Issue | None:
    """Move *issue* onto a reviewable line; None if no line can be trusted.

    Order: code snippet lookup, then the reported line (or the nearest
    reviewable line in its hunk), then any line of a newly added file.
    """
    line: int | None = None
    if issue.code_snippet:
        line = find_line_by_snippet(file, issue.code_snippet)
    if line is None and issue.line:
        check = validate_and_correct_line_number(file, issue.line)
        if check.valid:
            line = check.line
        elif check.suggestion is not None:
            logger.info(
                "Adjusted %s:%d → %d (%s)", file.path, issue.line, check.suggestion, check.reason
            )
            line = check.suggestion
        else:
            line = find_new_line_number(file, issue.line)
    if line is None:
        logger.info("Dropping %s issue on %s: no reviewable line", issue.topic, file.path)
        return None
    return issue.model_copy(update={
        "line": line,
        "id": generate_issue_fingerprint(issue.file, (line, line), issue.topic, issue.message),
    })


def format_comment(issues: list[Issue]) -> str:
    blocks = []
    for issue in issues:
        text = f"[{issue.severity.value.upper()}] {issue.message}"
        if issue.suggestion:
            text += f"\nSuggestion: {issue.suggestion}"
        text += f"\n(confidence={issue.confidence:.2f})"
        blocks.append(text)
    return "\n\n".join(blocks)


def build_inline_comments(issues: list[Issue]) -> list[InlineComment]:
    """One comment per file:line; issues on the same line are merged."""
    grouped: dict[tuple[str, int], list[Issue]] = {}
    for issue in issues:
        if issue.line is None:
            continue
        grouped.setdefault((issue.file, issue.line), []).append(issue)

    comments = []
    for (file, line), group in grouped.items():
        group.sort(key=lambda i: (_SEVERITY_RANK[i.severity], -i.confidence))
        comments.append(InlineComment(
            file=file,
            line=line,
            message=format_comment(group),
            issue_ids=[i.id for i in group],
            severity=group[0].severity,
            confidence=max(i.confidence for i in group),
            topics=sorted({i.topic for i in group}),
        ))
    return comments


def format_summary(issues: list[Issue]) -> str:
    counts = {s: 0 for s in Severity}
    for issue in issues:
        counts[issue.severity] += 1
    parts = ", ".join(f"{s.value} {n}" for s, n in counts.items() if n)
    return f"Automated frontend review: {len(issues)} issue(s) ({parts or 'none'})."


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class ReviewPipeline:
    def __init__(
        self,
        agents: LazyRegistry,
        max_concurrency: int = 5,
        min_confidence: float = 0.7,
    ) -> None:
        self.agents = agents
        self.max_concurrency = max_concurrency
        self.min_confidence = min_confidence

    async def run(
        self,
        diff: Diff,
        topics: list[str] | None = None,
        min_confidence: float | None = None,
    ) -> ReviewOutcome:
        context = ReviewContext.from_diff(diff)
        selected = [t for t in select_topics(context.file_paths, topics) if t in self.agents]
        threshold = self.min_confidence if min_confidence is None else min_confidence
        outcome = ReviewOutcome(topics=selected, issues=[])
        outcome.injection_hits = find_injections(diff.numbered_raw)
        if outcome.injection_hits:
            logger.warning("Instruction-like content in %s: %s", diff.revision_id, outcome.injection_hits)
        if not selected:
            logger.info("No applicable review topics for %s", diff.revision_id)
            return outcome

        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))

        async def bounded(name: str) -> AgentResult:
            async with semaphore:
                return await self.agents.get(name).execute(context)

        results = await asyncio.gather(*(bounded(name) for name in selected))
        outcome.agents = dict(zip(selected, results))

        files = {f.path: f for f in diff.files}
        merged: dict[str, Issue] = {}
        for name, result in outcome.agents.items():
            logger.info("Topic %s: %d items, confidence %.2f", name, len(result.items), result.confidence)
            for issue in result.items:
                file = files.get(issue.file)
                anchored = anchor_issue(issue, file) if file is not None else None
                if anchored is None or anchored.confidence < threshold:
                    outcome.dropped += 1
                    continue
                previous = merged.get(anchored.id)
                if previous is None or anchored.confidence > previous.confidence:
                    merged[anchored.id] = anchored

        outcome.issues = sorted(
            merged.values(),
            key=lambda i: (i.file, i.line or 0, _SEVERITY_RANK[i.severity]),
        )
        logger.info(
            "Review of %s: %d issues kept, %d dropped",
            diff.revision_id, len(outcome.issues), outcome.dropped,
        )
        return outcome
