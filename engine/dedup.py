"""Publish gate - dedup inline comments against everything already posted.

A comment is skipped when
  * exact duplicate: all of its issue fingerprints were published before, or
  * near duplicate: a prior comment on the same file reads the same after
    whitespace/case normalization, by `difflib.SequenceMatcher` ratio at or
    above the configured threshold.

Skipped comments are recorded as published, so the next run short-circuits
on the exact check.  Running the gate twice on the same input therefore
publishes nothing the second time.
Published (or, in a dry run, publishable) comments are tallied per severity
and per topic.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from typing import Protocol

from engine.fingerprint import generate_fingerprint
from engine.state import StateManager
from models.schemas import (
    InlineComment,
    PublishDetail,
    PublishedRecord,
    PublishResponse,
    PublishStatus,
)

logger = logging.getLogger("engine.dedup")

DEFAULT_SIMILARITY_THRESHOLD = 0.90


class CommentPublisher(Protocol):
    def existing_comments(self, revision_id: str) -> list[PublishedRecord]:
        ...

    def create_inline(self, revision_id: str, file: str, line: int, text: str) -> None:
        ...

    def submit_summary(self, revision_id: str, message: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_file_path(path: str) -> str:
    cleaned = path.strip()
    if cleaned.endswith(" (new)"):
        cleaned = cleaned[: -len(" (new)")]
    for prefix in ("a/", "b/", "./"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
    return cleaned


def _normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def similarity(a: str, b: str) -> float:
    """Ratio in [0, 1] between whitespace/case-normalized texts."""
    na, nb = _normalize_text(a), _normalize_text(b)
    if not na and not nb:
        return 1.0
    return difflib.SequenceMatcher(None, na, nb, autojunk=False).ratio()


def comment_fingerprints(comment: InlineComment) -> list[str]:
    if comment.issue_ids:
        return list(comment.issue_ids)
    return [generate_fingerprint(normalize_file_path(comment.file), comment.line, comment.message)]


def _tally(response: PublishResponse, comment: InlineComment) -> None:
    severity = comment.severity.value
    response.by_severity[severity] = response.by_severity.get(severity, 0) + 1
    for topic in comment.topics or ["unspecified"]:
        response.by_topic[topic] = response.by_topic.get(topic, 0) + 1


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class PublishGate:
    def __init__(
        self,
        state: StateManager,
        publisher: CommentPublisher | None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.state = state
        self.publisher = publisher
        self.similarity_threshold = similarity_threshold

    async def _prior_records(self, revision_id: str) -> list[PublishedRecord]:
        prior = self.state.published_records(revision_id)
        if self.publisher is None:
            return prior
        loop = asyncio.get_running_loop()
        try:
            remote = await loop.run_in_executor(
                None, self.publisher.existing_comments, revision_id
            )
        except Exception as exc:
            logger.warning("Could not load existing comments for %s: %s", revision_id, exc)
            return prior
        return prior + list(remote)

    def _duplicate_reason(
        self,
        comment: InlineComment,
        fingerprints: list[str],
        known: set[str],
        prior: list[PublishedRecord],
    ) -> str | None:
        if all(fp in known for fp in fingerprints):
            return "exact-duplicate"
        file = normalize_file_path(comment.file)
        best = 0.0
        for record in prior:
            if normalize_file_path(record.file) != file:
                continue
            best = max(best, similarity(comment.message, record.text))
        if best >= self.similarity_threshold:
            return f"near-duplicate ({best * 100:.1f}% similar)"
        return None

    async def publish(
        self,
        revision_id: str,
        comments: list[InlineComment],
        incremental: bool = True,
        summary_message: str | None = None,
        dry_run: bool = False,
    ) -> PublishResponse:
        """Publish *comments* that survive dedup; never raises on transport errors."""
        prior = await self._prior_records(revision_id) if incremental else []
        known = {r.fingerprint for r in prior}
        response = PublishResponse(dry_run=dry_run)
        to_record: list[PublishedRecord] = []
        loop = asyncio.get_running_loop()

        for comment in comments:
            fingerprints = comment_fingerprints(comment)
            detail = PublishDetail(
                issue_id=",".join(fingerprints),
                file=comment.file,
                line=comment.line,
                status=PublishStatus.published,
            )
            records = [
                PublishedRecord(fingerprint=fp, file=comment.file, line=comment.line, text=comment.message)
                for fp in fingerprints
            ]

            reason = self._duplicate_reason(comment, fingerprints, known, prior)
            if reason is not None:
                detail.status = PublishStatus.skipped
                detail.reason = reason
                response.skipped += 1
            elif dry_run or self.publisher is None:
                detail.reason = "dry-run"
                response.published += 1
                _tally(response, comment)
            else:
                try:
                    await loop.run_in_executor(
                        None,
                        self.publisher.create_inline,
                        revision_id, comment.file, comment.line, comment.message,
                    )
                    response.published += 1
                    _tally(response, comment)
                except Exception as exc:
                    logger.error("Failed to publish comment on %s:%d: %s", comment.file, comment.line, exc)
                    detail.status = PublishStatus.failed
                    detail.error = str(exc)
                    response.failed += 1
            response.details.append(detail)

            if detail.status != PublishStatus.failed:
                to_record.extend(records)
                prior.extend(records)
                known.update(fingerprints)

        if dry_run or self.publisher is None:
            logger.info(
                "Dry run for %s: %d would publish, %d skipped",
                revision_id, response.published, response.skipped,
            )
            return response

        self.state.mark_published(revision_id, to_record)
        if summary_message and response.published > 0:
            try:
                await loop.run_in_executor(
                    None, self.publisher.submit_summary, revision_id, summary_message
                )
            except Exception as exc:
                logger.error("Failed to submit summary for %s: %s", revision_id, exc)
                response.error = f"summary not submitted: {exc}"

        logger.info(
            "Published %d, skipped %d, failed %d comments on %s",
            response.published, response.skipped, response.failed, revision_id,
        )
        return response
