"""MCP Tool: review-frontend-diff - multi-topic LLM review of a revision.

Pipeline: fetch (cached) → topic agents → re-anchor + dedup → state
         → merged inline comments
"""

from __future__ import annotations

import logging

from engine.context import AppContext
from engine.errors import ReviewError
from engine.fingerprint import compute_diff_fingerprint
from engine.review import build_inline_comments
from models.schemas import AgentSummary, ReviewRequest, ReviewResponse

logger = logging.getLogger("tools.review_diff")


async def execute(request: ReviewRequest, ctx: AppContext) -> ReviewResponse:
    try:
        diff, origin = await ctx.fetcher.fetch(
            request.revision_id,
            source=request.source,
            raw_diff=request.raw_diff,
            force_refresh=request.force_refresh,
        )
    except ReviewError as exc:
        logger.error("review %s: could not load diff: %s", request.revision_id, exc)
        return ReviewResponse(status="failed", revision_id=request.revision_id, error=str(exc))

    ctx.state.init_state(diff.revision_id, diff.diff_id, compute_diff_fingerprint(diff))
    outcome = await ctx.review.run(diff, request.topics, request.min_confidence)
    ctx.state.update_issues(diff.revision_id, outcome.issues)

    response = ReviewResponse(
        revision_id=diff.revision_id,
        topics=outcome.topics,
        issues=outcome.issues,
        comments=build_inline_comments(outcome.issues),
        agents={
            name: AgentSummary(
                items=len(result.items),
                confidence=result.confidence,
                failed=result.failed,
                skipped=result.skipped,
            )
            for name, result in outcome.agents.items()
        },
        dropped=outcome.dropped,
    )
    ran = [r for r in outcome.agents.values() if not r.skipped]
    if ran and all(r.failed for r in ran):
        response.status = "failed"
        response.error = "every review agent failed; see server log"
    elif outcome.injection_hits:
        response.error = f"instruction-like content in diff: {outcome.injection_hits}"

    logger.info(
        "review %s (diff from %s): %d issues, %d comments",
        diff.revision_id, origin, len(response.issues), len(response.comments),
    )
    return response
