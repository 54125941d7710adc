"""MCP Tool: fetch-diff - load, parse and cache a revision's diff."""

from __future__ import annotations

import logging

from engine.context import AppContext
from engine.errors import ReviewError
from engine.fingerprint import compute_diff_fingerprint
from models.schemas import FetchDiffRequest, FetchDiffResponse

logger = logging.getLogger("tools.fetch_diff")


async def execute(request: FetchDiffRequest, ctx: AppContext) -> FetchDiffResponse:
    try:
        diff, origin = await ctx.fetcher.fetch(
            request.revision_id,
            source=request.source,
            raw_diff=request.raw_diff,
            force_refresh=request.force_refresh,
            frontend_only=request.frontend_only,
        )
    except ReviewError as exc:
        logger.error("fetch-diff %s failed: %s", request.revision_id, exc)
        return FetchDiffResponse(status="failed", error=str(exc))

    fingerprint = compute_diff_fingerprint(diff)
    ctx.state.init_state(diff.revision_id, diff.diff_id, fingerprint)
    return FetchDiffResponse(source=origin, fingerprint=fingerprint, diff=diff)
