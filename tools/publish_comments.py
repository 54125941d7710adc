"""MCP Tool: publish-comments - post inline comments through the dedup gate.

Without explicit comments, the revision's stored issues at or above the
publish threshold are merged per line and published.  Unless
ALLOW_PUBLISH_COMMENTS is set the run is a dry run: nothing is posted or
recorded.
"""

from __future__ import annotations

import logging

from engine.context import AppContext
from engine.diff_parser import extract_revision_id
from engine.review import build_inline_comments, format_summary
from models.schemas import PublishRequest, PublishResponse

logger = logging.getLogger("tools.publish_comments")


async def execute(request: PublishRequest, ctx: AppContext) -> PublishResponse:
    revision_id = extract_revision_id(request.revision_id) or request.revision_id
    comments = request.comments
    summary = request.summary_message

    if not comments:
        state = ctx.state.get(revision_id)
        eligible = [
            i for i in state.issues
            if i.confidence >= ctx.settings.publish_confidence_min
            and not (request.incremental and i.published_at)
        ]
        comments = build_inline_comments(eligible)
        if summary is None and eligible:
            summary = format_summary(eligible)
        logger.info(
            "%s: %d of %d stored issues eligible for publishing",
            revision_id, len(eligible), len(state.issues),
        )

    if not comments:
        return PublishResponse(dry_run=not ctx.settings.allow_publish)

    return await ctx.gate.publish(
        revision_id,
        comments,
        incremental=request.incremental,
        summary_message=summary,
        dry_run=not ctx.settings.allow_publish,
    )
