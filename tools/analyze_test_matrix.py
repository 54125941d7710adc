"""MCP Tool: analyze-test-matrix - features × scenarios plan for a revision."""

from __future__ import annotations

import asyncio
import logging

from engine.context import AppContext
from engine.errors import ReviewError
from engine.fingerprint import compute_diff_fingerprint
from engine.test_matrix import detect_project
from models.schemas import AnalyzeMatrixRequest, AnalyzeMatrixResponse

logger = logging.getLogger("tools.analyze_test_matrix")


async def execute(request: AnalyzeMatrixRequest, ctx: AppContext) -> AnalyzeMatrixResponse:
    try:
        diff, _ = await ctx.fetcher.fetch(
            request.revision_id,
            source=request.source,
            raw_diff=request.raw_diff,
            force_refresh=request.force_refresh,
        )
    except ReviewError as exc:
        logger.error("analyze %s: could not load diff: %s", request.revision_id, exc)
        return AnalyzeMatrixResponse(
            status="failed", revision_id=request.revision_id, error=str(exc)
        )

    ctx.state.init_state(diff.revision_id, diff.diff_id, compute_diff_fingerprint(diff))
    project = await asyncio.get_running_loop().run_in_executor(
        None, detect_project, request.project_root or ctx.project_root
    )

    try:
        matrix, execution = await ctx.tests.analyze(diff, project)
    except ReviewError as exc:
        logger.error("analyze %s failed: %s", diff.revision_id, exc)
        return AnalyzeMatrixResponse(
            status="failed", revision_id=diff.revision_id, project=project, error=str(exc)
        )

    ctx.state.save_test_matrix(diff.revision_id, matrix)
    logger.info(
        "analyze %s (%s): %d features, %d scenarios",
        diff.revision_id, execution,
        matrix.summary.total_features, matrix.summary.total_scenarios,
    )
    return AnalyzeMatrixResponse(
        revision_id=diff.revision_id, execution=execution, matrix=matrix, project=project
    )
