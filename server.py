"""fe-review-mcp - Frontend Code Review & Test Generation MCP Server.

Registers six tools:
  - fetch-diff: load + parse a revision diff (cached)
  - review-frontend-diff: multi-topic LLM review
  - publish-comments: deduplicated inline comments on Phabricator
  - analyze-test-matrix: features × scenarios test plan
  - generate-tests: per-scenario unit tests
  - write-test-file: write generated tests to disk
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

# Ensure project root is on sys.path
_PROJECT_ROOT = Path(__file__).resolve().parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from mcp.server.fastmcp import Context, FastMCP

from config import load_settings
from engine.context import AppContext, build_context
from models.schemas import (
    AnalyzeMatrixRequest,
    FetchDiffRequest,
    GenerateTestsRequest,
    InlineComment,
    PublishRequest,
    ReviewRequest,
    Scenario,
    SourceKind,
    TestCase,
    WriteTestFileRequest,
)
from tools.analyze_test_matrix import execute as analyze_execute
from tools.fetch_diff import execute as fetch_diff_execute
from tools.generate_tests import execute as generate_execute
from tools.publish_comments import execute as publish_execute
from tools.review_diff import execute as review_execute
from tools.write_test_file import execute as write_execute

# ---------------------------------------------------------------------------
# Logging setup (secrets masked via config); stdout belongs to stdio transport
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("server")


# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the application context once and tear it down on exit."""
    app = build_context(load_settings())
    try:
        yield app
    finally:
        app.close()


mcp = FastMCP(
    "fe-review-mcp",
    json_response=True,
    lifespan=app_lifespan,
)


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


@mcp.tool(name="fetch-diff")
async def fetch_diff(
    revision_id: str,
    ctx: Context,
    source: str = "phabricator",
    raw_diff: str | None = None,
    force_refresh: bool = False,
    frontend_only: bool = True,
) -> dict:
    """Fetch and parse a diff, with a numbered view for line-accurate review.

    Args:
        revision_id: Phabricator revision (D123 / 123), git commit, or a label for raw diffs.
        source: One of: phabricator, git, raw.
        raw_diff: Unified diff text (source=raw only).
        force_refresh: Skip the cache read; the fresh diff is still cached.
        frontend_only: Keep only frontend source files.

    Returns:
        Parsed diff, its fingerprint, and where it came from (cache or source).
    """
    request = FetchDiffRequest(
        revision_id=revision_id,
        source=SourceKind(source),
        raw_diff=raw_diff,
        force_refresh=force_refresh,
        frontend_only=frontend_only,
    )
    result = await fetch_diff_execute(request, _app(ctx))
    return result.model_dump(mode="json")


@mcp.tool(name="review-frontend-diff")
async def review_frontend_diff(
    revision_id: str,
    ctx: Context,
    source: str = "phabricator",
    raw_diff: str | None = None,
    topics: list[str] | None = None,
    force_refresh: bool = False,
    min_confidence: float | None = None,
) -> dict:
    """Review a frontend change with one LLM agent per applicable topic.

    Args:
        revision_id: Phabricator revision, git commit, or a label for raw diffs.
        source: One of: phabricator, git, raw.
        raw_diff: Unified diff text (source=raw only).
        topics: Subset of react, typescript, performance, security, accessibility, css, i18n.
        force_refresh: Re-fetch the diff instead of using the cache.
        min_confidence: Drop issues below this confidence (default from config).

    Returns:
        Issues anchored to new-file lines, merged inline comments, per-agent confidence.
    """
    request = ReviewRequest(
        revision_id=revision_id,
        source=SourceKind(source),
        raw_diff=raw_diff,
        topics=topics,
        force_refresh=force_refresh,
        min_confidence=min_confidence,
    )
    result = await review_execute(request, _app(ctx))
    return result.model_dump(mode="json")


@mcp.tool(name="publish-comments")
async def publish_comments(
    revision_id: str,
    ctx: Context,
    comments: list[dict] | None = None,
    summary_message: str | None = None,
    incremental: bool = True,
) -> dict:
    """Publish inline comments, skipping exact and near duplicates.

    Args:
        revision_id: Phabricator revision (D123).
        comments: Items of {file, line, message, issue_ids?}; empty publishes stored issues.
        summary_message: Optional top-level comment posted after publishing.
        incremental: Dedup against comments already on the revision.

    Returns:
        Counts of published / skipped / failed with a per-comment reason.
    """
    request = PublishRequest(
        revision_id=revision_id,
        comments=[InlineComment(**c) for c in comments or []],
        summary_message=summary_message,
        incremental=incremental,
    )
    result = await publish_execute(request, _app(ctx))
    return result.model_dump(mode="json")


@mcp.tool(name="analyze-test-matrix")
async def analyze_test_matrix(
    revision_id: str,
    ctx: Context,
    source: str = "phabricator",
    raw_diff: str | None = None,
    project_root: str | None = None,
    force_refresh: bool = False,
) -> dict:
    """Identify changed features and the test scenarios each one needs.

    Args:
        revision_id: Phabricator revision, git commit, or a label for raw diffs.
        source: One of: phabricator, git, raw.
        raw_diff: Unified diff text (source=raw only).
        project_root: Frontend project root (for test framework detection).
        force_refresh: Re-fetch the diff instead of using the cache.

    Returns:
        Test matrix with coverage summary and the execution path used.
    """
    request = AnalyzeMatrixRequest(
        revision_id=revision_id,
        source=SourceKind(source),
        raw_diff=raw_diff,
        project_root=project_root,
        force_refresh=force_refresh,
    )
    result = await analyze_execute(request, _app(ctx))
    return result.model_dump(mode="json")


@mcp.tool(name="generate-tests")
async def generate_tests(
    revision_id: str,
    ctx: Context,
    source: str = "phabricator",
    raw_diff: str | None = None,
    project_root: str | None = None,
    scenarios: list[str] | None = None,
    max_tests: int | None = None,
    incremental: bool = True,
    force_refresh: bool = False,
) -> dict:
    """Generate unit tests per scenario (happy-path, edge-case, error-path, state-change).

    Args:
        revision_id: Phabricator revision, git commit, or a label for raw diffs.
        source: One of: phabricator, git, raw.
        raw_diff: Unified diff text (source=raw only).
        project_root: Frontend project root (for test framework detection).
        scenarios: Scenario subset; default is all four.
        max_tests: Keep at most this many tests, highest confidence first.
        incremental: Skip tests already generated for this revision.
        force_refresh: Re-fetch the diff instead of using the cache.

    Returns:
        Generated test cases and the execution path used.
    """
    request = GenerateTestsRequest(
        revision_id=revision_id,
        source=SourceKind(source),
        raw_diff=raw_diff,
        project_root=project_root,
        scenarios=[Scenario(s) for s in scenarios] if scenarios else None,
        max_tests=max_tests,
        incremental=incremental,
        force_refresh=force_refresh,
    )
    result = await generate_execute(request, _app(ctx))
    return result.model_dump(mode="json")


@mcp.tool(name="write-test-file")
def write_test_file(
    ctx: Context,
    tests: list[dict] | None = None,
    revision_id: str | None = None,
    project_root: str | None = None,
    overwrite: bool = False,
) -> dict:
    """Write generated tests to disk, one file per target test file.

    Args:
        tests: Test cases as returned by generate-tests; empty loads them from revision state.
        revision_id: Revision whose stored tests to write when `tests` is empty.
        project_root: Root the test paths are relative to.
        overwrite: Replace existing files.

    Returns:
        Per-file result with success flag and error.
    """
    request = WriteTestFileRequest(
        tests=[TestCase(**t) for t in tests or []],
        revision_id=revision_id,
        project_root=project_root,
        overwrite=overwrite,
    )
    result = write_execute(request, _app(ctx))
    return result.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main():
    """Entry point for uvx / console_scripts. Refuses to start without credentials."""
    try:
        settings = load_settings()
    except EnvironmentError as exc:
        logger.error("Configuration error, not starting: %s", exc)
        sys.exit(1)

    logger.info("Starting fe-review-mcp server")
    logger.info(settings.log_summary())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
