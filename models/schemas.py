"""Pydantic v2 models for diffs, issues, tests and MCP tool input/output."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChangeType(str, Enum):
    added = "added"
    modified = "modified"
    deleted = "deleted"


class Severity(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Scenario(str, Enum):
    happy_path = "happy-path"
    edge_case = "edge-case"
    error_path = "error-path"
    state_change = "state-change"
    integration = "integration"


class FeatureType(str, Enum):
    function = "function"
    component = "component"
    hook = "hook"
    class_ = "class"
    module = "module"


class Complexity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Framework(str, Enum):
    vitest = "vitest"
    jest = "jest"
    none = "none"


class SourceKind(str, Enum):
    phabricator = "phabricator"
    git = "git"
    raw = "raw"


class PublishStatus(str, Enum):
    published = "published"
    skipped = "skipped"
    failed = "failed"


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

class Hunk(BaseModel):
    """One `@@` block; `lines` keep their +/-/space/backslash prefix."""
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    section: str = ""
    lines: list[str] = Field(default_factory=list)


class FileDiff(BaseModel):
    path: str = Field(description="New-side path")
    old_path: str | None = Field(default=None, description="Set when the file was renamed")
    change_type: ChangeType = ChangeType.modified
    additions: int = 0
    deletions: int = 0
    binary: bool = False
    hunks: list[Hunk] = Field(default_factory=list)


class Diff(BaseModel):
    revision_id: str
    diff_id: str | None = None
    title: str = ""
    summary: str = ""
    author: str = ""
    files: list[FileDiff] = Field(default_factory=list)
    raw: str = ""
    numbered_raw: str = ""


# ---------------------------------------------------------------------------
# Review output
# ---------------------------------------------------------------------------

class Issue(BaseModel):
    """One review finding, anchored to a new-side line."""
    id: str = Field(description="Fingerprint of file/line/topic/message")
    file: str
    line: int | None = None
    code_snippet: str | None = None
    severity: Severity = Severity.medium
    topic: str
    message: str
    suggestion: str = ""
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    created_at: str = Field(default_factory=_now)
    published_at: str | None = None


class InlineComment(BaseModel):
    """A publishable comment; several issues on one line merge into one."""
    file: str
    line: int
    message: str
    issue_ids: list[str] = Field(default_factory=list)
    severity: Severity = Severity.medium
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    topics: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Test generation
# ---------------------------------------------------------------------------

class TestCase(BaseModel):
    id: str = Field(description="Fingerprint of file/test_name/scenario")
    file: str
    test_file: str
    test_name: str
    scenario: Scenario
    framework: Framework = Framework.vitest
    code: str
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    priority: Priority = Priority.medium
    description: str = ""


class FeatureItem(BaseModel):
    id: str
    file: str
    name: str
    type: FeatureType = FeatureType.function
    description: str = ""
    change_type: ChangeType = ChangeType.modified
    complexity: Complexity = Complexity.medium
    line_range: tuple[int, int] | None = None


class TestScenarioItem(BaseModel):
    id: str
    feature_id: str
    scenario: Scenario
    description: str = ""
    priority: Priority = Priority.medium
    test_cases: list[str] = Field(default_factory=list)
    suggested_approach: str | None = None


class MatrixSummary(BaseModel):
    total_features: int = 0
    total_scenarios: int = 0
    estimated_tests: int = 0
    coverage: dict[str, int] = Field(default_factory=dict)


class TestMatrix(BaseModel):
    features: list[FeatureItem] = Field(default_factory=list)
    scenarios: list[TestScenarioItem] = Field(default_factory=list)
    summary: MatrixSummary = Field(default_factory=MatrixSummary)
    framework: Framework = Framework.vitest
    generated_at: str = Field(default_factory=_now)


class ProjectConfig(BaseModel):
    project_root: str = "."
    is_monorepo: bool = False
    test_framework: Framework = Framework.vitest
    has_existing_tests: bool = False


# ---------------------------------------------------------------------------
# Per-revision state
# ---------------------------------------------------------------------------

class PublishedRecord(BaseModel):
    fingerprint: str
    file: str
    line: int | None = None
    text: str = ""
    published_at: str = Field(default_factory=_now)


class RevisionState(BaseModel):
    revision_id: str
    diff_id: str | None = None
    diff_fingerprint: str = ""
    last_review_at: str | None = None
    last_test_gen_at: str | None = None
    last_matrix_analysis_at: str | None = None
    issues: list[Issue] = Field(default_factory=list)
    tests: list[TestCase] = Field(default_factory=list)
    published: list[PublishedRecord] = Field(default_factory=list)
    test_matrix: TestMatrix | None = None


# ---------------------------------------------------------------------------
# Tool I/O: fetch-diff
# ---------------------------------------------------------------------------

class FetchDiffRequest(BaseModel):
    revision_id: str = Field(description="D-number, commit hash, or a label for raw diffs")
    source: SourceKind = SourceKind.phabricator
    raw_diff: str | None = Field(default=None, description="Diff text when source=raw")
    force_refresh: bool = False
    frontend_only: bool = True


class FetchDiffResponse(BaseModel):
    status: str = "ok"
    source: str = Field(default="", description="cache, phabricator, git or raw")
    fingerprint: str = ""
    diff: Diff | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Tool I/O: review-frontend-diff
# ---------------------------------------------------------------------------

class ReviewRequest(BaseModel):
    revision_id: str
    source: SourceKind = SourceKind.phabricator
    raw_diff: str | None = None
    topics: list[str] | None = Field(
        default=None, description="Topic names; default is every applicable topic"
    )
    force_refresh: bool = False
    min_confidence: float | None = None


class AgentSummary(BaseModel):
    items: int = 0
    confidence: float = 0.0
    failed: bool = False
    skipped: bool = False


class ReviewResponse(BaseModel):
    status: str = "reviewed"
    revision_id: str
    topics: list[str] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    comments: list[InlineComment] = Field(default_factory=list)
    agents: dict[str, AgentSummary] = Field(default_factory=dict)
    dropped: int = Field(default=0, description="Issues without a reviewable line or below threshold")
    error: str | None = None


# ---------------------------------------------------------------------------
# Tool I/O: publish-comments
# ---------------------------------------------------------------------------

class PublishRequest(BaseModel):
    revision_id: str
    comments: list[InlineComment] = Field(
        default_factory=list,
        description="Empty means: publish stored issues above the publish threshold",
    )
    summary_message: str | None = None
    incremental: bool = True


class PublishDetail(BaseModel):
    issue_id: str
    file: str
    line: int
    status: PublishStatus
    reason: str | None = None
    error: str | None = None


class PublishResponse(BaseModel):
    status: str = "ok"
    dry_run: bool = False
    published: int = 0
    skipped: int = 0
    failed: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_topic: dict[str, int] = Field(default_factory=dict)
    details: list[PublishDetail] = Field(default_factory=list)
    error: str | None = None


# ---------------------------------------------------------------------------
# Tool I/O: analyze-test-matrix / generate-tests
# ---------------------------------------------------------------------------

class AnalyzeMatrixRequest(BaseModel):
    revision_id: str
    source: SourceKind = SourceKind.phabricator
    raw_diff: str | None = None
    project_root: str | None = None
    force_refresh: bool = False


class AnalyzeMatrixResponse(BaseModel):
    status: str = "ok"
    revision_id: str
    execution: str = Field(default="", description="worker or direct")
    matrix: TestMatrix | None = None
    project: ProjectConfig | None = None
    error: str | None = None


class GenerateTestsRequest(BaseModel):
    revision_id: str
    source: SourceKind = SourceKind.phabricator
    raw_diff: str | None = None
    project_root: str | None = None
    scenarios: list[Scenario] | None = None
    max_tests: int | None = Field(default=None, ge=1)
    incremental: bool = True
    force_refresh: bool = False


class GenerateTestsResponse(BaseModel):
    status: str = "ok"
    revision_id: str
    execution: str = ""
    tests: list[TestCase] = Field(default_factory=list)
    skipped_existing: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Tool I/O: write-test-file
# ---------------------------------------------------------------------------

class WriteTestFileRequest(BaseModel):
    tests: list[TestCase] = Field(default_factory=list)
    revision_id: str | None = Field(
        default=None, description="Load generated tests from state when `tests` is empty"
    )
    project_root: str | None = None
    overwrite: bool = False


class WrittenFile(BaseModel):
    file_path: str
    tests: int = 0
    success: bool = True
    error: str | None = None


class WriteTestFileResponse(BaseModel):
    status: str = "ok"
    files: list[WrittenFile] = Field(default_factory=list)
    error: str | None = None
