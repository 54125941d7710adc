"""Model-output parser - fenced/bare JSON → validated Pydantic items.

Parsing is defensive: the model may wrap its answer in a code fence, add
prose around it, or return garbage.  A response that yields no JSON of the
expected shape returns None (the caller treats that as a failed call);
individual items missing required fields are dropped, never fatal.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError

from engine.diff_parser import strip_line_marker
from engine.fingerprint import generate_issue_fingerprint, generate_test_fingerprint
from models.schemas import (
    ChangeType,
    Complexity,
    FeatureItem,
    FeatureType,
    Framework,
    Issue,
    Priority,
    Scenario,
    Severity,
    TestCase,
    TestScenarioItem,
)

logger = logging.getLogger("engine.parser")

DEFAULT_ISSUE_CONFIDENCE = 0.7
DEFAULT_TEST_CONFIDENCE = 0.6

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_EXT_RE = re.compile(r"\.(tsx?|jsx?|mjs|cjs|vue|svelte|css|scss|sass|less|json|ya?ml|mdx|html)$")

E = TypeVar("E", bound=Enum)


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def extract_json(raw: str, expected: type) -> Any:
    """Return the first *expected*-typed JSON value found in *raw*, else None.

    Tries a fenced block, then the widest bracketed substring, then the
    whole response.
    """
    if not raw:
        return None
    bracket = _ARRAY_RE if expected is list else _OBJECT_RE
    candidates: list[str] = []
    fence = _FENCE_RE.search(raw)
    if fence:
        candidates.append(fence.group(1))
    match = bracket.search(raw)
    if match:
        candidates.append(match.group(0))
    candidates.append(raw.strip())

    for text in candidates:
        value = _loads(text)
        if isinstance(value, expected):
            return value
    return None


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _safe_enum(enum_cls: type[E], val: Any, default: E) -> E:
    try:
        return enum_cls(str(val).strip().lower())
    except ValueError:
        return default


def clamp_confidence(val: Any, default: float) -> float:
    """Coerce to float and clamp into [0, 1]; junk becomes *default*."""
    if val is None or isinstance(val, bool):
        return default
    try:
        num = float(val)
    except (TypeError, ValueError):
        return default
    if num != num:  # NaN
        return default
    return max(0.0, min(1.0, num))


def _positive_int(val: Any) -> int | None:
    try:
        num = int(val)
    except (TypeError, ValueError):
        return None
    return num if num > 0 else None


def correct_file_path(reported: str, known_files: list[str]) -> str | None:
    """Map a model-reported path onto one of *known_files*, or None.

    Exact match first, then common prefix noise (a/, b/, ./), then a unique
    match ignoring the extension (e.g. .css vs .less), then a unique
    directory-suffix match.
    """
    if not reported or not known_files:
        return None
    candidate = reported.strip().strip("`")
    if candidate in known_files:
        return candidate
    for prefix in ("a/", "b/", "./", "/"):
        if candidate.startswith(prefix):
            candidate = candidate[len(prefix):]
    if candidate in known_files:
        return candidate

    stem = _EXT_RE.sub("", candidate)
    same_stem = [k for k in known_files if _EXT_RE.sub("", k) == stem]
    if len(same_stem) == 1:
        return same_stem[0]

    suffix = [
        k for k in known_files
        if k.endswith("/" + candidate) or candidate.endswith("/" + k)
    ]
    if len(suffix) == 1:
        return suffix[0]
    return None


def default_test_file(source: str) -> str:
    """`src/a/foo.ts` → `src/a/foo.test.ts`; Vue/Svelte tests are TypeScript."""
    m = re.match(r"^(.*)\.([A-Za-z0-9]+)$", source)
    if not m:
        return f"{source}.test.ts"
    base, ext = m.groups()
    if ext in ("vue", "svelte"):
        ext = "ts"
    return f"{base}.test.{ext}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_issues(raw: str, topic: str, known_files: list[str]) -> list[Issue] | None:
    """Parse a review response; None means the response was unusable."""
    data = extract_json(raw, list)
    if data is None:
        logger.warning("Unparseable %s review response: %.200s", topic, raw)
        return None

    issues: list[Issue] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        file = correct_file_path(str(item.get("file") or ""), known_files)
        message = str(item.get("message") or "").strip()
        if not file or not message:
            logger.info("Dropping %s item (file=%r): missing file or message", topic, item.get("file"))
            continue
        reported = item.get("line")
        line = strip_line_marker(reported)[0] if isinstance(reported, str) else None
        line = line or _positive_int(reported)
        snippet_line, snippet = strip_line_marker(
            str(item.get("code_snippet") or item.get("codeSnippet") or "")
        )
        snippet = snippet.strip() or None
        line = line or snippet_line
        anchor = (line, line) if line else snippet
        try:
            issues.append(Issue(
                id=generate_issue_fingerprint(file, anchor, topic, message),
                file=file,
                line=line,
                code_snippet=snippet,
                severity=_safe_enum(Severity, item.get("severity", "medium"), Severity.medium),
                topic=topic,
                message=message,
                suggestion=str(item.get("suggestion") or ""),
                confidence=clamp_confidence(item.get("confidence"), DEFAULT_ISSUE_CONFIDENCE),
            ))
        except ValidationError as exc:
            logger.warning("Skipping malformed %s issue: %s", topic, exc)
    return issues


def parse_test_cases(
    raw: str,
    scenario: Scenario,
    known_files: list[str],
    framework: Framework = Framework.vitest,
) -> list[TestCase] | None:
    """Parse a test-generation response; None means the response was unusable."""
    data = extract_json(raw, list)
    if data is None:
        logger.warning("Unparseable %s test response: %.200s", scenario.value, raw)
        return None

    tests: list[TestCase] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        file = correct_file_path(str(item.get("file") or ""), known_files)
        code = str(item.get("code") or "").strip()
        if not file or not code:
            continue
        test_name = str(item.get("test_name") or item.get("testName") or "").strip()
        if not test_name:
            test_name = f"{scenario.value} {file}"
        try:
            tests.append(TestCase(
                id=generate_test_fingerprint(file, test_name, scenario.value),
                file=file,
                test_file=str(item.get("test_file") or item.get("testFile") or default_test_file(file)),
                test_name=test_name,
                scenario=scenario,
                framework=framework,
                code=code,
                confidence=clamp_confidence(item.get("confidence"), DEFAULT_TEST_CONFIDENCE),
                priority=_safe_enum(Priority, item.get("priority", "medium"), Priority.medium),
                description=str(item.get("description") or ""),
            ))
        except ValidationError as exc:
            logger.warning("Skipping malformed %s test: %s", scenario.value, exc)
    return tests


def _line_range(val: Any) -> tuple[int, int] | None:
    if isinstance(val, (list, tuple)) and len(val) == 2:
        start, end = _positive_int(val[0]), _positive_int(val[1])
        if start and end and start <= end:
            return start, end
    return None


def parse_matrix(
    raw: str, known_files: list[str]
) -> tuple[list[FeatureItem], list[TestScenarioItem]] | None:
    """Parse a matrix response into (features, scenarios); None if unusable."""
    data = extract_json(raw, dict)
    if data is None or not isinstance(data.get("features"), list):
        logger.warning("Unparseable test-matrix response: %.200s", raw)
        return None

    features: list[FeatureItem] = []
    for idx, item in enumerate(data["features"]):
        if not isinstance(item, dict):
            continue
        file = correct_file_path(str(item.get("file") or ""), known_files)
        name = str(item.get("name") or "").strip()
        if not file or not name:
            continue
        features.append(FeatureItem(
            id=str(item.get("id") or f"F{idx + 1}"),
            file=file,
            name=name,
            type=_safe_enum(FeatureType, item.get("type", "function"), FeatureType.function),
            description=str(item.get("description") or ""),
            change_type=_safe_enum(ChangeType, item.get("change_type", "modified"), ChangeType.modified),
            complexity=_safe_enum(Complexity, item.get("complexity", "medium"), Complexity.medium),
            line_range=_line_range(item.get("line_range")),
        ))

    feature_ids = {f.id for f in features}
    scenarios: list[TestScenarioItem] = []
    for idx, item in enumerate(data.get("scenarios") or []):
        if not isinstance(item, dict) or str(item.get("feature_id")) not in feature_ids:
            continue
        cases = item.get("test_cases") or []
        scenarios.append(TestScenarioItem(
            id=str(item.get("id") or f"S{idx + 1}"),
            feature_id=str(item["feature_id"]),
            scenario=_safe_enum(Scenario, item.get("scenario", "happy-path"), Scenario.happy_path),
            description=str(item.get("description") or ""),
            priority=_safe_enum(Priority, item.get("priority", "medium"), Priority.medium),
            test_cases=[str(c) for c in cases if c] if isinstance(cases, list) else [],
            suggested_approach=str(item.get("suggested_approach") or "") or None,
        ))
    return features, scenarios
