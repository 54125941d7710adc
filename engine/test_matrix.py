"""Test-matrix analysis and test generation.

The LLM-facing work (`analyze_direct`, `generate_direct`) can run either in
the worker pool through `run_task` or in-process; `TestMatrixRunner` picks
via `run_with_fallback` and applies the same post-processing to both.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from engine.agents.base import ReviewContext
from engine.agents.testgen import COVERAGE_CATEGORIES, ScenarioTestAgent, TestMatrixAnalyzer
from engine.errors import ReviewError, WorkerError
from engine.llm import LLMClient
from engine.worker import WorkerPool, run_with_fallback
from models.schemas import Diff, Framework, ProjectConfig, Scenario, TestCase, TestMatrix

logger = logging.getLogger("engine.test_matrix")

ANALYZE_TASK = "analyze"
GENERATE_TASK = "generate"

_SKIP_DIRS = {"node_modules", ".git", "dist", "build", "coverage", ".next"}
_TEST_MARKERS = (".test.", ".spec.")


# ---------------------------------------------------------------------------
# Project detection
# ---------------------------------------------------------------------------

def _has_test_files(root: Path, limit: int = 5000) -> bool:
    seen = 0
    stack = [root]
    while stack and seen < limit:
        current = stack.pop()
        try:
            entries = list(current.iterdir())
        except OSError:
            continue
        for entry in entries:
            seen += 1
            if entry.is_dir():
                if entry.name not in _SKIP_DIRS:
                    stack.append(entry)
            elif any(m in entry.name for m in _TEST_MARKERS):
                return True
    return False


def detect_project(project_root: Path | str) -> ProjectConfig:
    """Read package.json for the test runner and workspace layout."""
    root = Path(project_root)
    pkg: dict = {}
    pkg_path = root / "package.json"
    if pkg_path.exists():
        try:
            pkg = json.loads(pkg_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable %s: %s", pkg_path, exc)

    deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
    if "vitest" in deps:
        framework = Framework.vitest
    elif "jest" in deps or "ts-jest" in deps:
        framework = Framework.jest
    else:
        framework = Framework.none

    is_monorepo = bool(pkg.get("workspaces")) or any(
        (root / name).exists() for name in ("pnpm-workspace.yaml", "lerna.json", "nx.json")
    )
    return ProjectConfig(
        project_root=str(root),
        is_monorepo=is_monorepo,
        test_framework=framework,
        has_existing_tests=_has_test_files(root) if root.is_dir() else False,
    )


# ---------------------------------------------------------------------------
# Direct (in-process) execution
# ---------------------------------------------------------------------------

async def analyze_direct(diff: Diff, project: ProjectConfig, llm: LLMClient) -> TestMatrix:
    context = ReviewContext.from_diff(diff, framework=project.test_framework.value)
    result = await TestMatrixAnalyzer(llm).execute(context)
    if not result.items:
        raise ReviewError(f"test-matrix analysis for {diff.revision_id} produced no result")
    return result.items[0]


async def generate_direct(
    diff: Diff,
    project: ProjectConfig,
    llm: LLMClient,
    matrix: TestMatrix | None = None,
    scenarios: list[Scenario] | None = None,
    max_concurrency: int = 4,
) -> list[TestCase]:
    """Run one agent per scenario concurrently; tests deduped by id, in order."""
    context = ReviewContext.from_diff(
        diff, framework=project.test_framework.value, matrix=matrix
    )
    agents = [ScenarioTestAgent(s, llm) for s in (scenarios or list(COVERAGE_CATEGORIES))]
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def bounded(agent: ScenarioTestAgent):
        async with semaphore:
            return await agent.execute(context)

    results = await asyncio.gather(*(bounded(a) for a in agents))
    tests: dict[str, TestCase] = {}
    for agent, result in zip(agents, results):
        logger.info("%s: %d tests (confidence %.2f)", agent.name, len(result.items), result.confidence)
        for test in result.items:
            tests.setdefault(test.id, test)
    return list(tests.values())


def run_task(task_type: str, payload: dict, llm: LLMClient) -> object:
    """Worker entry point: JSON-ready payload in, JSON-ready result out."""
    diff = Diff.model_validate(payload["diff"])
    project = ProjectConfig.model_validate(payload["project"])
    if task_type == ANALYZE_TASK:
        matrix = asyncio.run(analyze_direct(diff, project, llm))
        return matrix.model_dump(mode="json")
    if task_type == GENERATE_TASK:
        matrix = TestMatrix.model_validate(payload["matrix"]) if payload.get("matrix") else None
        scenarios = [Scenario(s) for s in payload.get("scenarios") or []] or None
        tests = asyncio.run(generate_direct(
            diff, project, llm, matrix, scenarios, payload.get("max_concurrency", 4)
        ))
        return [t.model_dump(mode="json") for t in tests]
    raise WorkerError(f"Unknown worker task: {task_type}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class TestMatrixRunner:
    __test__ = False

    def __init__(
        self,
        llm: LLMClient,
        pool: WorkerPool | None = None,
        analyze_timeout: float = 120.0,
        generate_timeout: float = 300.0,
        max_concurrency: int = 4,
    ) -> None:
        self.llm = llm
        self.pool = pool
        self.analyze_timeout = analyze_timeout
        self.generate_timeout = generate_timeout
        self.max_concurrency = max_concurrency

    async def analyze(self, diff: Diff, project: ProjectConfig) -> tuple[TestMatrix, str]:
        """Return (matrix, execution) where execution is "worker" or "direct"."""
        payload = {
            "diff": diff.model_dump(mode="json"),
            "project": project.model_dump(mode="json"),
        }

        async def delegated() -> TestMatrix:
            data = await self.pool.execute_task(ANALYZE_TASK, payload, self.analyze_timeout)
            return TestMatrix.model_validate(data)

        async def direct() -> TestMatrix:
            return await analyze_direct(diff, project, self.llm)

        return await run_with_fallback(
            delegated if self.pool is not None else None, direct, f"analyze {diff.revision_id}"
        )

    async def generate(
        self,
        diff: Diff,
        project: ProjectConfig,
        matrix: TestMatrix | None = None,
        scenarios: list[Scenario] | None = None,
        max_tests: int | None = None,
        existing_ids: set[str] | None = None,
    ) -> tuple[list[TestCase], int, str]:
        """Return (tests, skipped_existing, execution).

        Tests already in *existing_ids* are dropped; the rest are capped at
        *max_tests*, highest confidence first.
        """
        payload = {
            "diff": diff.model_dump(mode="json"),
            "project": project.model_dump(mode="json"),
            "matrix": matrix.model_dump(mode="json") if matrix else None,
            "scenarios": [s.value for s in scenarios] if scenarios else None,
            "max_concurrency": self.max_concurrency,
        }

        async def delegated() -> list[TestCase]:
            data = await self.pool.execute_task(GENERATE_TASK, payload, self.generate_timeout)
            return [TestCase.model_validate(t) for t in data]

        async def direct() -> list[TestCase]:
            return await generate_direct(
                diff, project, self.llm, matrix, scenarios, self.max_concurrency
            )

        tests, execution = await run_with_fallback(
            delegated if self.pool is not None else None, direct, f"generate {diff.revision_id}"
        )

        known = existing_ids or set()
        fresh = [t for t in tests if t.id not in known]
        skipped = len(tests) - len(fresh)
        if max_tests is not None and len(fresh) > max_tests:
            fresh = sorted(fresh, key=lambda t: t.confidence, reverse=True)[:max_tests]
        return fresh, skipped, execution
