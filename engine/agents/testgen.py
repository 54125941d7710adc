"""Test-planning and test-writing agents.

`TestMatrixAnalyzer` lists the changed features and the scenarios worth
testing; one `ScenarioTestAgent` per scenario category then writes the
test code.
"""

from __future__ import annotations

import logging

from engine.agents.base import AgentResult, ReviewContext, mean_confidence
from engine.llm import LLMClient
from engine.parser import parse_matrix, parse_test_cases
from engine.prompt_builder import build_matrix_prompt, build_test_prompt
from models.schemas import (
    FeatureItem,
    Framework,
    MatrixSummary,
    Scenario,
    TestCase,
    TestMatrix,
    TestScenarioItem,
)

logger = logging.getLogger("engine.agents.testgen")

COVERAGE_CATEGORIES = (
    Scenario.happy_path,
    Scenario.edge_case,
    Scenario.error_path,
    Scenario.state_change,
)

SCENARIO_GUIDANCE: dict[Scenario, str] = {
    Scenario.happy_path: (
        "Cover the main intended behaviour with typical, valid inputs. "
        "Assert on observable output (return values, rendered text, emitted events)."
    ),
    Scenario.edge_case: (
        "Cover boundaries: empty/undefined/null inputs, zero and maximum values, "
        "empty collections, unusual but valid strings, rapid repeated calls."
    ),
    Scenario.error_path: (
        "Cover failures: rejected promises, thrown errors, invalid props or "
        "arguments, failed network calls. Assert the error is handled or surfaced."
    ),
    Scenario.state_change: (
        "Cover transitions: state before and after user interaction, prop "
        "updates, effects re-running, cleanup on unmount."
    ),
}


# ---------------------------------------------------------------------------
# Matrix aggregation
# ---------------------------------------------------------------------------

def build_matrix(
    features: list[FeatureItem],
    scenarios: list[TestScenarioItem],
    framework: Framework = Framework.vitest,
) -> TestMatrix:
    """Attach the coverage summary; every scenario counts for at least one test."""
    coverage = {c.value: 0 for c in COVERAGE_CATEGORIES}
    for s in scenarios:
        if s.scenario.value in coverage:
            coverage[s.scenario.value] += 1
    summary = MatrixSummary(
        total_features=len(features),
        total_scenarios=len(scenarios),
        estimated_tests=sum(max(1, len(s.test_cases)) for s in scenarios),
        coverage=coverage,
    )
    return TestMatrix(
        features=features, scenarios=scenarios, summary=summary, framework=framework
    )


def _framework(context: ReviewContext) -> Framework:
    value = context.metadata.get("framework", Framework.vitest)
    try:
        framework = Framework(value)
    except ValueError:
        return Framework.vitest
    # projects without a runner get vitest tests
    return Framework.vitest if framework == Framework.none else framework


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

class TestMatrixAnalyzer:
    __test__ = False
    name = "test-matrix"

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def execute(self, context: ReviewContext) -> AgentResult[TestMatrix]:
        """Single-item result: the matrix, or nothing on failure."""
        framework = _framework(context)
        numbered = context.numbered_for(context.file_paths)
        system_prompt, user_prompt = build_matrix_prompt(numbered, context.files, framework.value)
        try:
            raw = await self.llm.complete(system_prompt, user_prompt)
        except Exception as exc:
            logger.error("Test-matrix analysis failed: %s", exc)
            return AgentResult.failure()

        parsed = parse_matrix(raw, context.file_paths)
        if parsed is None:
            return AgentResult.failure()
        features, scenarios = parsed
        if not features:
            logger.warning("No features detected for %s", context.diff.revision_id)
        return AgentResult([build_matrix(features, scenarios, framework)], 0.7)


class ScenarioTestAgent:
    def __init__(self, scenario: Scenario, llm: LLMClient) -> None:
        self.scenario = scenario
        self.llm = llm
        self.name = f"tests:{scenario.value}"

    def _matrix_focus(self, context: ReviewContext) -> str:
        matrix: TestMatrix | None = context.metadata.get("matrix")
        if matrix is None:
            return ""
        by_id = {f.id: f for f in matrix.features}
        lines = []
        for s in matrix.scenarios:
            feature = by_id.get(s.feature_id)
            if s.scenario != self.scenario or feature is None:
                continue
            cases = "; ".join(s.test_cases)
            lines.append(f"- {feature.name} ({feature.file}): {s.description} [{cases}]")
        return "\n".join(lines)

    async def execute(self, context: ReviewContext) -> AgentResult[TestCase]:
        framework = _framework(context)
        numbered = context.numbered_for(context.file_paths)
        system_prompt, user_prompt = build_test_prompt(
            scenario=self.scenario.value,
            guidance=SCENARIO_GUIDANCE.get(self.scenario, ""),
            numbered_diff=numbered,
            files=context.files,
            framework=framework.value,
            focus=self._matrix_focus(context),
        )
        try:
            raw = await self.llm.complete(system_prompt, user_prompt)
        except Exception as exc:
            logger.error("%s agent failed: %s", self.name, exc)
            return AgentResult.failure()

        tests = parse_test_cases(raw, self.scenario, context.file_paths, framework)
        if tests is None:
            return AgentResult.failure()
        return AgentResult(tests, mean_confidence([t.confidence for t in tests]))
