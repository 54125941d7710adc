"""Agent contract shared by review and test-generation agents.

An agent is anything with a `name` and an async `execute(context)` that
returns `AgentResult(items, confidence)`.  Agents never raise for upstream
failures: a failed or unusable model call yields `AgentResult.failure()`,
and an agent with nothing to look at yields `AgentResult.not_applicable()`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from engine.diff_parser import (
    file_content_from_hunks,
    generate_numbered_diff,
    get_changed_line_ranges,
)
from engine.prompt_builder import FileContext
from models.schemas import ChangeType, Diff

T = TypeVar("T")

EMPTY_RESULT_CONFIDENCE = 0.7


@dataclass
class AgentResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    confidence: float = 0.0
    failed: bool = False
    skipped: bool = False

    @classmethod
    def failure(cls) -> "AgentResult[T]":
        return cls([], 0.0, failed=True)

    @classmethod
    def not_applicable(cls) -> "AgentResult[T]":
        return cls([], EMPTY_RESULT_CONFIDENCE, skipped=True)


@dataclass
class ReviewContext:
    """Everything an agent sees: the diff, its reviewable files, extra metadata."""
    diff: Diff
    files: list[FileContext]
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_diff(cls, diff: Diff, **metadata: Any) -> "ReviewContext":
        files = [
            FileContext(f.path, file_content_from_hunks(f), tuple(get_changed_line_ranges(f)))
            for f in diff.files
            if not f.binary and f.change_type != ChangeType.deleted
        ]
        return cls(diff=diff, files=files, metadata=metadata)

    @property
    def file_paths(self) -> list[str]:
        return [f.path for f in self.files]

    def numbered_for(self, paths: list[str]) -> str:
        """Numbered diff restricted to *paths*."""
        if set(paths) == {f.path for f in self.diff.files}:
            return self.diff.numbered_raw or generate_numbered_diff(self.diff)
        subset = self.diff.model_copy(
            update={"files": [f for f in self.diff.files if f.path in paths]}
        )
        return generate_numbered_diff(subset)


class Agent(Protocol[T]):
    name: str

    async def execute(self, context: ReviewContext) -> AgentResult[T]:
        ...


def mean_confidence(confidences: list[float]) -> float:
    if not confidences:
        return EMPTY_RESULT_CONFIDENCE
    return sum(confidences) / len(confidences)
