"""Topic review agent - one configured instance per review topic."""

from __future__ import annotations

import logging

from engine.agents.base import AgentResult, ReviewContext, mean_confidence
from engine.agents.topics import TopicProfile
from engine.llm import LLMClient
from engine.parser import parse_issues
from engine.prompt_builder import build_review_prompt
from models.schemas import Issue

logger = logging.getLogger("engine.agents.review")


class TopicAgent:
    def __init__(self, topic: TopicProfile, llm: LLMClient) -> None:
        self.topic = topic
        self.llm = llm
        self.name = topic.name

    async def execute(self, context: ReviewContext) -> AgentResult[Issue]:
        files = [f for f in context.files if self.topic.applies_to(f.path)]
        if not files:
            logger.info("%s agent: no applicable files", self.name)
            return AgentResult.not_applicable()
        paths = [f.path for f in files]
        numbered = context.numbered_for(paths)

        system_prompt, user_prompt = build_review_prompt(
            topic=self.topic.description,
            focus=self.topic.focus,
            numbered_diff=numbered,
            files=files,
            hints=self.topic.hints,
        )
        try:
            raw = await self.llm.complete(system_prompt, user_prompt)
        except Exception as exc:
            logger.error("%s agent failed: %s", self.name, exc)
            return AgentResult.failure()

        issues = parse_issues(raw, self.name, paths)
        if issues is None:
            return AgentResult.failure()
        logger.info("%s agent: %d issues", self.name, len(issues))
        return AgentResult(issues, mean_confidence([i.confidence for i in issues]))
