"""Application context - every long-lived collaborator, built once.

Tools receive the context explicitly (the MCP server creates it in its
lifespan hook); tests build one from fakes with `AppContext(...)` directly.
"""

from __future__ import annotations

import functools
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from config import Settings
from engine.agents.review import TopicAgent
from engine.agents.topics import TOPICS
from engine.cache import DiskCache
from engine.dedup import PublishGate
from engine.llm import LLMClient
from engine.registry import LazyRegistry
from engine.review import ReviewPipeline
from engine.sources import DiffFetcher, GitSource, PhabricatorClient
from engine.state import StateManager
from engine.test_matrix import TestMatrixRunner, run_task
from engine.worker import WorkerPool

logger = logging.getLogger("engine.context")


@dataclass
class AppContext:
    settings: Settings
    llm: LLMClient
    cache: DiskCache
    state: StateManager
    fetcher: DiffFetcher
    agents: LazyRegistry
    review: ReviewPipeline
    gate: PublishGate
    tests: TestMatrixRunner
    pool: WorkerPool | None = None

    @property
    def project_root(self) -> Path:
        return self.settings.project_root

    def close(self) -> None:
        if self.pool is not None:
            self.pool.shutdown()


def build_agent_registry(llm: LLMClient) -> LazyRegistry:
    """Topic agents registered as factories; built on first review that needs them."""
    registry: LazyRegistry = LazyRegistry()
    for name, topic in TOPICS.items():
        registry.register_factory(name, functools.partial(TopicAgent, topic, llm))
    return registry


def build_context(settings: Settings) -> AppContext:
    llm = LLMClient(
        api_base=settings.llm_api_base,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
    )
    cache = DiskCache(settings.cache_dir, default_ttl=settings.cache_ttl)
    state = StateManager(settings.state_dir)
    phabricator = PhabricatorClient(
        settings.phabricator_host, settings.phabricator_token, timeout=settings.fetch_timeout
    )
    git = GitSource(settings.project_root, timeout=settings.fetch_timeout)

    pool = None
    if settings.worker_enabled:
        pool = WorkerPool(
            functools.partial(ProcessPoolExecutor, max_workers=max(1, settings.worker_processes)),
            functools.partial(run_task, llm=llm),
        )

    agents = build_agent_registry(llm)
    logger.info("Context ready: %d topics, workers=%s", len(TOPICS), pool is not None)
    return AppContext(
        settings=settings,
        llm=llm,
        cache=cache,
        state=state,
        fetcher=DiffFetcher(cache, phabricator, git),
        agents=agents,
        review=ReviewPipeline(
            agents,
            max_concurrency=settings.max_concurrency,
            min_confidence=settings.confidence_min,
        ),
        gate=PublishGate(state, phabricator, settings.similarity_threshold),
        tests=TestMatrixRunner(
            llm,
            pool=pool,
            analyze_timeout=settings.analyze_timeout,
            generate_timeout=settings.generate_timeout,
            max_concurrency=settings.max_concurrency,
        ),
        pool=pool,
    )
