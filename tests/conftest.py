"""Shared fixtures: sample diffs, a scripted LLM, and an AppContext built from fakes."""

import json
from pathlib import Path

import pytest

from config import Settings
from engine.cache import DiskCache
from engine.context import AppContext, build_agent_registry
from engine.dedup import PublishGate
from engine.errors import LLMError
from engine.review import ReviewPipeline
from engine.sources import DiffFetcher
from engine.state import StateManager
from engine.test_matrix import TestMatrixRunner


CSS_DIFF = """diff --git a/src/button.css b/src/button.css
index 1111111..2222222 100644
--- a/src/button.css
+++ b/src/button.css
@@ -40,4 +40,5 @@ .button {
 .button {
   padding: 4px;
+  color: red !important;
   margin: 0;
 }
"""

MULTI_DIFF = """diff --git a/src/utils/format.ts b/src/utils/format.ts
index abc1234..def5678 100644
--- a/src/utils/format.ts
+++ b/src/utils/format.ts
@@ -10,4 +10,5 @@ export function format(value: number) {
   const rounded = Math.round(value);
-  return rounded.toString();
+  const text = rounded.toFixed(2);
+  return text;
--- note
+++ note
 }
\\ No newline at end of file
diff --git a/src/old/Card.tsx b/src/components/Card.tsx
similarity index 90%
rename from src/old/Card.tsx
rename to src/components/Card.tsx
index 3333333..4444444 100644
--- a/src/old/Card.tsx
+++ b/src/components/Card.tsx
@@ -1,3 +1,3 @@
 import React from 'react';
-export const Card = () => <div />;
+export const Card = () => <section />;
 export default Card;
diff --git a/public/logo.png b/public/logo.png
new file mode 100644
index 0000000..1234567
Binary files /dev/null and b/public/logo.png differ
diff --git a/src/hooks/useToggle.ts b/src/hooks/useToggle.ts
new file mode 100644
index 0000000..5555555
--- /dev/null
+++ b/src/hooks/useToggle.ts
@@ -0,0 +1,3 @@
+import { useState } from 'react';
+export const useToggle = (v = false) => useState(v);
+export default useToggle;
diff --git a/src/legacy.js b/src/legacy.js
deleted file mode 100644
index 6666666..0000000
--- a/src/legacy.js
+++ /dev/null
@@ -1,2 +0,0 @@
-export const a = 1;
-export const b = 2;
"""

VUE_DIFF = """diff --git a/src/views/List.vue b/src/views/List.vue
index 7777777..8888888 100644
--- a/src/views/List.vue
+++ b/src/views/List.vue
@@ -103,6 +103,7 @@
       <b-select
         v-model="value"
         :options="options"
+        :enable-reset="false"
         @change="onChange"
       />
     </div>
"""


class FakeLLM:
    """Scripted LLM: the first rule whose key appears in the prompts answers.

    A rule value may be a string or an Exception instance (raised).
    """

    def __init__(self, rules=None, default="[]"):
        self.rules = list((rules or {}).items())
        self.default = default
        self.calls = []

    async def complete(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        for key, answer in self.rules:
            if key in system_prompt or key in user_prompt:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        if isinstance(self.default, Exception):
            raise self.default
        return self.default


class FakePublisher:
    def __init__(self, existing=None, fail_on=None):
        self.existing = list(existing or [])
        self.fail_on = fail_on
        self.inlines = []
        self.summaries = []

    def existing_comments(self, revision_id):
        return list(self.existing)

    def create_inline(self, revision_id, file, line, text):
        if self.fail_on is not None and self.fail_on in text:
            raise LLMError("conduit said no")
        self.inlines.append((revision_id, file, line, text))

    def submit_summary(self, revision_id, message):
        self.summaries.append((revision_id, message))


def css_issue_json(line=42, confidence=0.9, message="Avoid !important", snippet=None):
    item = {
        "file": "src/button.css",
        "line": line,
        "severity": "medium",
        "message": message,
        "suggestion": "Increase selector specificity instead",
        "confidence": confidence,
    }
    if snippet is not None:
        item["code_snippet"] = snippet
    return json.dumps([item])


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        llm_api_base="https://llm.test/v1",
        llm_api_key="sk-test-key-123456",
        llm_model="test-model",
        llm_timeout=5.0,
        llm_max_retries=0,
        phabricator_host="https://phab.test",
        phabricator_token="api-token-abcdef",
        cache_dir=tmp_path / "cache",
        cache_ttl=3600,
        state_dir=tmp_path / "state",
        worker_enabled=False,
        project_root=tmp_path / "project",
    )
    values.update(overrides)
    return Settings(**values)


def make_context(tmp_path: Path, llm, publisher=None, **overrides) -> AppContext:
    settings = make_settings(tmp_path, **overrides)
    settings.project_root.mkdir(parents=True, exist_ok=True)
    cache = DiskCache(settings.cache_dir, default_ttl=settings.cache_ttl)
    state = StateManager(settings.state_dir)
    agents = build_agent_registry(llm)
    return AppContext(
        settings=settings,
        llm=llm,
        cache=cache,
        state=state,
        fetcher=DiffFetcher(cache, None, None),
        agents=agents,
        review=ReviewPipeline(agents, min_confidence=settings.confidence_min),
        gate=PublishGate(state, publisher, settings.similarity_threshold),
        tests=TestMatrixRunner(llm),
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()
