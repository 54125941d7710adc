"""Per-revision state store - one YAML file per revision.

Holds the issues and tests produced for a revision, the latest test matrix,
and the record of every comment already published, which the publish gate
consults for dedup.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

import yaml

from models.schemas import (
    Issue,
    PublishedRecord,
    RevisionState,
    TestCase,
    TestMatrix,
)

logger = logging.getLogger("engine.state")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_revision_id(revision_id: str) -> str:
    """`D12345` → `12345`; anything unsafe becomes `_`."""
    cleaned = revision_id[1:] if revision_id[:1] in ("D", "d") else revision_id
    return re.sub(r"[^A-Za-z0-9]", "_", cleaned) or "_"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class StateManager:
    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._lock = threading.RLock()

    def _path_for(self, revision_id: str) -> Path:
        return self.directory / f"{_clean_revision_id(revision_id)}.yaml"

    def load(self, revision_id: str) -> RevisionState | None:
        path = self._path_for(revision_id)
        if not path.exists():
            return None
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            return RevisionState.model_validate(data)
        except Exception as exc:
            logger.warning("Corrupt state file %s: %s", path, exc)
            return None

    def save(self, state: RevisionState) -> None:
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            text = yaml.safe_dump(
                state.model_dump(mode="json"),
                allow_unicode=True,
                default_flow_style=False,
                sort_keys=False,
            )
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(text)
                os.replace(tmp, self._path_for(state.revision_id))
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    def get(self, revision_id: str) -> RevisionState:
        """Load the state for *revision_id*, or a fresh empty one."""
        return self.load(revision_id) or RevisionState(revision_id=revision_id)

    def init_state(
        self, revision_id: str, diff_id: str | None, diff_fingerprint: str
    ) -> RevisionState:
        """Create or refresh state; a changed diff keeps the publish record."""
        with self._lock:
            state = self.get(revision_id)
            if state.diff_fingerprint and state.diff_fingerprint != diff_fingerprint:
                logger.info(
                    "Diff for %s changed (%s → %s)",
                    revision_id, state.diff_fingerprint, diff_fingerprint,
                )
            state.diff_id = diff_id
            state.diff_fingerprint = diff_fingerprint
            self.save(state)
            return state

    def update_issues(self, revision_id: str, issues: list[Issue]) -> RevisionState:
        """Merge *issues* by id; published_at from the stored copy survives."""
        with self._lock:
            state = self.get(revision_id)
            stored = {i.id: i for i in state.issues}
            for issue in issues:
                previous = stored.get(issue.id)
                if previous is not None and previous.published_at:
                    issue = issue.model_copy(update={"published_at": previous.published_at})
                stored[issue.id] = issue
            state.issues = list(stored.values())
            state.last_review_at = _now()
            self.save(state)
            return state

    def update_tests(self, revision_id: str, tests: list[TestCase]) -> RevisionState:
        with self._lock:
            state = self.get(revision_id)
            stored = {t.id: t for t in state.tests}
            stored.update({t.id: t for t in tests})
            state.tests = list(stored.values())
            state.last_test_gen_at = _now()
            self.save(state)
            return state

    def save_test_matrix(self, revision_id: str, matrix: TestMatrix) -> RevisionState:
        with self._lock:
            state = self.get(revision_id)
            state.test_matrix = matrix
            state.last_matrix_analysis_at = _now()
            self.save(state)
            return state

    def get_test_matrix(self, revision_id: str) -> TestMatrix | None:
        return self.get(revision_id).test_matrix

    def published_records(self, revision_id: str) -> list[PublishedRecord]:
        return list(self.get(revision_id).published)

    def mark_published(self, revision_id: str, records: list[PublishedRecord]) -> None:
        """Record published (or deliberately skipped) comments and their issues."""
        if not records:
            return
        with self._lock:
            state = self.get(revision_id)
            known = {r.fingerprint for r in state.published}
            for record in records:
                if record.fingerprint not in known:
                    state.published.append(record)
                    known.add(record.fingerprint)
            stamp = _now()
            state.issues = [
                i.model_copy(update={"published_at": stamp})
                if i.id in known and not i.published_at
                else i
                for i in state.issues
            ]
            self.save(state)
