"""Diff sources - Phabricator Conduit over HTTP and local git.

Both clients are synchronous and bounded by timeouts; callers run them in an
executor.  `DiffFetcher` puts the cache in front of them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import subprocess
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from engine.cache import DiskCache
from engine.diff_parser import extract_revision_id, filter_frontend_files, parse_diff
from engine.errors import SourceError
from engine.fingerprint import compute_content_hash, generate_fingerprint
from models.schemas import Diff, PublishedRecord, SourceKind

logger = logging.getLogger("engine.sources")

_SAFE_REF_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/~^@{}-]*$")


# ---------------------------------------------------------------------------
# Phabricator
# ---------------------------------------------------------------------------

class PhabricatorClient:
    """Minimal Conduit client: revision lookup, raw diffs and inline comments."""

    def __init__(self, host: str, token: str, timeout: float = 30.0) -> None:
        self.host = host.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._latest_diff: dict[str, int] = {}

    def _call(self, method: str, params: dict) -> object:
        body = dict(params)
        body["__conduit__"] = {"token": self.token}
        payload = urlencode({
            "params": json.dumps(body),
            "output": "json",
            "__conduit__": "1",
        }).encode("utf-8")
        url = f"{self.host}/api/{method}"
        req = Request(
            url,
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            raise SourceError(f"HTTP {exc.code} from {method}") from exc
        except URLError as exc:
            raise SourceError(f"Network error calling {method}: {exc.reason}") from exc
        except (TimeoutError, json.JSONDecodeError, OSError) as exc:
            raise SourceError(f"{method} failed: {exc}") from exc

        if data.get("error_code"):
            raise SourceError(f"{method}: {data.get('error_code')} {data.get('error_info')}")
        return data.get("result")

    @staticmethod
    def _number(revision_id: str) -> int:
        normalized = extract_revision_id(revision_id)
        if normalized is None:
            raise SourceError(f"Not a Phabricator revision id: {revision_id!r}")
        return int(normalized[1:])

    def fetch_metadata(self, revision_id: str) -> dict:
        result = self._call("differential.query", {"ids": [self._number(revision_id)]})
        if not isinstance(result, list) or not result:
            raise SourceError(f"Revision {revision_id} not found")
        rev = result[0]
        diff_ids = [int(d) for d in rev.get("diffs") or []]
        if not diff_ids:
            raise SourceError(f"Revision {revision_id} has no diffs")
        latest = max(diff_ids)
        self._latest_diff[revision_id] = latest
        return {
            "title": rev.get("title", ""),
            "summary": rev.get("summary", ""),
            "author": rev.get("authorPHID", ""),
            "diff_id": str(latest),
        }

    def fetch_diff(self, revision_id: str) -> str:
        diff_id = self._latest_diff.get(revision_id)
        if diff_id is None:
            diff_id = int(self.fetch_metadata(revision_id)["diff_id"])
        raw = self._call("differential.getrawdiff", {"diffID": diff_id})
        if not isinstance(raw, str):
            raise SourceError(f"Unexpected raw diff payload for {revision_id}")
        return raw

    def existing_comments(self, revision_id: str) -> list[PublishedRecord]:
        """Inline comments already on the revision (all diffs)."""
        result = self._call("transaction.search", {
            "objectIdentifier": extract_revision_id(revision_id) or revision_id,
            "limit": 100,
        })
        records: list[PublishedRecord] = []
        for tx in (result or {}).get("data", []) if isinstance(result, dict) else []:
            if tx.get("type") != "inline":
                continue
            fields = tx.get("fields") or {}
            path = fields.get("path") or ""
            line = fields.get("line")
            for comment in tx.get("comments") or []:
                text = ((comment.get("content") or {}).get("raw")) or ""
                records.append(PublishedRecord(
                    fingerprint=generate_fingerprint(path, line, text),
                    file=path,
                    line=line,
                    text=text,
                ))
        return records

    def create_inline(self, revision_id: str, file: str, line: int, text: str) -> None:
        diff_id = self._latest_diff.get(revision_id)
        if diff_id is None:
            diff_id = int(self.fetch_metadata(revision_id)["diff_id"])
        self._call("differential.createinline", {
            "revisionID": self._number(revision_id),
            "diffID": diff_id,
            "filePath": file,
            "isNewFile": True,
            "lineNumber": line,
            "content": text,
        })

    def submit_summary(self, revision_id: str, message: str) -> None:
        """Post the summary and attach the draft inline comments."""
        self._call("differential.createcomment", {
            "revision_id": self._number(revision_id),
            "message": message,
            "attach_inlines": True,
        })


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------

class GitSource:
    """Reads commits from a local repository with `git show`."""

    def __init__(self, repo_path: Path | str, timeout: float = 30.0) -> None:
        self.repo_path = Path(repo_path)
        self.timeout = timeout

    def _git(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise SourceError(f"git {args[0]} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise SourceError(f"git not runnable: {exc}") from exc
        if result.returncode != 0:
            raise SourceError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result.stdout

    @staticmethod
    def _check_ref(ref: str) -> str:
        if not _SAFE_REF_RE.match(ref):
            raise SourceError(f"Invalid git revision: {ref!r}")
        return ref

    def fetch_metadata(self, commit: str) -> dict:
        out = self._git("show", "--no-patch", "--format=%H%n%an%n%ai%n%s%n%b", self._check_ref(commit))
        lines = out.split("\n")
        lines += [""] * (4 - len(lines))
        return {
            "diff_id": lines[0].strip(),
            "author": lines[1].strip(),
            "date": lines[2].strip(),
            "title": lines[3].strip(),
            "summary": "\n".join(lines[4:]).strip(),
        }

    def fetch_diff(self, commit: str) -> str:
        return self._git("show", "--no-color", "--format=", self._check_ref(commit))


# ---------------------------------------------------------------------------
# Cached fetch
# ---------------------------------------------------------------------------

class DiffFetcher:
    """Fetch + parse with a write-through cache keyed `diff:<revision>`."""

    def __init__(
        self,
        cache: DiskCache,
        phabricator: PhabricatorClient | None,
        git: GitSource | None,
    ) -> None:
        self.cache = cache
        self.phabricator = phabricator
        self.git = git

    @staticmethod
    def cache_key(source: SourceKind, revision_id: str) -> str:
        if source == SourceKind.git:
            return f"diff:git:{revision_id}"
        return f"diff:{revision_id}"

    def _client(self, source: SourceKind) -> PhabricatorClient | GitSource:
        client = self.phabricator if source == SourceKind.phabricator else self.git
        if client is None:
            raise SourceError(f"No {source.value} source configured")
        return client

    async def fetch(
        self,
        revision_id: str,
        source: SourceKind = SourceKind.phabricator,
        raw_diff: str | None = None,
        force_refresh: bool = False,
        frontend_only: bool = True,
    ) -> tuple[Diff, str]:
        """Return (diff, origin) where origin is cache, phabricator, git or raw.

        `force_refresh` skips the cache read only; the fresh result is
        still written back.
        """
        if source == SourceKind.raw:
            if not raw_diff:
                raise SourceError("source=raw requires raw_diff")
            diff = parse_diff(raw_diff, revision_id or f"raw-{compute_content_hash(raw_diff)}")
            return (filter_frontend_files(diff) if frontend_only else diff), "raw"

        if source == SourceKind.phabricator:
            revision_id = extract_revision_id(revision_id) or revision_id
        key = self.cache_key(source, revision_id)

        diff: Diff | None = None
        origin = source.value
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                try:
                    diff = Diff.model_validate(cached)
                    origin = "cache"
                    logger.info("Diff %s served from cache", revision_id)
                except Exception as exc:
                    logger.warning("Ignoring bad cache entry %s: %s", key, exc)

        if diff is None:
            client = self._client(source)
            loop = asyncio.get_running_loop()
            metadata = await loop.run_in_executor(None, client.fetch_metadata, revision_id)
            raw = await loop.run_in_executor(None, client.fetch_diff, revision_id)
            diff = parse_diff(raw, revision_id, metadata)
            self.cache.set(key, diff.model_dump(mode="json"))

        return (filter_frontend_files(diff) if frontend_only else diff), origin
