"""TTL key/value cache persisted as one JSON file per key.

Reads hit a bounded in-memory copy first (least recently used entries and
expired ones fall out of it on every store); expiry is checked on every read
and an expired entry is evicted and reported as a miss.  Writes go to a temp file
and are moved into place, so concurrent writers of one key never leave a
torn file behind (last write wins).
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger("engine.cache")


class DiskCache:
    def __init__(
        self,
        directory: Path | str,
        default_ttl: float = 86400,
        clock: Callable[[], float] = time.time,
        max_memory_entries: int = 256,
    ) -> None:
        self.directory = Path(directory)
        self.default_ttl = default_ttl
        self.max_memory_entries = max_memory_entries
        self._clock = clock
        self._memory: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read_entry(self, key: str) -> dict[str, Any] | None:
        entry = self._memory.get(key)
        if entry is not None:
            self._memory.move_to_end(key)
            return entry
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Corrupt cache file for %s: %s", key, exc)
            self._remove_file(path)
            return None
        if entry.get("key") != key:
            return None
        self._remember(key, entry)
        return entry

    def _remember(self, key: str, entry: dict[str, Any]) -> None:
        """Keep *entry* in the memory tier, least recently used out first."""
        self._memory[key] = entry
        self._memory.move_to_end(key)
        now = self._clock()
        for stale in [k for k, e in self._memory.items() if e["expires_at"] <= now]:
            del self._memory[stale]
        while len(self._memory) > self.max_memory_entries:
            self._memory.popitem(last=False)

    def _remove_file(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove cache file %s: %s", path, exc)

    def _write_file(self, key: str, entry: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(entry, fh, ensure_ascii=False)
            os.replace(tmp, self._path_for(key))
        except BaseException:
            self._remove_file(Path(tmp))
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for *key*, or *default* if missing/expired."""
        with self._lock:
            entry = self._read_entry(key)
            if entry is None:
                return default
            if entry["expires_at"] <= self._clock():
                logger.debug("Cache entry expired: %s", key)
                self._memory.pop(key, None)
                self._remove_file(self._path_for(key))
                return default
            return entry["value"]

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a JSON-serializable *value* for *ttl* seconds."""
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        entry = {"key": key, "value": value, "expires_at": expires_at}
        with self._lock:
            self._write_file(key, entry)
            self._remember(key, entry)

    def invalidate(self, pattern: str) -> int:
        """Drop every key matching the glob *pattern*; returns the count."""
        removed = 0
        with self._lock:
            keys = set(self._memory)
            if self.directory.exists():
                for path in self.directory.glob("*.json"):
                    try:
                        keys.add(json.loads(path.read_text(encoding="utf-8"))["key"])
                    except (OSError, json.JSONDecodeError, KeyError):
                        continue
            for key in keys:
                if fnmatch.fnmatchcase(key, pattern):
                    self._memory.pop(key, None)
                    self._remove_file(self._path_for(key))
                    removed += 1
        logger.info("Invalidated %d cache entries matching %r", removed, pattern)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            if self.directory.exists():
                for path in self.directory.glob("*.json"):
                    self._remove_file(path)
