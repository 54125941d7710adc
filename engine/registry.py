"""Name → instance registry with deferred construction.

Entries are either ready instances or zero-argument factories; the first
`get` of a factory entry builds the instance and replaces the entry, all
under one lock so concurrent callers see a single instance.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class LazyRegistry(Generic[T]):
    def __init__(self) -> None:
        self._entries: dict[str, T | Callable[[], T]] = {}
        self._ready: set[str] = set()
        self._lock = threading.Lock()

    def register(self, name: str, instance: T) -> None:
        with self._lock:
            self._entries[name] = instance
            self._ready.add(name)

    def register_factory(self, name: str, factory: Callable[[], T]) -> None:
        with self._lock:
            self._entries[name] = factory
            self._ready.discard(name)

    def get(self, name: str) -> T:
        """Return the instance for *name*, building it on first use."""
        with self._lock:
            if name not in self._entries:
                raise KeyError(f"Unknown registry entry: {name}")
            if name not in self._ready:
                factory = self._entries[name]
                self._entries[name] = factory()  # type: ignore[operator]
                self._ready.add(name)
            return self._entries[name]  # type: ignore[return-value]

    def is_materialized(self, name: str) -> bool:
        with self._lock:
            return name in self._ready

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries
