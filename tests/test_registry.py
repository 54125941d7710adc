"""Unit tests for engine/registry.py"""

import threading

import pytest

from engine.registry import LazyRegistry


class TestLazyRegistry:
    def test_factory_runs_once(self):
        calls = []

        def factory():
            calls.append(1)
            return object()

        registry = LazyRegistry()
        registry.register_factory("css", factory)
        assert not registry.is_materialized("css")
        first = registry.get("css")
        assert registry.get("css") is first
        assert registry.is_materialized("css")
        assert calls == [1]

    def test_concurrent_first_use_builds_one_instance(self):
        calls = []
        registry = LazyRegistry()
        registry.register_factory("react", lambda: calls.append(1) or object())
        seen = []
        threads = [threading.Thread(target=lambda: seen.append(registry.get("react"))) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(calls) == 1
        assert len({id(x) for x in seen}) == 1

    def test_instances_and_names(self):
        registry = LazyRegistry()
        registry.register("a", 1)
        registry.register_factory("b", lambda: 2)
        assert registry.names() == ["a", "b"]
        assert "a" in registry
        assert "c" not in registry
        assert registry.is_materialized("a")

    def test_unknown_name(self):
        with pytest.raises(KeyError):
            LazyRegistry().get("missing")
