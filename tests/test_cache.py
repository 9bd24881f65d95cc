from __future__ import annotations

from datetime import timedelta

from cadence.orchestrator.cache import RequestCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_hit_ignores_parameter_order():
    cache = RequestCache()
    cache.set("list_events", {"start": "2026-01-12", "end": "2026-01-16"}, ["a"])

    assert cache.get("list_events", {"end": "2026-01-16", "start": "2026-01-12"}) == ["a"]
    assert cache.get("list_events", {"start": "2026-01-12", "end": "2026-01-17"}) is None
    assert cache.get("get_stats", {"start": "2026-01-12", "end": "2026-01-16"}) is None


def test_empty_results_are_cached():
    cache = RequestCache()
    cache.set("list_events", {}, [])

    assert cache.get("list_events", {}) == []


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = RequestCache(ttl=timedelta(seconds=60), clock=clock)
    cache.set("list_events", {"start": "x"}, ["a"])

    clock.now += 60
    assert cache.get("list_events", {"start": "x"}) == ["a"]
    clock.now += 1
    assert cache.get("list_events", {"start": "x"}) is None
    assert len(cache) == 0


def test_prune_drops_only_expired_entries():
    clock = FakeClock()
    cache = RequestCache(ttl=timedelta(seconds=10), clock=clock)
    cache.set("list_events", {"start": "old"}, 1)
    clock.now += 8
    cache.set("list_events", {"start": "new"}, 2)
    clock.now += 5

    assert cache.prune() == 1
    assert len(cache) == 1
    assert cache.get("list_events", {"start": "new"}) == 2


def test_clear_empties_cache():
    cache = RequestCache()
    cache.set("a", {}, 1)
    cache.set("b", {}, 2)

    cache.clear()

    assert len(cache) == 0
