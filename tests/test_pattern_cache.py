"""
Tests for the candidate pattern cache.
"""

import pytest

from ledgersort.services.pattern_cache import PatternCache
from ledgersort.services.pattern_store import InMemoryPatternStore
from factories import make_pattern, make_record


class CountingStore(InMemoryPatternStore):
    def __init__(self, patterns=None):
        super().__init__(patterns)
        self.lookups = 0
        self.on_lookup = None

    def find_active_patterns(self, signature):
        self.lookups += 1
        if self.on_lookup is not None:
            self.on_lookup()
        return super().find_active_patterns(signature)


class TestPatternCache:

    def setup_method(self):
        self.store = CountingStore([
            make_pattern("starbucks", id="p_sbux"),
            make_pattern("amazon", category_id="shopping", id="p_amzn"),
        ])
        self.cache = PatternCache(self.store, capacity=2)

    def test_miss_then_hit(self):
        record = make_record("Starbucks #1234")
        first = self.cache.get_candidates(record)
        second = self.cache.get_candidates(record)
        assert [p.id for p in first] == ["p_sbux"]
        assert [p.id for p in second] == ["p_sbux"]
        assert self.store.lookups == 1
        metrics = self.cache.metrics()
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["hit_rate"] == 50.0

    def test_lru_eviction(self):
        self.cache.get_candidates(make_record("Starbucks"))
        self.cache.get_candidates(make_record("Amazon"))
        self.cache.get_candidates(make_record("Starbucks"))
        self.cache.get_candidates(make_record("Target"))
        assert len(self.cache) == 2
        assert self.cache.metrics()["evictions"] == 1
        # Amazon was least recently used
        self.cache.get_candidates(make_record("Amazon"))
        assert self.store.lookups == 4

    def test_invalidate_patterns_drops_holding_entries(self):
        self.cache.get_candidates(make_record("Starbucks"))
        removed = self.cache.invalidate_patterns([make_pattern("starbucks", id="p_sbux")])
        assert removed == 1
        assert len(self.cache) == 0

    def test_invalidate_patterns_drops_newly_matching_entries(self):
        record = make_record("Blue Bottle")
        assert self.cache.get_candidates(record) == []
        new_pattern = make_pattern("blue bottle", category_id="coffee")
        self.store.persist(new_pattern)
        self.cache.invalidate_patterns([new_pattern])
        assert [p.id for p in self.cache.get_candidates(record)] == [new_pattern.id]

    def test_lookup_racing_invalidation_is_not_stored(self):
        self.store.on_lookup = lambda: self.cache.invalidate([])
        self.cache.get_candidates(make_record("Starbucks"))
        assert len(self.cache) == 0
        assert self.cache.metrics()["stale_skips"] == 1

    def test_returned_lists_are_independent(self):
        record = make_record("Starbucks")
        self.cache.get_candidates(record).clear()
        assert len(self.cache.get_candidates(record)) == 1

    def test_warm_and_clear(self):
        assert self.cache.warm([make_record("Starbucks"), make_record("Amazon")]) == 2
        assert len(self.cache) == 2
        self.cache.clear()
        assert len(self.cache) == 0

    def test_resize(self):
        self.cache.warm([make_record("Starbucks"), make_record("Amazon")])
        self.cache.resize(1)
        assert len(self.cache) == 1
        with pytest.raises(ValueError):
            self.cache.resize(0)

    def test_reset_clears_counters(self):
        self.cache.get_candidates(make_record("Starbucks"))
        self.cache.reset()
        metrics = self.cache.metrics()
        assert metrics["misses"] == 0
        assert metrics["size"] == 0
