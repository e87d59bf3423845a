"""
Tests for learning from user corrections.
"""

import random
import threading
from datetime import datetime, timedelta, timezone

import pytest

from ledgersort.models.patterns import Category, PatternType
from ledgersort.services.audit import InMemoryEventSink
from ledgersort.services.category_store import InMemoryCategoryStore
from ledgersort.services.pattern_cache import PatternCache
from ledgersort.services.pattern_learning import (
    Correction,
    PatternLearner,
    merge_metadata,
    range_overlap,
    update_amount_stats,
    update_hour_distribution,
)
from ledgersort.services.pattern_store import InMemoryPatternStore
from factories import FailingEventSink, NeverRandom, make_pattern, make_record

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class AlwaysRandom(random.Random):
    def random(self):
        return 0.0


class TestMetadataHelpers:

    def test_amount_stats_publish_std_dev_after_two_amounts(self):
        metadata = {}
        update_amount_stats(metadata, 10.0)
        assert metadata["amount_stats"]["count"] == 1
        assert "std_dev" not in metadata["amount_stats"]
        update_amount_stats(metadata, 20.0)
        stats = metadata["amount_stats"]
        assert stats["mean"] == pytest.approx(15.0)
        assert stats["std_dev"] == pytest.approx(5.0)

    def test_amount_stats_ignore_missing_amount(self):
        metadata = {}
        update_amount_stats(metadata, None)
        assert metadata == {}

    def test_hour_distribution_uses_string_keys(self):
        metadata = {}
        update_hour_distribution(metadata, 9)
        update_hour_distribution(metadata, 9)
        assert metadata["temporal_stats"]["hour_distribution"] == {"9": 2}

    def test_merge_metadata_pools_stats(self):
        first, second = {}, {}
        for amount in (10.0, 20.0):
            update_amount_stats(first, amount)
        for amount in (30.0, 40.0):
            update_amount_stats(second, amount)
        update_hour_distribution(first, 9)
        update_hour_distribution(second, 9)
        update_hour_distribution(second, 17)

        merged = merge_metadata(first, second)
        assert merged["amount_stats"]["count"] == 4
        assert merged["amount_stats"]["mean"] == pytest.approx(25.0)
        assert merged["amount_stats"]["std_dev"] == pytest.approx(11.180340, rel=1e-5)
        assert merged["temporal_stats"]["hour_distribution"] == {"9": 2, "17": 1}

    def test_weekday_distribution_recorded_with_hour(self):
        metadata = {}
        update_hour_distribution(metadata, 9, 5)
        update_hour_distribution(metadata, None, 5)
        assert metadata["temporal_stats"] == {"hour_distribution": {"9": 1}, "day_distribution": {"5": 2}}

    def test_merge_metadata_sums_weekdays(self):
        first, second = {}, {}
        update_hour_distribution(first, 9, 0)
        update_hour_distribution(second, 9, 0)
        update_hour_distribution(second, 18, 4)
        merged = merge_metadata(first, second)
        assert merged["temporal_stats"]["day_distribution"] == {"0": 2, "4": 1}

    def test_range_overlap(self):
        assert range_overlap((10.0, 20.0), (10.0, 21.0)) == pytest.approx(10 / 11)
        assert range_overlap((10.0, 20.0), (15.0, 25.0)) == pytest.approx(5 / 15)
        assert range_overlap((10.0, 20.0), (50.0, 60.0)) == 0.0
        assert range_overlap((5.0, 5.0), (5.0, 5.0)) == 1.0


class TestPatternLearner:

    def setup_method(self):
        self.store = InMemoryPatternStore([
            make_pattern("amazon", category_id="food", id="p_food", confidence_weight=2.0, usage_count=10, success_count=7),
        ])
        self.sink = InMemoryEventSink()
        self.cache = PatternCache(self.store)
        self.learner = PatternLearner(
            self.store,
            event_sink=self.sink,
            cache=self.cache,
            rng=NeverRandom(),
            clock=lambda: NOW,
        )

    def test_correction_weakens_wrong_pattern_and_creates_new_one(self):
        record = make_record("Amazon", "Online order", amount=45.0)
        result = self.learner.learn_from_correction(record, "shopping", "food")

        assert result.success
        assert len(result.patterns_created) == 1
        food = self.store.get("p_food")
        assert food.confidence_weight == pytest.approx(1.5)
        assert food.success_rate < 0.7

        shopping = self.store.get(result.patterns_created[0])
        assert shopping.category_id == "shopping"
        assert shopping.value == "amazon"
        assert shopping.confidence_weight >= 1.2
        assert shopping.metadata["amount_stats"]["count"] == 1

        events = self.sink.events()
        assert len(events) == 1
        assert events[0].predicted_category_id == "food"
        assert "p_food" in events[0].patterns_affected

    def test_same_category_correction_only_reinforces(self):
        record = make_record("Amazon", amount=45.0)
        result = self.learner.learn_from_correction(record, "food", "food")

        assert result.success
        assert result.patterns_created == []
        food = self.store.get("p_food")
        assert food.confidence_weight == pytest.approx(2.3)
        assert food.usage_count == 11
        assert food.success_count == 8
        assert self.learner.learning_metrics()["basic_metrics"]["patterns_weakened"] == 0

    def test_repeated_correction_strengthens_learned_pattern(self):
        record = make_record("Blue Bottle Coffee")
        first = self.learner.learn_from_correction(record, "coffee")
        second = self.learner.learn_from_correction(record, "coffee")
        assert second.patterns_created == []
        pattern = self.store.get(first.patterns_created[0])
        assert pattern.usage_count == 2
        assert pattern.confidence_weight == pytest.approx(1.2 * 1.15)

    def test_keyword_patterns_without_merchant(self):
        record = make_record(description="Monthly Netflix subscription")
        result = self.learner.learn_from_correction(record, "entertainment")
        created = [self.store.get(pid) for pid in result.patterns_created]
        assert {p.value for p in created} == {"monthly", "netflix", "subscription"}
        assert all(p.pattern_type == PatternType.KEYWORD for p in created)

    def test_merchant_correction_reinforces_known_keywords(self):
        self.store.seed([
            make_pattern("subscription", category_id="entertainment", pattern_type=PatternType.KEYWORD,
                         id="p_kw", usage_count=3, success_count=3),
        ])
        record = make_record("Netflix", "Monthly subscription")
        result = self.learner.learn_from_correction(record, "entertainment")

        created = [self.store.get(pid) for pid in result.patterns_created]
        assert [(p.pattern_type, p.value) for p in created] == [(PatternType.MERCHANT, "netflix")]
        assert "p_kw" in result.patterns_affected
        keyword = self.store.get("p_kw")
        assert keyword.usage_count == 4
        assert keyword.success_count == 4
        assert keyword.confidence_weight == pytest.approx(1.15)
        assert self.store.find(PatternType.KEYWORD, "monthly", "entertainment") is None

    def test_learned_pattern_records_weekday(self):
        result = self.learner.learn_from_correction(make_record("Blue Bottle", hour=9), "coffee")
        pattern = self.store.get(result.patterns_created[0])
        # 2026-03-14 is a Saturday
        assert pattern.metadata["temporal_stats"]["day_distribution"] == {"5": 1}
        assert pattern.metadata["temporal_stats"]["hour_distribution"] == {"9": 1}

    def test_invalid_corrections_fail_without_writes(self):
        assert not self.learner.learn_from_correction(None, "shopping").success
        assert not self.learner.learn_from_correction(make_record(), "shopping").success
        missing = self.learner.learn_from_correction(make_record("Amazon"), "")
        assert not missing.success
        assert "Category is required" in missing.error
        assert len(self.store) == 1
        assert self.learner.learning_metrics()["basic_metrics"]["corrections_failed"] == 3

    def test_unknown_category_rejected_with_repository(self):
        categories = InMemoryCategoryStore([Category("cat_food", "Food & Dining")])
        learner = PatternLearner(self.store, categories=categories, rng=NeverRandom())
        assert not learner.learn_from_correction(make_record("Amazon"), "travel").success
        by_name = learner.learn_from_correction(make_record("Amazon"), "food & dining")
        assert by_name.success
        assert self.store.get(by_name.patterns_created[0]).category_id == "cat_food"

    def test_sink_failure_rolls_back_correction(self):
        learner = PatternLearner(self.store, event_sink=FailingEventSink(), rng=NeverRandom())
        result = learner.learn_from_correction(make_record("Amazon"), "shopping", "food")
        assert not result.success
        assert self.store.get("p_food").confidence_weight == 2.0
        assert len(self.store) == 1

    def test_correction_invalidates_cache(self):
        record = make_record("Blue Bottle")
        assert self.cache.get_candidates(record) == []
        self.learner.learn_from_correction(record, "coffee")
        assert [p.value for p in self.cache.get_candidates(record)] == ["blue bottle"]

    def test_concurrent_corrections_do_not_lose_updates(self):
        record = make_record("Amazon")
        threads = [
            threading.Thread(target=self.learner.learn_from_correction, args=(record, "food"))
            for _ in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        food = self.store.get("p_food")
        assert food.usage_count == 30
        assert food.success_count == 27
        assert len(self.sink.events()) == 20

    def test_batch_learn(self):
        corrections = [
            Correction(make_record("Amazon"), "shopping", "food"),
            {"record": make_record("Uber Trip"), "correct_category": "travel"},
            (make_record("Blue Bottle"), "coffee"),
            {"record": None, "correct_category": "travel"},
            "not a correction",
        ]
        result = self.learner.batch_learn(corrections)
        assert result.total == 5
        assert result.successful == 3
        assert result.failed == 2
        assert result.patterns_created == 3
        assert len(result.errors) == 2

    def test_empty_batch(self):
        result = self.learner.batch_learn([])
        assert (result.total, result.successful, result.failed, result.patterns_created) == (0, 0, 0, 0)
        assert self.learner.batch_learn(None).total == 0

    def test_decay_unused_patterns(self):
        self.store.seed([
            make_pattern("starbucks", id="p_stale", confidence_weight=1.0, last_updated=NOW - timedelta(days=40)),
            make_pattern("target", id="p_fresh", confidence_weight=1.0, last_updated=NOW - timedelta(days=5)),
            make_pattern("kiosk", id="p_faint", confidence_weight=0.105, last_updated=NOW - timedelta(days=90)),
        ])
        result = self.learner.decay_unused_patterns(now=NOW)

        assert result.success
        assert abs(self.store.get("p_stale").confidence_weight - 0.9) < 1e-3
        assert self.store.get("p_fresh").confidence_weight == 1.0
        faint = self.store.get("p_faint")
        assert not faint.active
        assert result.deactivated == 1
        assert self.store.get("p_stale").last_updated == NOW - timedelta(days=40)

    def test_decay_rejects_bad_factor(self):
        assert not self.learner.decay_unused_patterns(decay_factor=1.5).success

    def test_merge_similar_patterns(self):
        self.store.seed([
            make_pattern("amazon", category_id="shopping", id="p_main", usage_count=10, success_count=9),
            make_pattern("amazon mktp", category_id="shopping", id="p_dup", usage_count=2, success_count=2),
            make_pattern("target", category_id="shopping", id="p_other", usage_count=4, success_count=4),
        ])
        merged = self.learner.merge_similar_patterns("shopping")

        assert merged == ["p_dup"]
        survivor = self.store.get("p_main")
        assert survivor.usage_count == 12
        assert survivor.success_count == 11
        assert not self.store.get("p_dup").active
        assert self.store.get("p_other").active

    def test_merge_overlapping_amount_ranges(self):
        self.store.seed([
            make_pattern("10-20", category_id="utilities", pattern_type=PatternType.AMOUNT_RANGE,
                         id="p_range", usage_count=5, success_count=4),
            make_pattern("10-21", category_id="utilities", pattern_type=PatternType.AMOUNT_RANGE,
                         id="p_range_dup", usage_count=2, success_count=2),
            make_pattern("50-60", category_id="utilities", pattern_type=PatternType.AMOUNT_RANGE,
                         id="p_range_far", usage_count=3, success_count=3),
        ])
        merged = self.learner.merge_similar_patterns("utilities")

        assert merged == ["p_range_dup"]
        survivor = self.store.get("p_range")
        assert survivor.value == "10-21"
        assert survivor.usage_count == 7
        assert survivor.amount_range() == (10.0, 21.0)
        assert not self.store.get("p_range_dup").active
        assert self.store.get("p_range_far").active

    def test_merge_failure_does_not_undo_correction(self):
        learner = PatternLearner(self.store, rng=AlwaysRandom())

        def broken_merge(category_id):
            raise RuntimeError("merge exploded")

        learner.merge_similar_patterns = broken_merge
        result = learner.learn_from_correction(make_record("Amazon"), "food")
        assert result.success
        assert result.patterns_merged == []
        assert self.store.get("p_food").usage_count == 11

    def test_learning_metrics_shape(self):
        self.learner.learn_from_correction(make_record("Amazon"), "shopping", "food")
        metrics = self.learner.learning_metrics()
        assert metrics["basic_metrics"]["corrections_processed"] == 1
        assert metrics["basic_metrics"]["patterns_created"] == 1
        assert metrics["basic_metrics"]["patterns_weakened"] == 1
        assert metrics["pattern_statistics"]["total_patterns"] == 2
        assert metrics["learning_effectiveness"]["patterns_per_correction"] == 1.0
        self.learner.reset_metrics()
        assert self.learner.learning_metrics()["basic_metrics"]["corrections_processed"] == 0
