"""
Tests for the fuzzy matcher and text normalization.
"""

import pytest

from ledgersort.models.patterns import PatternType
from ledgersort.services.fuzzy_matching import (
    FuzzyMatcher,
    amount_bucket,
    extract_keywords,
    normalize,
    signature_for,
)
from factories import make_pattern, make_record


class TestNormalize:

    @pytest.mark.parametrize("raw, expected", [
        ("AMAZON.COM", "amazon"),
        ("SQ *Blue Bottle Coffee", "blue bottle coffee"),
        ("Starbucks #1234", "starbucks"),
        ("Café Olé", "cafe ole"),
        ("Acme Widgets Inc", "acme widgets"),
        ("  Shell   Oil  ", "shell oil"),
    ])
    def test_normalize_examples(self, raw, expected):
        assert normalize(raw) == expected

    def test_empty_input(self):
        assert normalize(None) == ""
        assert normalize("") == ""

    def test_extract_keywords_skips_stop_words(self):
        assert extract_keywords("Monthly payment for Netflix subscription") == [
            "monthly", "netflix", "subscription",
        ]

    def test_extract_keywords_limit(self):
        words = extract_keywords("alpha bravo charlie delta echo foxtrot golf", limit=3)
        assert words == ["alpha", "bravo", "charlie"]

    def test_amount_bucket(self):
        assert amount_bucket(None) is None
        assert amount_bucket(0.5) == 0
        assert amount_bucket(5.75) == 3
        assert amount_bucket(-5.75) == 3
        assert amount_bucket(1000) == 10

    def test_signature_for_record(self):
        record = make_record("Starbucks #1234", "Coffee and pastry", amount=12.5, hour=8)
        signature = signature_for(record)
        assert signature.merchant_token == "starbucks"
        assert signature.keywords == frozenset({"coffee", "pastry"})
        assert signature.amount_bucket == 4
        assert signature.hour == 8


class TestFuzzyMatcher:

    def setup_method(self):
        self.matcher = FuzzyMatcher()

    def test_exact_match_after_normalization(self):
        assert self.matcher.calculate_similarity("AMAZON.COM", "amazon") == 1.0

    def test_partial_match_below_exact(self):
        score = self.matcher.calculate_similarity("starbucks", "starbucks coffee")
        assert 0.6 <= score < 1.0

    def test_unrelated_strings_score_low(self):
        assert self.matcher.calculate_similarity("starbucks", "home depot") < 0.6

    def test_similarity_is_symmetric(self):
        a, b = "whole foods market", "whole foods"
        assert self.matcher.calculate_similarity(a, b) == self.matcher.calculate_similarity(b, a)

    def test_empty_text_scores_zero(self):
        assert self.matcher.calculate_similarity("", "amazon") == 0.0
        assert self.matcher.calculate_similarity(None, "amazon") == 0.0

    def test_match_pattern_sorted_and_filtered(self):
        patterns = [
            make_pattern("home depot", id="p_depot"),
            make_pattern("starbucks coffee", id="p_partial"),
            make_pattern("starbucks", id="p_exact"),
        ]
        result = self.matcher.match_pattern("Starbucks #42", patterns)
        ids = [item.pattern_id for item in result.matches]
        assert ids[0] == "p_exact"
        assert "p_partial" in ids
        assert "p_depot" not in ids
        assert result.best_score == 1.0
        assert result.best_match.pattern_id == "p_exact"

    def test_match_pattern_ties_keep_input_order(self):
        patterns = [
            make_pattern("amazon", category_id="shopping", id="p_b"),
            make_pattern("amazon", category_id="food", id="p_a"),
        ]
        result = self.matcher.match_pattern("Amazon", patterns)
        assert [item.pattern_id for item in result.matches] == ["p_b", "p_a"]

    def test_match_pattern_max_results(self):
        patterns = [make_pattern("amazon", id=f"p_{i}") for i in range(10)]
        result = self.matcher.match_pattern("amazon", patterns, max_results=3)
        assert len(result.matches) == 3

    def test_match_pattern_empty_inputs(self):
        assert not self.matcher.match_pattern("", [make_pattern("amazon")]).success
        assert not self.matcher.match_pattern("amazon", []).success
        assert self.matcher.match_pattern("amazon", []).best_match is None

    def test_score_record_structural_patterns(self):
        record = make_record("Uber", amount=15.0, hour=23)
        in_range = make_pattern("10-20", pattern_type=PatternType.AMOUNT_RANGE)
        out_of_range = make_pattern("50-100", pattern_type=PatternType.AMOUNT_RANGE)
        late_night = make_pattern("22-2", pattern_type=PatternType.TIME)
        morning = make_pattern("6-10", pattern_type=PatternType.TIME)
        assert self.matcher.score_record(record, in_range) == 1.0
        assert self.matcher.score_record(record, out_of_range) == 0.0
        assert self.matcher.score_record(record, late_night) == 1.0
        assert self.matcher.score_record(record, morning) == 0.0

    def test_score_record_keyword_reads_description(self):
        record = make_record("ACH DEBIT", "Netflix subscription")
        keyword = make_pattern("netflix", pattern_type=PatternType.KEYWORD)
        assert self.matcher.score_record(record, keyword) >= 0.75

    def test_metrics_and_reset(self):
        self.matcher.match_pattern("amazon", [make_pattern("amazon")])
        assert self.matcher.metrics()["match_calls"] == 1
        self.matcher.reset()
        metrics = self.matcher.metrics()
        assert metrics["match_calls"] == 0
        assert metrics["similarity_cache_size"] == 0
