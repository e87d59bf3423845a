"""
Confidence Scoring for LedgerSort

Combines the text match score for a (record, pattern) pair with evidence the
pattern has accumulated:
- Text Match: similarity of record text to the pattern value (always present)
- Historical Success: shrunk success rate of the pattern
- Amount Similarity: distance of the amount from the pattern's amount stats
- Temporal Pattern: hour window hit, else hour and weekday histogram frequency

Weights are renormalized over the factors that are present, so a missing
factor never drags the score down.
"""
from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections import Counter, OrderedDict
from typing import Any, Dict, Optional, Tuple, Union

from ledgersort.models.patterns import Pattern, PatternType
from ledgersort.models.records import TransactionRecord
from ledgersort.models.results import ConfidenceLevel, ConfidenceResult, MatchResult
from ledgersort.services.fuzzy_matching import FuzzyMatcher
from ledgersort.services.metrics import LatencyTracker, MetricsCollector

logger = logging.getLogger(__name__)

MatchInput = Union[float, int, MatchResult, None]

TEXT_MATCH = "text_match"
HISTORICAL_SUCCESS = "historical_success"
AMOUNT_SIMILARITY = "amount_similarity"
TEMPORAL_PATTERN = "temporal_pattern"

BASE_WEIGHTS = {
    TEXT_MATCH: 0.45,
    HISTORICAL_SUCCESS: 0.25,
    AMOUNT_SIMILARITY: 0.15,
    TEMPORAL_PATTERN: 0.15,
}

# Pseudo-observations pulling small samples toward a 0.5 prior
HISTORY_PRIOR_STRENGTH = 5
HISTORY_PRIOR_RATE = 0.5

STRENGTH_FLOOR = 0.85

# Temporal factor blend of hour and weekday frequency
HOUR_SHARE = 0.6
DAY_SHARE = 0.4
SLOW_CALCULATION_MS = 50.0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def historical_success_factor(pattern: Pattern) -> Optional[float]:
    """Success rate shrunk toward 0.5 while usage is small."""
    if pattern.usage_count <= 0:
        return None
    k = HISTORY_PRIOR_STRENGTH
    return _clamp((pattern.success_count + HISTORY_PRIOR_RATE * k) / (pattern.usage_count + k))


def amount_similarity_factor(pattern: Pattern, amount: Optional[float]) -> Optional[float]:
    """
    Map the z-score of ``amount`` against the pattern's amount stats.

    Within one standard deviation scores 1.0, then falls to 0.5 at two,
    0.2 at three, and tails off toward zero beyond that.
    """
    if amount is None or not _is_number(amount):
        return None
    stats = (pattern.metadata or {}).get("amount_stats")
    if not isinstance(stats, dict):
        return None
    count, mean, std_dev = stats.get("count"), stats.get("mean"), stats.get("std_dev")
    if not (_is_number(count) and _is_number(mean) and _is_number(std_dev)):
        return None
    if count <= 0 or std_dev < 0:
        return None

    observed = abs(amount)
    if std_dev == 0:
        return 1.0 if math.isclose(observed, mean, abs_tol=1e-9) else 0.0

    z = abs(observed - mean) / std_dev
    if z <= 1:
        return 1.0
    if z <= 2:
        return 0.75 - (z - 1) * 0.25
    if z <= 3:
        return 0.5 - (z - 2) * 0.3
    return min(0.2 / z, 0.2)


def _histogram(stats: Dict[str, Any], name: str) -> Optional[Dict[int, float]]:
    distribution = stats.get(name)
    if not isinstance(distribution, dict) or not distribution:
        return None
    frequencies: Dict[int, float] = {}
    for key, value in distribution.items():
        try:
            slot = int(key)
        except (TypeError, ValueError):
            return None
        if not _is_number(value) or value < 0:
            return None
        frequencies[slot] = float(value)
    if max(frequencies.values()) <= 0:
        return None
    return frequencies


def temporal_pattern_factor(pattern: Pattern, hour: Optional[int], weekday: Optional[int] = None) -> Optional[float]:
    """
    How typical the record's time is for a time pattern.

    A record inside the pattern's hour window scores 1.0. Otherwise the hour
    and weekday (Monday=0) frequencies, each relative to its peak, are blended
    0.6/0.4; when only one histogram is usable it decides alone.
    """
    if pattern.pattern_type != PatternType.TIME or hour is None:
        return None
    if pattern.covers_hour(hour):
        return 1.0
    stats = (pattern.metadata or {}).get("temporal_stats")
    if not isinstance(stats, dict):
        return None

    parts = []
    hours = _histogram(stats, "hour_distribution")
    if hours is not None:
        parts.append((HOUR_SHARE, hours.get(hour, 0.0) / max(hours.values())))
    days = _histogram(stats, "day_distribution") if weekday is not None else None
    if days is not None:
        parts.append((DAY_SHARE, days.get(weekday, 0.0) / max(days.values())))
    if not parts:
        return None
    total = sum(share for share, _ in parts)
    return _clamp(sum(share * value for share, value in parts) / total)


def strength_modifier(confidence_weight: float) -> float:
    """Weakened patterns (weight below 1.0) lose up to 15% of their score."""
    return min(1.0, STRENGTH_FLOOR + (1.0 - STRENGTH_FLOOR) * min(max(confidence_weight, 0.0), 1.0))


class ConfidenceScorer:
    """
    Multi-factor confidence scoring with a memoizing LRU cache.

    The cache key covers every input the score depends on, so a cached read
    always equals a fresh computation.
    """

    def __init__(
        self,
        matcher: Optional[FuzzyMatcher] = None,
        cache_size: int = 5000,
        collector: Optional[MetricsCollector] = None,
    ):
        self.matcher = matcher or FuzzyMatcher()
        self.cache_size = cache_size
        self.collector = collector
        self._cache: "OrderedDict[Tuple, ConfidenceResult]" = OrderedDict()
        self._lock = threading.Lock()
        self._latency = LatencyTracker()
        self._calculations = 0
        self._cache_hits = 0
        self._factor_presence: Counter = Counter()

    def calculate(
        self,
        record: Optional[TransactionRecord],
        pattern: Optional[Pattern],
        match_input: MatchInput = None,
    ) -> ConfidenceResult:
        """
        Score how well ``pattern`` explains ``record``.

        Args:
            record: Transaction being categorized
            pattern: Candidate pattern
            match_input: Similarity score, a MatchResult holding the pattern's
                score, or None to compute similarity here

        Returns:
            ConfidenceResult; invalid (score 0.0) when an input is missing
        """
        if record is None or pattern is None:
            return ConfidenceResult.invalid("record and pattern are required")

        start = time.perf_counter()
        text_score = self._resolve_text_score(record, pattern, match_input)
        key = self._cache_key(record, pattern, text_score)

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self._cache_hits += 1
        if cached is not None:
            self._record_calculation(cached, start)
            return cached

        result = self._compute(record, pattern, text_score)

        with self._lock:
            self._cache[key] = result
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        self._record_calculation(result, start)
        return result

    def _resolve_text_score(
        self,
        record: TransactionRecord,
        pattern: Pattern,
        match_input: MatchInput,
    ) -> float:
        if isinstance(match_input, MatchResult):
            score = match_input.score_for(pattern.id)
            if score is None:
                score = match_input.best_score
        elif _is_number(match_input):
            score = float(match_input)
        else:
            score = self.text_similarity(record, pattern)
        return _clamp(score)

    def text_similarity(self, record: TransactionRecord, pattern: Pattern) -> float:
        """Similarity of the record text the pattern type looks at."""
        return self.matcher.score_record(record, pattern)

    def _cache_key(self, record: TransactionRecord, pattern: Pattern, text_score: float) -> Tuple:
        try:
            fingerprint = json.dumps(pattern.metadata, sort_keys=True, default=str)
        except (TypeError, ValueError):
            fingerprint = repr(pattern.metadata)
        return (
            record.id,
            record.amount,
            record.transaction_date.isoformat() if record.transaction_date else None,
            pattern.id,
            pattern.pattern_type.value,
            pattern.value,
            pattern.confidence_weight,
            pattern.usage_count,
            pattern.success_count,
            fingerprint,
            round(text_score, 9),
        )

    def _compute(self, record: TransactionRecord, pattern: Pattern, text_score: float) -> ConfidenceResult:
        factors: Dict[str, Optional[float]] = {
            TEXT_MATCH: text_score,
            HISTORICAL_SUCCESS: historical_success_factor(pattern),
            AMOUNT_SIMILARITY: amount_similarity_factor(pattern, record.amount),
            TEMPORAL_PATTERN: temporal_pattern_factor(pattern, record.hour, record.weekday),
        }
        factors = {
            name: (round(_clamp(value), 6) if value is not None else None)
            for name, value in factors.items()
        }

        present = {name: value for name, value in factors.items() if value is not None}
        total_weight = sum(BASE_WEIGHTS[name] for name in present)
        weights = {name: BASE_WEIGHTS[name] / total_weight for name in present}

        raw = sum(value * weights[name] for name, value in present.items())
        score = round(_clamp(raw * strength_modifier(pattern.confidence_weight)), 6)

        return ConfidenceResult(
            score=score,
            factors=factors,
            weights_applied=weights,
            pattern_id=pattern.id,
            record_id=record.id,
        )

    def _record_calculation(self, result: ConfidenceResult, start: float) -> None:
        duration_ms = (time.perf_counter() - start) * 1000
        self._latency.record(duration_ms)
        with self._lock:
            self._calculations += 1
            for name in result.present_factors:
                self._factor_presence[name] += 1
        if self.collector is not None:
            self.collector.increment("confidence.calculations")
            self.collector.timing("confidence.calculate", duration_ms)
        if duration_ms > SLOW_CALCULATION_MS:
            logger.warning("Slow confidence calculation: %.2fms (pattern %s)", duration_ms, result.pattern_id)

    @staticmethod
    def confidence_level(score: float) -> ConfidenceLevel:
        return ConfidenceLevel.for_score(score)

    def resize(self, cache_size: int) -> None:
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        with self._lock:
            self.cache_size = cache_size
            while len(self._cache) > cache_size:
                self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        """Drop memoized results; later calls recompute the same scores."""
        with self._lock:
            self._cache.clear()
        logger.debug("Confidence cache cleared")

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()
            self._calculations = 0
            self._cache_hits = 0
            self._factor_presence = Counter()
        self._latency.reset()

    def healthy(self) -> bool:
        with self._lock:
            return len(self._cache) <= self.cache_size

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            calculations = self._calculations
            hits = self._cache_hits
            presence = dict(self._factor_presence)
            cache_size = len(self._cache)
        latency = self._latency.summary()
        return {
            "calculations": calculations,
            "cache_hits": hits,
            "cache_hit_rate": round(hits / calculations * 100, 2) if calculations else 0.0,
            "cache_size": cache_size,
            "total_time_ms": latency.get("total_ms", 0.0),
            "latency": latency,
            "factor_presence": {
                name: round(presence.get(name, 0) / calculations * 100, 2) if calculations else 0.0
                for name in BASE_WEIGHTS
            },
        }
