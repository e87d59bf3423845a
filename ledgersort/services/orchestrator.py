"""
Categorization Orchestrator

Entry point of the engine:
1. Validate the record
2. Fetch candidate patterns through the Pattern Cache, behind the Circuit Breaker
3. Score merchant patterns against the merchant name and keyword patterns
   against the description; amount and time patterns match structurally
4. Score the best pattern of each category with the Confidence Scorer
5. Return the winning category, or no_match below ``min_confidence``

Public methods never raise on operational failures; they return a result
carrying the error. Only caller contract violations (bad configuration
keys) propagate.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ledgersort.core.config import EngineConfig
from ledgersort.models.patterns import Pattern, PatternType
from ledgersort.models.records import TransactionRecord
from ledgersort.models.results import (
    BatchLearningResult,
    CategorizationResult,
    CategorizationStatus,
    ConfidenceResult,
    DecayResult,
    LearningResult,
)
from ledgersort.services.circuit_breaker import CircuitBreaker
from ledgersort.services.confidence_scoring import ConfidenceScorer
from ledgersort.services.errors import CircuitOpenError, LedgerSortError, ValidationError
from ledgersort.services.fuzzy_matching import FuzzyMatcher
from ledgersort.services.logging import log_error
from ledgersort.services.metrics import LatencyTracker, MetricsCollector
from ledgersort.services.pattern_cache import PatternCache
from ledgersort.services.pattern_learning import PatternLearner
from ledgersort.services.pattern_store import PatternRepository

logger = logging.getLogger(__name__)

SLOW_CATEGORIZATION_MS = 100.0

METHOD_HIGH_CONFIDENCE = "high_confidence_match"
METHOD_PATTERN = "pattern_match"
METHOD_SUGGESTION = "low_confidence_suggestion"


class Orchestrator:
    """
    Composes matcher, cache, scorer, learner and breaker.

    The active ``EngineConfig`` is an immutable snapshot. ``configure``
    builds a new one and swaps the reference; each call reads the reference
    once, so it sees one snapshot from start to finish.
    """

    def __init__(
        self,
        repository: PatternRepository,
        matcher: FuzzyMatcher,
        scorer: ConfidenceScorer,
        cache: PatternCache,
        learner: PatternLearner,
        breaker: CircuitBreaker,
        config: Optional[EngineConfig] = None,
        collector: Optional[MetricsCollector] = None,
    ) -> None:
        self.repository = repository
        self.matcher = matcher
        self.scorer = scorer
        self.cache = cache
        self.learner = learner
        self.breaker = breaker
        self.collector = collector
        self._config = config or EngineConfig()
        self._config_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._latency = LatencyTracker()
        self._stats = self._initial_stats()

    @staticmethod
    def _initial_stats() -> Dict[str, int]:
        return {"total": 0, "success": 0, "no_match": 0, "error": 0}

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Categorization
    # ------------------------------------------------------------------

    def categorize(self, record: Optional[TransactionRecord]) -> CategorizationResult:
        """
        Categorize one record.

        Returns:
            CategorizationResult with status success, no_match or error
        """
        config = self._config
        start = time.perf_counter()
        try:
            self._validate(record)
            candidates = self.breaker.call(self.cache.get_candidates, record)
            result = self._resolve(record, candidates, config)
        except CircuitOpenError:
            result = CategorizationResult.error_result("Circuit breaker is open")
        except LedgerSortError as e:
            message = f"{e.message}: {e.detail}" if e.detail else e.message
            result = CategorizationResult.error_result(message)
        except Exception as e:
            log_error(
                "categorization_failed",
                f"Categorization failed: {e}",
                context={"record_id": getattr(record, "id", None)},
                exception=e,
            )
            result = CategorizationResult.error_result(f"Categorization failed: {e}")

        result.processing_time_ms = (time.perf_counter() - start) * 1000
        self._record(result)
        return result

    def batch_categorize(self, records: Optional[Iterable[Optional[TransactionRecord]]]) -> List[CategorizationResult]:
        """One result per record, in input order; failures do not stop the batch."""
        return [self.categorize(record) for record in (records or [])]

    @staticmethod
    def _validate(record: Optional[TransactionRecord]) -> None:
        if not isinstance(record, TransactionRecord):
            raise ValidationError("Record is required", field="record")
        if not record.has_text:
            raise ValidationError("Record has no merchant name or description", field="record")

    def _match(
        self,
        record: TransactionRecord,
        candidates: Sequence[Pattern],
        config: EngineConfig,
    ) -> List[Tuple[Pattern, float]]:
        """(pattern, text score) for every candidate that matches the record."""
        by_id = {pattern.id: pattern for pattern in candidates}
        merchant = [p for p in candidates if p.pattern_type == PatternType.MERCHANT]
        keyword = [p for p in candidates if p.pattern_type == PatternType.KEYWORD]
        structural = [p for p in candidates if p.pattern_type in (PatternType.AMOUNT_RANGE, PatternType.TIME)]

        matched: List[Tuple[Pattern, float]] = []
        for text, patterns in (
            (record.merchant_name or record.description, merchant),
            (record.description or record.merchant_name, keyword),
        ):
            if not patterns:
                continue
            result = self.matcher.match_pattern(
                text,
                patterns,
                min_confidence=config.match_min_similarity,
                max_results=config.max_match_results,
            )
            matched.extend((by_id[item.pattern_id], item.score) for item in result.matches)

        for pattern in structural:
            score = self.matcher.score_record(record, pattern)
            if score > 0:
                matched.append((pattern, score))
        return matched

    def _resolve(
        self,
        record: TransactionRecord,
        candidates: Sequence[Pattern],
        config: EngineConfig,
    ) -> CategorizationResult:
        matched = self._match(record, candidates, config)
        if not matched:
            return CategorizationResult.no_match_result()

        # Best pattern per category; ties go to the lower pattern id
        best: Dict[str, Tuple[ConfidenceResult, Pattern]] = {}
        used: Dict[str, List[Tuple[float, str]]] = {}
        for pattern, text_score in matched:
            confidence = self.scorer.calculate(record, pattern, text_score)
            if not confidence.valid:
                continue
            used.setdefault(pattern.category_id, []).append((confidence.score, pattern.id))
            current = best.get(pattern.category_id)
            if current is None or (confidence.score, current[1].id) > (current[0].score, pattern.id):
                best[pattern.category_id] = (confidence, pattern)

        if not best:
            return CategorizationResult.no_match_result()

        ranked = sorted(best.items(), key=lambda item: (-item[1][0].score, item[0]))
        category_id, (confidence, winner) = ranked[0]
        if confidence.score < config.min_confidence:
            return CategorizationResult.no_match_result()

        alternatives = [
            {"category_id": other_id, "confidence": other[0].score, "pattern_id": other[1].id}
            for other_id, other in ranked[1:1 + config.max_alternatives]
        ]
        patterns_used = [pattern_id for _, pattern_id in sorted(used[category_id], key=lambda item: (-item[0], item[1]))]

        return CategorizationResult(
            status=CategorizationStatus.SUCCESS,
            category_id=category_id,
            confidence=confidence.score,
            method=self._method_for(confidence.score, config),
            patterns_used=patterns_used,
            confidence_breakdown=confidence.factor_breakdown(),
            alternatives=alternatives,
            usage_count=winner.usage_count,
        )

    @staticmethod
    def _method_for(score: float, config: EngineConfig) -> str:
        if score >= config.high_confidence_threshold:
            return METHOD_HIGH_CONFIDENCE
        if score >= config.auto_categorize_threshold:
            return METHOD_PATTERN
        return METHOD_SUGGESTION

    def _record(self, result: CategorizationResult) -> None:
        self._latency.record(result.processing_time_ms)
        with self._stats_lock:
            self._stats["total"] += 1
            self._stats[result.status.value] += 1
        if self.collector is not None:
            self.collector.increment(f"categorization.{result.status.value}")
            self.collector.timing("categorization.categorize", result.processing_time_ms)
        if result.processing_time_ms > SLOW_CATEGORIZATION_MS:
            logger.warning("Slow categorization: %.2fms", result.processing_time_ms)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn_from_correction(self, record, correct_category, predicted_category=None) -> LearningResult:
        try:
            return self.learner.learn_from_correction(record, correct_category, predicted_category)
        except Exception as e:
            log_error("learning_failed", f"Learning from correction failed: {e}", exception=e)
            return LearningResult.failure(str(e) or type(e).__name__)

    def batch_learn(self, corrections) -> BatchLearningResult:
        try:
            return self.learner.batch_learn(corrections)
        except Exception as e:
            log_error("batch_learning_failed", f"Batch learning failed: {e}", exception=e)
            total = len(corrections) if isinstance(corrections, (list, tuple)) else 0
            return BatchLearningResult(total=total, failed=total, errors=[str(e)])

    def decay_unused_patterns(self, inactivity_threshold=None, decay_factor=None, now=None) -> DecayResult:
        kwargs: Dict[str, Any] = {"now": now}
        if inactivity_threshold is not None:
            kwargs["inactivity_threshold"] = inactivity_threshold
        if decay_factor is not None:
            kwargs["decay_factor"] = decay_factor
        try:
            return self.learner.decay_unused_patterns(**kwargs)
        except Exception as e:
            log_error("decay_failed", f"Pattern decay failed: {e}", exception=e)
            return DecayResult(error=str(e))

    # ------------------------------------------------------------------
    # Configuration and introspection
    # ------------------------------------------------------------------

    def configure(self, **options: Any) -> EngineConfig:
        """
        Replace the active configuration with a validated copy.

        Raises:
            ConfigError: unknown option or invalid value
        """
        # Components are updated under the lock so concurrent calls apply in the
        # same order to the snapshot and to every component
        with self._config_lock:
            new_config = self._config.merged(**options)
            self.breaker.reconfigure(new_config.breaker_failure_threshold, new_config.breaker_timeout_seconds)
            self.cache.resize(new_config.pattern_cache_size)
            self.scorer.resize(new_config.scorer_cache_size)
            self.matcher.min_confidence = new_config.match_min_similarity
            self.matcher.max_results = new_config.max_match_results
            self._config = new_config
        logger.info("Engine reconfigured: %s", sorted(options))
        return new_config

    def reset(self) -> None:
        """Clear caches, counters and breaker state; in-flight calls are unaffected."""
        self.cache.reset()
        self.scorer.reset()
        self.matcher.reset()
        self.breaker.reset()
        self.learner.reset_metrics()
        with self._stats_lock:
            self._stats = self._initial_stats()
        self._latency.reset()
        if self.collector is not None:
            self.collector.reset()
        logger.info("Engine state reset")

    def healthy(self) -> bool:
        return self.breaker.healthy() and self.scorer.healthy()

    def metrics(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        total = stats["total"]
        return {
            "categorization": {
                **stats,
                "success_rate": round(stats["success"] / total * 100, 2) if total else 0.0,
                "latency": self._latency.summary(),
            },
            "pattern_cache": self.cache.metrics(),
            "confidence": self.scorer.metrics(),
            "matcher": self.matcher.metrics(),
            "learning": self.learner.learning_metrics(),
            "circuit_breaker": self.breaker.metrics(),
            "collector": self.collector.snapshot() if self.collector is not None else {},
            "config": self._config.model_dump(),
            "healthy": self.healthy(),
        }
