"""
Pattern Learning Service for LedgerSort

Learns from user corrections:
- Weakens the patterns that led to a wrong prediction
- Finds or creates the pattern for the correct category and reinforces it
- Decays patterns that have not been used for a while
- Opportunistically merges near-duplicate patterns

Every correction is one atomic unit: pattern writes and the audit event are
committed together or not at all.
"""
from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

from ledgersort.models.patterns import Category, Pattern, PatternType, utcnow
from ledgersort.models.records import Signature, TransactionRecord
from ledgersort.models.results import BatchLearningResult, DecayResult, LearningResult
from ledgersort.services.audit import CorrectionEvent, EventSink
from ledgersort.services.category_store import CategoryRepository
from ledgersort.services.errors import LedgerSortError, NotFoundError, ValidationError
from ledgersort.services.fuzzy_matching import FuzzyMatcher, extract_keywords, signature_for
from ledgersort.services.logging import log_error
from ledgersort.services.metrics import LatencyTracker, MetricsCollector
from ledgersort.services.pattern_cache import PatternCache
from ledgersort.services.pattern_store import PatternRepository, UnitOfWork, signature_index_keys

logger = logging.getLogger(__name__)

CategoryRef = Union[Category, str, None]

WEAKEN_FACTOR = 0.75
STRENGTHEN_FACTOR = 1.15
MAX_CONFIDENCE = 5.0
NEW_PATTERN_WEIGHT = 1.0
FRESH_SIGNATURE_BOOST = 1.2
DECAY_FACTOR = 0.9
DECAY_THRESHOLD = timedelta(days=30)
DEACTIVATION_WEIGHT = 0.1
MERGE_SIMILARITY_THRESHOLD = 0.85
MERGE_CHECK_PROBABILITY = 0.1
BATCH_SIZE = 100

# Similarity a textual pattern needs to count as matching a record
MATCH_THRESHOLD = 0.6
LOCK_STRIPES = 64
SLOW_CORRECTION_MS = 10.0
SLOW_BATCH_MS = 1000.0


@dataclass
class Correction:
    record: TransactionRecord
    correct_category: CategoryRef
    predicted_category: CategoryRef = None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def update_amount_stats(metadata: Dict[str, Any], amount: Optional[float]) -> None:
    """
    Fold one amount into ``metadata['amount_stats']`` (Welford update).

    ``std_dev`` is only published once two amounts have been seen, so a
    single observation never turns the amount factor into an equality test.
    """
    if amount is None:
        return
    observed = abs(float(amount))
    stats = metadata.get("amount_stats")
    if not isinstance(stats, dict):
        stats = {}
    try:
        count = int(stats.get("count", 0))
        mean = float(stats.get("mean", 0.0))
        m2 = stats.get("m2")
        if m2 is None:
            m2 = float(stats.get("std_dev", 0.0)) ** 2 * count
        m2 = float(m2)
    except (TypeError, ValueError):
        count, mean, m2 = 0, 0.0, 0.0

    count += 1
    delta = observed - mean
    mean += delta / count
    m2 += delta * (observed - mean)

    stats = {"count": count, "mean": round(mean, 6), "m2": round(m2, 6)}
    if count >= 2:
        stats["std_dev"] = round(math.sqrt(max(m2, 0.0) / count), 6)
    metadata["amount_stats"] = stats


def update_hour_distribution(metadata: Dict[str, Any], hour: Optional[int], weekday: Optional[int] = None) -> None:
    """Count one observation in the hour and weekday (Monday=0) histograms."""
    if hour is None and weekday is None:
        return
    temporal = metadata.get("temporal_stats")
    if not isinstance(temporal, dict):
        temporal = {}
    for name, slot in (("hour_distribution", hour), ("day_distribution", weekday)):
        if slot is None:
            continue
        distribution = temporal.get(name)
        if not isinstance(distribution, dict):
            distribution = {}
        key = str(slot)
        distribution[key] = int(distribution.get(key, 0) or 0) + 1
        temporal[name] = distribution
    metadata["temporal_stats"] = temporal


def range_overlap(first: Tuple[float, float], second: Tuple[float, float]) -> float:
    """Overlap of two amount ranges relative to the span covering both; 0 when disjoint."""
    low, high = max(first[0], second[0]), min(first[1], second[1])
    if high < low:
        return 0.0
    span = max(first[1], second[1]) - min(first[0], second[0])
    if span <= 0:
        return 1.0
    return (high - low) / span


def _sum_histograms(a: Any, b: Any) -> Optional[Dict[str, int]]:
    if not isinstance(a, dict) and not isinstance(b, dict):
        return None
    combined: Dict[str, int] = {}
    for source in (a, b):
        if not isinstance(source, dict):
            continue
        for slot, count in source.items():
            try:
                combined[str(slot)] = combined.get(str(slot), 0) + int(count)
            except (TypeError, ValueError):
                continue
    return combined


def merge_metadata(primary: Dict[str, Any], secondary: Dict[str, Any]) -> Dict[str, Any]:
    """Pool amount stats and sum the hour and weekday histograms of two patterns."""
    merged = dict(secondary or {})
    merged.update(primary or {})

    a = (primary or {}).get("amount_stats")
    b = (secondary or {}).get("amount_stats")
    if isinstance(a, dict) and isinstance(b, dict):
        try:
            na, nb = int(a["count"]), int(b["count"])
            ma, mb = float(a["mean"]), float(b["mean"])
            m2a = float(a.get("m2", float(a.get("std_dev", 0.0)) ** 2 * na))
            m2b = float(b.get("m2", float(b.get("std_dev", 0.0)) ** 2 * nb))
        except (KeyError, TypeError, ValueError):
            pass
        else:
            n = na + nb
            if n > 0:
                delta = mb - ma
                mean = ma + delta * nb / n
                m2 = m2a + m2b + delta * delta * na * nb / n
                stats = {"count": n, "mean": round(mean, 6), "m2": round(m2, 6)}
                if n >= 2:
                    stats["std_dev"] = round(math.sqrt(max(m2, 0.0) / n), 6)
                merged["amount_stats"] = stats

    temporal_a = (primary or {}).get("temporal_stats") or {}
    temporal_b = (secondary or {}).get("temporal_stats") or {}
    if isinstance(temporal_a, dict) and isinstance(temporal_b, dict) and (temporal_a or temporal_b):
        temporal: Dict[str, Any] = {}
        for name in ("hour_distribution", "day_distribution"):
            combined = _sum_histograms(temporal_a.get(name), temporal_b.get(name))
            if combined is not None:
                temporal[name] = combined
        merged["temporal_stats"] = temporal

    return merged


class PatternLearner:
    """
    Mutates pattern weights and counters from user corrections.

    Read-modify-write on patterns is serialized through striped locks keyed
    by the signature's index keys and the ids of the patterns involved;
    corrections touching unrelated patterns run in parallel.
    """

    def __init__(
        self,
        repository: PatternRepository,
        event_sink: Optional[EventSink] = None,
        cache: Optional[PatternCache] = None,
        matcher: Optional[FuzzyMatcher] = None,
        categories: Optional[CategoryRepository] = None,
        collector: Optional[MetricsCollector] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.event_sink = event_sink
        self.cache = cache
        self.matcher = matcher or FuzzyMatcher()
        self.categories = categories
        self.collector = collector
        self.rng = rng or random.Random()
        self.clock = clock
        self._stripes = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._metrics_lock = threading.Lock()
        self._latency = LatencyTracker()
        self._metrics = self._initial_metrics()

    @staticmethod
    def _initial_metrics() -> Dict[str, Any]:
        return {
            "corrections_processed": 0,
            "corrections_failed": 0,
            "patterns_created": 0,
            "patterns_strengthened": 0,
            "patterns_weakened": 0,
            "patterns_merged": 0,
            "patterns_decayed": 0,
            "patterns_deactivated": 0,
            "total_processing_time_ms": 0.0,
        }

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def learn_from_correction(
        self,
        record: Optional[TransactionRecord],
        correct_category: CategoryRef,
        predicted_category: CategoryRef = None,
    ) -> LearningResult:
        """
        Learn from a single correction.

        Args:
            record: The corrected transaction
            correct_category: Category the user assigned (Category or id)
            predicted_category: Category the engine had predicted, if any

        Returns:
            LearningResult; on failure nothing was written
        """
        start = time.perf_counter()
        try:
            correct_id = self._category_id(correct_category, "correct_category")
            predicted_id = self._category_id(predicted_category, "predicted_category", required=False)
            self._validate_record(record)
            result = self._process_correction(record, correct_id, predicted_id)
        except LedgerSortError as e:
            self._bump("corrections_failed")
            logger.info("Correction rejected: %s", e.detail or e.message)
            return LearningResult.failure(e.detail or e.message)
        except Exception as e:
            self._bump("corrections_failed")
            log_error(
                "learning_failed",
                f"Learning from correction failed: {e}",
                context={"record_id": getattr(record, "id", None)},
                exception=e,
            )
            return LearningResult.failure(str(e) or type(e).__name__)

        duration_ms = (time.perf_counter() - start) * 1000
        self._record_timing("learn_from_correction", duration_ms)
        if duration_ms > SLOW_CORRECTION_MS:
            logger.warning("Slow correction: %.2fms (record %s)", duration_ms, record.id)
        return result

    def _category_id(self, category: CategoryRef, field: str, required: bool = True) -> Optional[str]:
        if category is None or (isinstance(category, str) and not category.strip()):
            if required:
                raise ValidationError("Category is required", field=field)
            return None
        if isinstance(category, Category):
            return category.id
        identifier = str(category).strip()
        if self.categories is not None:
            resolved = self.categories.resolve(identifier)
            if resolved is None:
                raise NotFoundError("Category", identifier)
            return resolved.id
        return identifier

    @staticmethod
    def _validate_record(record: Optional[TransactionRecord]) -> None:
        if not isinstance(record, TransactionRecord):
            raise ValidationError("Record is required", field="record")
        if not record.has_text:
            raise ValidationError("Record has no merchant name or description", field="record")

    def _process_correction(
        self,
        record: TransactionRecord,
        correct_id: str,
        predicted_id: Optional[str],
    ) -> LearningResult:
        signature = signature_for(record)
        base_keys = signature_index_keys(signature) | {f"category:{correct_id}"}
        if signature.merchant_token:
            base_keys.add(f"new:merchant:{signature.merchant_token}")

        keys = set(base_keys)
        # Candidates can only grow the lock set, and the pattern population
        # is finite, so this settles after a bounded number of rounds
        while True:
            with self._striped(keys):
                candidates = self.repository.find_active_patterns(signature)
                needed = keys | {pattern.id for pattern in candidates}
                if self._stripe_indices(needed) <= self._stripe_indices(keys):
                    uow = self.repository.unit_of_work(self.event_sink)
                    with uow:
                        result, counts = self._apply_correction(uow, record, signature, correct_id, predicted_id)
                    touched = uow.staged
                    break
            keys = needed

        if self.cache is not None:
            self.cache.invalidate_patterns(touched)

        self._bump("corrections_processed")
        for name, value in counts.items():
            self._bump(name, value)

        if result.patterns_created or self.rng.random() < MERGE_CHECK_PROBABILITY:
            try:
                result.patterns_merged = self.merge_similar_patterns(correct_id)
            except Exception as e:
                # Merging is best-effort; the correction itself is committed
                logger.warning("Pattern merge for category %s failed: %s", correct_id, e)
        return result

    def _apply_correction(
        self,
        uow: UnitOfWork,
        record: TransactionRecord,
        signature: Signature,
        correct_id: str,
        predicted_id: Optional[str],
    ) -> Tuple[LearningResult, Dict[str, int]]:
        now = self.clock()
        candidates = uow.find_active_patterns(signature)
        created: List[str] = []
        affected: List[str] = []
        weakened: List[Pattern] = []

        if predicted_id and predicted_id != correct_id:
            for pattern in candidates:
                if pattern.category_id == predicted_id and self._matches(record, pattern):
                    self._weaken(pattern, now)
                    uow.stage(pattern)
                    affected.append(pattern.id)
                    weakened.append(pattern)

        for pattern, is_new in self._find_or_create(uow, record, signature, correct_id, now):
            uow.stage(pattern)
            (created if is_new else affected).append(pattern.id)

        touched = set(created) | set(affected)
        for pattern in candidates:
            if pattern.category_id == correct_id and pattern.id not in touched and self._matches(record, pattern):
                self._strengthen(pattern, record, now)
                uow.stage(pattern)
                affected.append(pattern.id)

        uow.record_event(
            CorrectionEvent(
                record_id=record.id,
                correct_category_id=correct_id,
                predicted_category_id=predicted_id,
                patterns_created=list(created),
                patterns_affected=list(affected),
            )
        )
        counts = {
            "patterns_created": len(created),
            "patterns_strengthened": len(affected) - len(weakened),
            "patterns_weakened": len(weakened),
            "patterns_deactivated": sum(1 for pattern in weakened if not pattern.active),
        }
        result = LearningResult(success=True, patterns_created=created, patterns_affected=affected)
        return result, counts

    def _find_or_create(
        self,
        uow: UnitOfWork,
        record: TransactionRecord,
        signature: Signature,
        category_id: str,
        now: datetime,
    ) -> Iterator[Tuple[Pattern, bool]]:
        if signature.merchant_token:
            targets = [(PatternType.MERCHANT, signature.merchant_token)]
        else:
            targets = [(PatternType.KEYWORD, keyword) for keyword in extract_keywords(record.description)]

        seen: Set[str] = set()
        for pattern_type, value in targets:
            existing = uow.find(pattern_type, value, category_id)
            if existing is not None:
                seen.add(existing.id)
                self._strengthen(existing, record, now)
                yield existing, False
            else:
                yield self._create(pattern_type, value, category_id, record, now), True

        if signature.merchant_token:
            # Keyword patterns already learned for this category are reinforced,
            # but the merchant pattern is the only one created
            for keyword in extract_keywords(record.description):
                existing = uow.find(PatternType.KEYWORD, keyword, category_id)
                if existing is None or existing.id in seen:
                    continue
                seen.add(existing.id)
                self._strengthen(existing, record, now)
                yield existing, False

    def _create(
        self,
        pattern_type: PatternType,
        value: str,
        category_id: str,
        record: TransactionRecord,
        now: datetime,
    ) -> Pattern:
        metadata: Dict[str, Any] = {"created_from": "user_correction", "initial_record_id": record.id}
        update_amount_stats(metadata, record.amount)
        update_hour_distribution(metadata, record.hour, record.weekday)
        pattern = Pattern(
            category_id=category_id,
            pattern_type=pattern_type,
            value=value,
            confidence_weight=NEW_PATTERN_WEIGHT * FRESH_SIGNATURE_BOOST,
            usage_count=1,
            success_count=1,
            metadata=metadata,
            user_created=True,
            last_updated=now,
            created_at=now,
        )
        logger.info("Created %s pattern '%s' -> %s", pattern_type.value, value, category_id)
        return pattern

    def _strengthen(self, pattern: Pattern, record: TransactionRecord, now: datetime) -> None:
        pattern.usage_count += 1
        pattern.success_count += 1
        pattern.confidence_weight = min(pattern.confidence_weight * STRENGTHEN_FACTOR, MAX_CONFIDENCE)
        update_amount_stats(pattern.metadata, record.amount)
        update_hour_distribution(pattern.metadata, record.hour, record.weekday)
        pattern.last_updated = now

    def _weaken(self, pattern: Pattern, now: datetime) -> None:
        old_weight = pattern.confidence_weight
        pattern.confidence_weight = old_weight * WEAKEN_FACTOR
        pattern.usage_count += 1
        pattern.last_updated = now
        if pattern.confidence_weight < DEACTIVATION_WEIGHT:
            pattern.active = False
        logger.debug("Weakened pattern %s: %.3f -> %.3f", pattern.id, old_weight, pattern.confidence_weight)

    def _matches(self, record: TransactionRecord, pattern: Pattern) -> bool:
        return self.matcher.score_record(record, pattern) >= MATCH_THRESHOLD

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def batch_learn(self, corrections: Optional[Sequence[Any]]) -> BatchLearningResult:
        """
        Learn from many corrections.

        Each item is a ``Correction``, a dict with ``record``,
        ``correct_category`` and optional ``predicted_category``, or a tuple
        in that order. Corrections sharing a signature are processed back to
        back; each one commits on its own.
        """
        corrections = list(corrections or [])
        result = BatchLearningResult(total=len(corrections))
        start = time.perf_counter()

        for offset in range(0, len(corrections), BATCH_SIZE):
            chunk = corrections[offset:offset + BATCH_SIZE]
            for position, item in self._grouped(chunk, offset):
                if isinstance(item, str):
                    outcome = LearningResult.failure(item)
                else:
                    outcome = self.learn_from_correction(item.record, item.correct_category, item.predicted_category)
                if outcome.success:
                    result.successful += 1
                    result.patterns_created += len(outcome.patterns_created)
                else:
                    result.failed += 1
                    result.errors.append(f"correction {position}: {outcome.error}")

        duration_ms = (time.perf_counter() - start) * 1000
        self._record_timing("batch_learn", duration_ms)
        if duration_ms > SLOW_BATCH_MS:
            logger.warning("Slow batch learn: %.2fms for %d corrections", duration_ms, result.total)
        logger.info(
            "Batch learn: %d total, %d successful, %d failed, %d patterns created",
            result.total, result.successful, result.failed, result.patterns_created,
        )
        return result

    def _grouped(self, chunk: List[Any], offset: int) -> List[Tuple[int, Union[Correction, str]]]:
        """Order a chunk so corrections with the same signature are adjacent."""
        groups: "OrderedDict[str, List[Tuple[int, Union[Correction, str]]]]" = OrderedDict()
        for index, raw in enumerate(chunk, start=offset):
            try:
                correction = self._coerce(raw)
            except (TypeError, ValueError) as e:
                groups.setdefault(f"invalid:{index}", []).append((index, str(e)))
                continue
            key = signature_for(correction.record).cache_key if correction.record is not None else f"none:{index}"
            groups.setdefault(key, []).append((index, correction))
        return [item for group in groups.values() for item in group]

    @staticmethod
    def _coerce(raw: Any) -> Correction:
        if isinstance(raw, Correction):
            return raw
        if isinstance(raw, dict):
            return Correction(
                record=raw.get("record"),
                correct_category=raw.get("correct_category"),
                predicted_category=raw.get("predicted_category"),
            )
        if isinstance(raw, (tuple, list)) and 2 <= len(raw) <= 3:
            return Correction(*raw)
        raise TypeError(f"Unsupported correction format: {type(raw).__name__}")

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def decay_unused_patterns(
        self,
        inactivity_threshold: Union[timedelta, int, float] = DECAY_THRESHOLD,
        decay_factor: float = DECAY_FACTOR,
        now: Optional[datetime] = None,
    ) -> DecayResult:
        """
        Decay active patterns not updated within ``inactivity_threshold``.

        ``last_updated`` is left alone, so a pattern that stays unused keeps
        decaying on later runs; within one run each pattern decays once.
        Numeric thresholds are days.
        """
        if not isinstance(inactivity_threshold, timedelta):
            inactivity_threshold = timedelta(days=float(inactivity_threshold))
        if not 0 < decay_factor <= 1:
            return DecayResult(error="decay_factor must be in (0, 1]")

        cutoff = _aware(now or self.clock()) - inactivity_threshold
        result = DecayResult()
        try:
            active = [pattern for pattern in self.repository.list_all() if pattern.active]
            result.examined = len(active)
            stale = [p for p in active if p.last_updated is None or _aware(p.last_updated) < cutoff]

            for offset in range(0, len(stale), BATCH_SIZE):
                chunk = stale[offset:offset + BATCH_SIZE]
                with self._striped({pattern.id for pattern in chunk}):
                    uow = self.repository.unit_of_work()
                    with uow:
                        for pattern in chunk:
                            current = uow.get(pattern.id)
                            if current is None or not current.active:
                                continue
                            if current.last_updated is not None and _aware(current.last_updated) >= cutoff:
                                continue
                            current.confidence_weight *= decay_factor
                            result.decayed += 1
                            if current.confidence_weight < DEACTIVATION_WEIGHT:
                                current.active = False
                                result.deactivated += 1
                            uow.stage(current)
                if self.cache is not None:
                    self.cache.invalidate_patterns(uow.staged)
        except Exception as e:
            log_error("decay_failed", f"Pattern decay failed: {e}", exception=e)
            result.error = str(e) or type(e).__name__
            return result

        self._bump("patterns_decayed", result.decayed)
        self._bump("patterns_deactivated", result.deactivated)
        logger.info(
            "Decay run: examined %d, decayed %d, deactivated %d",
            result.examined, result.decayed, result.deactivated,
        )
        return result

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge_similar_patterns(self, category_id: str) -> List[str]:
        """
        Merge near-duplicate patterns within ``category_id``.

        Textual patterns are compared by fuzzy similarity, amount ranges by
        how much they overlap. The higher-usage pattern survives with summed
        counters and a usage-weighted weight; the other is deactivated. A
        surviving amount range is widened to cover both. Returns the ids of
        deactivated duplicates.
        """
        patterns = [
            p for p in self.repository.list_all()
            if p.active and p.category_id == category_id
            and p.pattern_type in (PatternType.MERCHANT, PatternType.KEYWORD, PatternType.AMOUNT_RANGE)
        ]
        patterns.sort(key=lambda p: (-p.usage_count, p.id))

        merged: List[str] = []
        gone: Set[str] = set()
        for i, first in enumerate(patterns):
            if first.id in gone:
                continue
            for second in patterns[i + 1:]:
                if second.id in gone or second.pattern_type != first.pattern_type:
                    continue
                if self._similarity(first, second) < MERGE_SIMILARITY_THRESHOLD:
                    continue
                if self._merge_pair(first.id, second.id):
                    merged.append(second.id)
                    gone.add(second.id)
        if merged:
            self._bump("patterns_merged", len(merged))
        return merged

    def _similarity(self, first: Pattern, second: Pattern) -> float:
        if first.pattern_type == PatternType.AMOUNT_RANGE:
            a, b = first.amount_range(), second.amount_range()
            if a is None or b is None:
                return 0.0
            return range_overlap(a, b)
        return self.matcher.calculate_similarity(first.value, second.value)

    def _merge_pair(self, primary_id: str, secondary_id: str) -> bool:
        with self._striped({primary_id, secondary_id}):
            uow = self.repository.unit_of_work()
            with uow:
                primary = uow.get(primary_id)
                secondary = uow.get(secondary_id)
                if primary is None or secondary is None or not (primary.active and secondary.active):
                    return False
                if secondary.usage_count > primary.usage_count:
                    primary, secondary = secondary, primary

                total_usage = primary.usage_count + secondary.usage_count
                if total_usage > 0:
                    weight = (
                        primary.confidence_weight * primary.usage_count
                        + secondary.confidence_weight * secondary.usage_count
                    ) / total_usage
                else:
                    weight = (primary.confidence_weight + secondary.confidence_weight) / 2
                primary.usage_count = total_usage
                primary.success_count += secondary.success_count
                primary.confidence_weight = min(weight, MAX_CONFIDENCE)
                primary.metadata = merge_metadata(primary.metadata, secondary.metadata)
                bounds_a, bounds_b = primary.amount_range(), secondary.amount_range()
                if bounds_a is not None and bounds_b is not None:
                    primary.value = f"{min(bounds_a[0], bounds_b[0]):g}-{max(bounds_a[1], bounds_b[1]):g}"
                primary.last_updated = self.clock()
                secondary.active = False

                uow.stage(primary)
                uow.stage(secondary)
        if self.cache is not None:
            self.cache.invalidate_patterns(uow.staged)
        logger.info("Merged pattern %s into %s", secondary.id, primary.id)
        return True

    # ------------------------------------------------------------------
    # Locks and metrics
    # ------------------------------------------------------------------

    @staticmethod
    def _stripe_indices(keys: Iterable[str]) -> Set[int]:
        return {hash(key) % LOCK_STRIPES for key in keys}

    @contextmanager
    def _striped(self, keys: Iterable[str]):
        # Always acquire in ascending order so overlapping lock sets cannot deadlock
        indices = sorted(self._stripe_indices(keys))
        acquired: List[int] = []
        try:
            for index in indices:
                self._stripes[index].acquire()
                acquired.append(index)
            yield
        finally:
            for index in reversed(acquired):
                self._stripes[index].release()

    def _bump(self, name: str, value: int = 1) -> None:
        if not value:
            return
        with self._metrics_lock:
            self._metrics[name] += value
        if self.collector is not None:
            self.collector.increment(f"learning.{name}", value)

    def _record_timing(self, operation: str, duration_ms: float) -> None:
        self._latency.record(duration_ms)
        with self._metrics_lock:
            self._metrics["total_processing_time_ms"] += duration_ms
        if self.collector is not None:
            self.collector.timing(f"learning.{operation}", duration_ms)

    def pattern_statistics(self) -> Dict[str, Any]:
        patterns = self.repository.list_all()
        by_type: Dict[str, int] = {}
        for pattern in patterns:
            by_type[pattern.pattern_type.value] = by_type.get(pattern.pattern_type.value, 0) + 1
        return {
            "total_patterns": len(patterns),
            "active_patterns": sum(1 for p in patterns if p.active),
            "user_created_patterns": sum(1 for p in patterns if p.user_created),
            "patterns_by_type": by_type,
        }

    def learning_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            metrics = dict(self._metrics)
        processed = metrics["corrections_processed"]
        effectiveness: Dict[str, float] = {}
        if processed:
            effectiveness = {
                "patterns_per_correction": round(metrics["patterns_created"] / processed, 2),
                "avg_processing_time_ms": round(metrics["total_processing_time_ms"] / processed, 3),
            }
        try:
            statistics = self.pattern_statistics()
        except Exception as e:
            logger.warning("Pattern statistics unavailable: %s", e)
            statistics = {}
        return {
            "basic_metrics": metrics,
            "pattern_statistics": statistics,
            "learning_effectiveness": effectiveness,
            "performance": self._latency.summary(),
        }

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._metrics = self._initial_metrics()
        self._latency.reset()
