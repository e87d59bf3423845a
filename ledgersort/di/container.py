"""Dependency container wiring one engine instance."""
import random
import threading
from typing import Callable, Optional

from ledgersort.core.config import EngineConfig
from ledgersort.services.audit import EventSink, InMemoryEventSink, SQLiteEventSink
from ledgersort.services.category_store import CategoryRepository
from ledgersort.services.circuit_breaker import CircuitBreaker
from ledgersort.services.confidence_policy import ConfidencePolicy
from ledgersort.services.confidence_scoring import ConfidenceScorer
from ledgersort.services.fuzzy_matching import FuzzyMatcher
from ledgersort.services.metrics import MetricsCollector, build_metrics_collector
from ledgersort.services.orchestrator import Orchestrator
from ledgersort.services.pattern_cache import PatternCache
from ledgersort.services.pattern_learning import PatternLearner
from ledgersort.services.pattern_store import InMemoryPatternStore, PatternRepository, SQLitePatternStore


class EngineContext:
    """
    Owns one set of engine components.

    Components are built on first access and shared afterwards. Tests create
    their own context instead of touching a process-wide one.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        repository: Optional[PatternRepository] = None,
        categories: Optional[CategoryRepository] = None,
        event_sink: Optional[EventSink] = None,
        collector: Optional[MetricsCollector] = None,
        rng: Optional[random.Random] = None,
        breaker_clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.repository = repository if repository is not None else InMemoryPatternStore()
        # Without a category repository, category ids are taken as given
        self.categories = categories
        self.event_sink = event_sink if event_sink is not None else InMemoryEventSink()
        self.collector = collector if collector is not None else build_metrics_collector(self.config.metrics_backend)
        self.rng = rng
        self.breaker_clock = breaker_clock
        self._lock = threading.RLock()
        self._matcher = None
        self._scorer = None
        self._cache = None
        self._learner = None
        self._breaker = None
        self._orchestrator = None
        self._policy = None

    @classmethod
    def sqlite(cls, config: Optional[EngineConfig] = None, **kwargs) -> "EngineContext":
        """Context whose patterns and correction events live in ``config.db_path``."""
        config = config or EngineConfig()
        return cls(
            config=config,
            repository=SQLitePatternStore(config.db_path),
            event_sink=SQLiteEventSink(config.db_path),
            **kwargs,
        )

    def matcher(self) -> FuzzyMatcher:
        with self._lock:
            if self._matcher is None:
                self._matcher = FuzzyMatcher(
                    min_confidence=self.config.match_min_similarity,
                    max_results=self.config.max_match_results,
                )
            return self._matcher

    def scorer(self) -> ConfidenceScorer:
        with self._lock:
            if self._scorer is None:
                self._scorer = ConfidenceScorer(
                    matcher=self.matcher(),
                    cache_size=self.config.scorer_cache_size,
                    collector=self.collector,
                )
            return self._scorer

    def cache(self) -> PatternCache:
        with self._lock:
            if self._cache is None:
                self._cache = PatternCache(
                    self.repository,
                    capacity=self.config.pattern_cache_size,
                    collector=self.collector,
                )
            return self._cache

    def learner(self) -> PatternLearner:
        with self._lock:
            if self._learner is None:
                self._learner = PatternLearner(
                    self.repository,
                    event_sink=self.event_sink,
                    cache=self.cache(),
                    matcher=self.matcher(),
                    categories=self.categories,
                    collector=self.collector,
                    rng=self.rng,
                )
            return self._learner

    def breaker(self) -> CircuitBreaker:
        with self._lock:
            if self._breaker is None:
                kwargs = {"clock": self.breaker_clock} if self.breaker_clock else {}
                self._breaker = CircuitBreaker(
                    failure_threshold=self.config.breaker_failure_threshold,
                    timeout=self.config.breaker_timeout_seconds,
                    **kwargs,
                )
            return self._breaker

    def orchestrator(self) -> Orchestrator:
        with self._lock:
            if self._orchestrator is None:
                self._orchestrator = Orchestrator(
                    repository=self.repository,
                    matcher=self.matcher(),
                    scorer=self.scorer(),
                    cache=self.cache(),
                    learner=self.learner(),
                    breaker=self.breaker(),
                    config=self.config,
                    collector=self.collector,
                )
            return self._orchestrator

    def policy(self) -> ConfidencePolicy:
        with self._lock:
            if self._policy is None:
                orchestrator = self.orchestrator()
                self._policy = ConfidencePolicy(
                    high_threshold=lambda: orchestrator.config.auto_categorize_threshold,
                    learner=orchestrator,
                )
            return self._policy
