# Lazy imports to avoid dependency chains at startup
def __getattr__(name):
    if name == "FuzzyMatcher":
        from ledgersort.services.fuzzy_matching import FuzzyMatcher
        return FuzzyMatcher
    elif name == "ConfidenceScorer":
        from ledgersort.services.confidence_scoring import ConfidenceScorer
        return ConfidenceScorer
    elif name == "PatternCache":
        from ledgersort.services.pattern_cache import PatternCache
        return PatternCache
    elif name == "PatternLearner":
        from ledgersort.services.pattern_learning import PatternLearner
        return PatternLearner
    elif name == "CircuitBreaker":
        from ledgersort.services.circuit_breaker import CircuitBreaker
        return CircuitBreaker
    elif name == "Orchestrator":
        from ledgersort.services.orchestrator import Orchestrator
        return Orchestrator
    elif name == "ConfidencePolicy":
        from ledgersort.services.confidence_policy import ConfidencePolicy
        return ConfidencePolicy
    elif name == "InMemoryPatternStore":
        from ledgersort.services.pattern_store import InMemoryPatternStore
        return InMemoryPatternStore
    elif name == "SQLitePatternStore":
        from ledgersort.services.pattern_store import SQLitePatternStore
        return SQLitePatternStore
    raise AttributeError(f"module 'ledgersort.services' has no attribute '{name}'")

__all__ = [
    "FuzzyMatcher",
    "ConfidenceScorer",
    "PatternCache",
    "PatternLearner",
    "CircuitBreaker",
    "Orchestrator",
    "ConfidencePolicy",
    "InMemoryPatternStore",
    "SQLitePatternStore",
]
