"""
Result value objects returned by the engine.

All of these are ephemeral: built per call and handed back to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConfidenceLevel(str, Enum):
    """Confidence buckets, ordered from weakest to strongest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def for_score(cls, score: float) -> "ConfidenceLevel":
        if score >= 0.9:
            return cls.VERY_HIGH
        if score >= 0.75:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW


_LEVEL_ORDER = [
    ConfidenceLevel.LOW,
    ConfidenceLevel.MEDIUM,
    ConfidenceLevel.HIGH,
    ConfidenceLevel.VERY_HIGH,
]


@dataclass(frozen=True)
class MatchItem:
    pattern_id: str
    score: float


@dataclass(frozen=True)
class MatchResult:
    """Ordered fuzzy-match scores for one text against a set of patterns."""
    matches: tuple = ()
    query_text: str = ""

    @property
    def success(self) -> bool:
        return len(self.matches) > 0

    @property
    def best_match(self) -> Optional[MatchItem]:
        return self.matches[0] if self.matches else None

    @property
    def best_score(self) -> float:
        return self.matches[0].score if self.matches else 0.0

    def score_for(self, pattern_id: str) -> Optional[float]:
        for item in self.matches:
            if item.pattern_id == pattern_id:
                return item.score
        return None

    @classmethod
    def empty(cls, query_text: str = "") -> "MatchResult":
        return cls(matches=(), query_text=query_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "best_score": self.best_score,
            "matches": [{"pattern_id": m.pattern_id, "score": m.score} for m in self.matches],
        }


@dataclass(frozen=True)
class ConfidenceResult:
    """Outcome of a confidence calculation for one (record, pattern) pair."""
    score: float
    factors: Dict[str, Optional[float]] = field(default_factory=dict)
    weights_applied: Dict[str, float] = field(default_factory=dict)
    pattern_id: Optional[str] = None
    record_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.error is None

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.for_score(self.score)

    @property
    def present_factors(self) -> Dict[str, float]:
        return {name: value for name, value in self.factors.items() if value is not None}

    @property
    def dominant_factor(self) -> Optional[str]:
        contributions = self.contributions()
        if not contributions:
            return None
        return max(contributions.items(), key=lambda item: item[1])[0]

    def contributions(self) -> Dict[str, float]:
        return {
            name: value * self.weights_applied.get(name, 0.0)
            for name, value in self.present_factors.items()
        }

    def factor_breakdown(self) -> Dict[str, Dict[str, float]]:
        contributions = self.contributions()
        return {
            name: {
                "value": round(value, 4),
                "weight": round(self.weights_applied.get(name, 0.0), 4),
                "contribution": round(contributions[name], 4),
            }
            for name, value in self.present_factors.items()
        }

    @classmethod
    def invalid(cls, reason: str) -> "ConfidenceResult":
        return cls(score=0.0, error=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "confidence_level": self.confidence_level.value,
            "factors": dict(self.factors),
            "factor_breakdown": self.factor_breakdown(),
            "dominant_factor": self.dominant_factor,
            "pattern_id": self.pattern_id,
            "valid": self.valid,
            "error": self.error,
        }


class CategorizationStatus(str, Enum):
    SUCCESS = "success"
    NO_MATCH = "no_match"
    ERROR = "error"


@dataclass
class CategorizationResult:
    """What ``Orchestrator.categorize`` hands back to the caller."""
    status: CategorizationStatus
    category_id: Optional[str] = None
    confidence: float = 0.0
    method: Optional[str] = None
    patterns_used: List[str] = field(default_factory=list)
    confidence_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    processing_time_ms: float = 0.0
    # Usage count of the winning pattern, for explanations
    usage_count: Optional[int] = None

    @property
    def successful(self) -> bool:
        return self.status == CategorizationStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == CategorizationStatus.ERROR

    @property
    def no_match(self) -> bool:
        return self.status == CategorizationStatus.NO_MATCH

    @classmethod
    def no_match_result(cls, processing_time_ms: float = 0.0) -> "CategorizationResult":
        return cls(status=CategorizationStatus.NO_MATCH, method="no_match", processing_time_ms=processing_time_ms)

    @classmethod
    def error_result(cls, message: str, processing_time_ms: float = 0.0) -> "CategorizationResult":
        return cls(status=CategorizationStatus.ERROR, error=message, processing_time_ms=processing_time_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "category_id": self.category_id,
            "confidence": self.confidence,
            "method": self.method,
            "patterns_used": list(self.patterns_used),
            "confidence_breakdown": self.confidence_breakdown,
            "alternatives": list(self.alternatives),
            "usage_count": self.usage_count,
            "error": self.error,
            "processing_time_ms": round(self.processing_time_ms, 3),
        }


@dataclass
class LearningResult:
    success: bool
    patterns_created: List[str] = field(default_factory=list)
    patterns_affected: List[str] = field(default_factory=list)
    patterns_merged: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "LearningResult":
        return cls(success=False, error=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "patterns_created": list(self.patterns_created),
            "patterns_affected": list(self.patterns_affected),
            "patterns_merged": list(self.patterns_merged),
            "error": self.error,
        }


@dataclass
class BatchLearningResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    patterns_created: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "patterns_created": self.patterns_created,
            "success_rate": round(self.success_rate, 4),
            "errors": list(self.errors),
        }


@dataclass
class DecayResult:
    examined: int = 0
    decayed: int = 0
    deactivated: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "examined": self.examined,
            "decayed": self.decayed,
            "deactivated": self.deactivated,
            "error": self.error,
        }
