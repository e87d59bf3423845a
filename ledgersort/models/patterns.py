"""
Pattern and category models.

A pattern is a learned rule (type + value + category) carrying the
weight and counters that the learner mutates over time.
"""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PatternType(str, Enum):
    """Kinds of learned patterns."""
    MERCHANT = "merchant"
    KEYWORD = "keyword"
    AMOUNT_RANGE = "amount_range"
    TIME = "time"


@dataclass(frozen=True)
class Category:
    """A user-defined category. Owned by the category repository."""
    id: str
    name: str


@dataclass
class Pattern:
    """Learned categorization pattern."""
    category_id: str
    pattern_type: PatternType
    value: str
    id: str = field(default_factory=lambda: f"pat_{uuid.uuid4().hex[:12]}")
    confidence_weight: float = 1.0
    usage_count: int = 0
    success_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    user_created: bool = False
    last_updated: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.pattern_type = PatternType(self.pattern_type)
        if self.confidence_weight < 0:
            raise ValueError("confidence_weight must be non-negative")
        if self.usage_count < 0 or self.success_count < 0:
            raise ValueError("pattern counters must be non-negative")
        if self.success_count > self.usage_count:
            raise ValueError("success_count cannot exceed usage_count")

    @property
    def success_rate(self) -> Optional[float]:
        if self.usage_count <= 0:
            return None
        return self.success_count / self.usage_count

    @property
    def key(self) -> Tuple[str, str, str]:
        """Identity of the rule independent of its storage id."""
        return (self.pattern_type.value, self.value, self.category_id)

    def amount_range(self) -> Optional[Tuple[float, float]]:
        """Parse an ``amount_range`` value of the form ``min-max``."""
        if self.pattern_type != PatternType.AMOUNT_RANGE:
            return None
        try:
            low, high = self.value.split("-", 1)
            low_f, high_f = float(low), float(high)
        except ValueError:
            return None
        return (min(low_f, high_f), max(low_f, high_f))

    def hour_window(self) -> Optional[Tuple[int, int]]:
        """Parse a ``time`` value of the form ``HH-HH``. Windows may wrap midnight."""
        if self.pattern_type != PatternType.TIME:
            return None
        try:
            start, end = self.value.split("-", 1)
            start_h, end_h = int(start), int(end)
        except ValueError:
            return None
        if not (0 <= start_h <= 23 and 0 <= end_h <= 23):
            return None
        return (start_h, end_h)

    def covers_amount(self, amount: Optional[float]) -> bool:
        bounds = self.amount_range()
        if bounds is None or amount is None:
            return False
        return bounds[0] <= abs(amount) <= bounds[1]

    def covers_hour(self, hour: Optional[int]) -> bool:
        window = self.hour_window()
        if window is None or hour is None:
            return False
        start, end = window
        if start <= end:
            return start <= hour <= end
        return hour >= start or hour <= end

    def copy(self) -> "Pattern":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "pattern_type": self.pattern_type.value,
            "value": self.value,
            "confidence_weight": self.confidence_weight,
            "usage_count": self.usage_count,
            "success_count": self.success_count,
            "success_rate": self.success_rate,
            "metadata": self.metadata,
            "active": self.active,
            "user_created": self.user_created,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
