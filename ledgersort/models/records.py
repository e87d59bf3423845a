"""Transaction records and the signatures derived from them."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple


@dataclass
class TransactionRecord:
    """
    Target record the engine reads from and writes categorization fields to.

    Storage is owned by the caller; the engine only touches the fields below.
    """
    merchant_name: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    transaction_date: Optional[datetime] = None
    id: str = field(default_factory=lambda: f"txn_{uuid.uuid4().hex[:12]}")
    category_id: Optional[str] = None
    ml_confidence: Optional[float] = None
    ml_suggested_category_id: Optional[str] = None
    ml_confidence_explanation: Optional[str] = None
    categorization_method: Optional[str] = None
    ml_correction_count: int = 0

    @property
    def has_text(self) -> bool:
        return bool((self.merchant_name or "").strip() or (self.description or "").strip())

    @property
    def hour(self) -> Optional[int]:
        return self.transaction_date.hour if self.transaction_date else None

    @property
    def weekday(self) -> Optional[int]:
        """Day of the week, Monday=0."""
        return self.transaction_date.weekday() if self.transaction_date else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "merchant_name": self.merchant_name,
            "description": self.description,
            "amount": self.amount,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "category_id": self.category_id,
            "ml_confidence": self.ml_confidence,
            "ml_suggested_category_id": self.ml_suggested_category_id,
            "ml_confidence_explanation": self.ml_confidence_explanation,
            "categorization_method": self.categorization_method,
            "ml_correction_count": self.ml_correction_count,
        }


@dataclass(frozen=True)
class Signature:
    """Record-derived key used to index candidate patterns."""
    merchant_token: str = ""
    keywords: FrozenSet[str] = frozenset()
    amount_bucket: Optional[int] = None
    hour: Optional[int] = None

    @property
    def tokens(self) -> FrozenSet[str]:
        tokens = set(self.keywords)
        if self.merchant_token:
            tokens.add(self.merchant_token)
            tokens.update(self.merchant_token.split())
        return frozenset(tokens)

    @property
    def cache_key(self) -> str:
        return "|".join([
            f"m:{self.merchant_token}",
            "k:" + ",".join(sorted(self.keywords)),
            f"a:{'' if self.amount_bucket is None else self.amount_bucket}",
            f"h:{'' if self.hour is None else self.hour}",
        ])

    @property
    def amount_bounds(self) -> Optional[Tuple[float, float]]:
        """Half-open amount interval covered by the bucket."""
        if self.amount_bucket is None:
            return None
        if self.amount_bucket == 0:
            return (0.0, 1.0)
        return (float(2 ** (self.amount_bucket - 1)), float(2 ** self.amount_bucket))
