"""API request models."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from ledgersort.models.base import LSBaseModel
from ledgersort.models.records import TransactionRecord


class RecordInput(LSBaseModel):
    id: Optional[str] = None
    merchant_name: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    transaction_date: Optional[datetime] = None

    def to_record(self) -> TransactionRecord:
        fields = self.model_dump(exclude_none=True)
        return TransactionRecord(**fields)


class BatchCategorizeRequest(LSBaseModel):
    records: List[RecordInput] = Field(default_factory=list, max_length=1000)


class CorrectionInput(LSBaseModel):
    record: RecordInput
    correct_category: str = Field(min_length=1)
    predicted_category: Optional[str] = None


class LearnRequest(LSBaseModel):
    corrections: List[CorrectionInput] = Field(default_factory=list, max_length=1000)


class DecayRequest(LSBaseModel):
    inactivity_days: float = Field(30.0, ge=0)
    decay_factor: float = Field(0.9, gt=0, le=1)


class ConfigUpdateRequest(LSBaseModel):
    options: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_options(self) -> "ConfigUpdateRequest":
        if not self.options:
            raise ValueError("options must not be empty")
        return self
