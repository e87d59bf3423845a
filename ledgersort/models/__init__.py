from ledgersort.models.base import LSBaseModel
from ledgersort.models.patterns import Category, Pattern, PatternType
from ledgersort.models.records import Signature, TransactionRecord
from ledgersort.models.results import (
    BatchLearningResult,
    CategorizationResult,
    CategorizationStatus,
    ConfidenceLevel,
    ConfidenceResult,
    DecayResult,
    LearningResult,
    MatchItem,
    MatchResult,
)
from ledgersort.models.requests import (
    BatchCategorizeRequest,
    ConfigUpdateRequest,
    CorrectionInput,
    DecayRequest,
    LearnRequest,
    RecordInput,
)

__all__ = [
    "BatchCategorizeRequest",
    "BatchLearningResult",
    "CategorizationResult",
    "CategorizationStatus",
    "Category",
    "ConfidenceLevel",
    "ConfidenceResult",
    "ConfigUpdateRequest",
    "CorrectionInput",
    "DecayRequest",
    "DecayResult",
    "LSBaseModel",
    "LearnRequest",
    "LearningResult",
    "MatchItem",
    "MatchResult",
    "Pattern",
    "PatternType",
    "RecordInput",
    "Signature",
    "TransactionRecord",
]
