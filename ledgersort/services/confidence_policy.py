"""
Confidence Application Policy

Applies a categorization result to a target record:
- confidence >= high_threshold: assign the category directly
- below it: store the category as a suggestion for the user to review

Also handles the user accepting or rejecting a suggestion. A rejection is
fed back to the learner as a correction.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Union

from ledgersort.models.records import TransactionRecord
from ledgersort.models.results import CategorizationResult, LearningResult
from ledgersort.services.explanations import MANUALLY_CONFIRMED, MANUALLY_CORRECTED, explain_confidence

logger = logging.getLogger(__name__)

DEFAULT_HIGH_THRESHOLD = 0.7

METHOD_USER_CONFIRMED = "user_confirmed"
METHOD_USER_CORRECTED = "user_corrected"


class CorrectionLearner(Protocol):
    def learn_from_correction(self, record, correct_category, predicted_category=None) -> LearningResult:
        ...


class ConfidencePolicy:

    def __init__(
        self,
        high_threshold: Union[float, Callable[[], float]] = DEFAULT_HIGH_THRESHOLD,
        learner: Optional[CorrectionLearner] = None,
    ) -> None:
        self._high_threshold = high_threshold
        self.learner = learner

    @property
    def high_threshold(self) -> float:
        threshold = self._high_threshold
        return float(threshold() if callable(threshold) else threshold)

    def apply(self, result: Optional[CategorizationResult], record: TransactionRecord) -> bool:
        """
        Write ``result`` onto ``record``.

        Returns:
            True if the record was changed
        """
        if result is None or not result.successful or not result.category_id:
            return False

        explanation = explain_confidence(result.confidence, result.confidence_breakdown, result.usage_count)
        if result.confidence >= self.high_threshold:
            record.category_id = result.category_id
            record.ml_suggested_category_id = None
            record.categorization_method = result.method or "pattern_match"
        else:
            record.ml_suggested_category_id = result.category_id

        record.ml_confidence = result.confidence
        record.ml_confidence_explanation = explanation
        logger.debug(
            "Applied %s to record %s (confidence %.3f)",
            result.category_id, record.id, result.confidence,
        )
        return True

    def apply_ml_suggestion(self, record: TransactionRecord) -> bool:
        """Promote the pending suggestion; False when there is none."""
        if not record.ml_suggested_category_id:
            return False
        record.category_id = record.ml_suggested_category_id
        record.ml_suggested_category_id = None
        record.ml_confidence = 1.0
        record.ml_confidence_explanation = MANUALLY_CONFIRMED
        record.categorization_method = METHOD_USER_CONFIRMED
        return True

    def reject_ml_suggestion(self, record: TransactionRecord, correct_category_id: Optional[str]) -> bool:
        """
        Replace the suggestion with the user's category and learn from it.

        Learning failures are logged; the record update stands.
        """
        if not correct_category_id:
            return False

        predicted = record.ml_suggested_category_id
        record.category_id = correct_category_id
        record.ml_suggested_category_id = None
        record.ml_confidence = 1.0
        record.ml_correction_count = (record.ml_correction_count or 0) + 1
        record.ml_confidence_explanation = MANUALLY_CORRECTED
        record.categorization_method = METHOD_USER_CORRECTED

        if self.learner is not None:
            outcome = self.learner.learn_from_correction(record, correct_category_id, predicted)
            if not outcome.success:
                logger.warning("Learning from rejected suggestion failed: %s", outcome.error)
        return True
