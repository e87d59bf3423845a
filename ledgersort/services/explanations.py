"""
Human-readable explanations for categorization confidence.

Pure functions only: the policy and the API compose these, nothing
inherits from them.
"""
from typing import Any, Dict, List, Mapping, Optional

from ledgersort.models.results import ConfidenceLevel

HIGH_CONFIDENCE = 0.85
LOW_CONFIDENCE = 0.5

MANUALLY_CONFIRMED = "Manually confirmed by user"
MANUALLY_CORRECTED = "Manually corrected by user"

# Display order and label of each confidence factor
FACTOR_LABELS = {
    "text_match": "Pattern strength",
    "historical_success": "Success rate",
    "amount_similarity": "Amount similarity",
    "temporal_pattern": "Time of day match",
}


def as_percentage(value: float) -> int:
    """0.923 -> 92"""
    return int(round(max(0.0, min(1.0, value)) * 100))


def describe_usage(usage_count: int) -> str:
    if usage_count <= 1:
        return "Usage frequency: seen once before"
    if usage_count < 10:
        return f"Usage frequency: seen {usage_count} times"
    return f"Usage frequency: frequent ({usage_count} times)"


def factor_phrases(breakdown: Mapping[str, Any], usage_count: Optional[int] = None) -> List[str]:
    """One phrase per present factor, in a fixed order."""
    phrases: List[str] = []
    for name, label in FACTOR_LABELS.items():
        details = breakdown.get(name)
        if details is None:
            continue
        value = details.get("value") if isinstance(details, Mapping) else details
        if value is None:
            continue
        phrases.append(f"{label}: {as_percentage(float(value))}%")
        if name == "historical_success" and usage_count:
            phrases.append(describe_usage(usage_count))
    return phrases


def fallback_message(confidence: float) -> str:
    """Coarse message keyed by confidence bucket."""
    percent = as_percentage(confidence)
    if confidence >= HIGH_CONFIDENCE:
        return f"High confidence ({percent}%) - categorization very likely"
    if confidence < LOW_CONFIDENCE:
        return f"Low confidence ({percent}%) - manual review recommended"
    return f"Moderate confidence ({percent}%) - categorization likely"


def explain_confidence(
    confidence: float,
    breakdown: Optional[Mapping[str, Any]] = None,
    usage_count: Optional[int] = None,
) -> str:
    """
    Render the explanation stored on a record.

    With a factor breakdown, lists each present factor as a rounded
    percentage; without one, falls back to a bucketed message.

    Example:
        "Confidence 92% (very high). Pattern strength: 100%; Success rate: 80%"
    """
    phrases = factor_phrases(breakdown, usage_count) if breakdown else []
    if not phrases:
        return fallback_message(confidence)

    level = ConfidenceLevel.for_score(confidence).value.replace("_", " ")
    return f"Confidence {as_percentage(confidence)}% ({level}). " + "; ".join(phrases)


def summarize_alternatives(alternatives: List[Dict[str, Any]]) -> Optional[str]:
    if not alternatives:
        return None
    parts = [f"{alt['category_id']} ({as_percentage(alt['confidence'])}%)" for alt in alternatives]
    return "Also considered: " + ", ".join(parts)
