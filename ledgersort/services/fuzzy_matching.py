"""
Fuzzy Matching Service for LedgerSort

Provides intelligent matching beyond exact comparisons:
- Merchant name normalization (processor prefixes, company suffixes, store numbers)
- Merchant/description similarity against learned pattern values
- Keyword extraction and record signatures for candidate lookup
"""
from typing import FrozenSet, List, Optional, Sequence
import logging
import re
import threading
import time
import unicodedata
from functools import lru_cache

from rapidfuzz import fuzz
from rapidfuzz.distance import JaroWinkler

from ledgersort.models.patterns import Pattern, PatternType
from ledgersort.models.records import Signature, TransactionRecord
from ledgersort.models.results import MatchItem, MatchResult

logger = logging.getLogger(__name__)

# Partial matches never reach an exact match's score
MAX_PARTIAL_SCORE = 0.95
PERFORMANCE_THRESHOLD_MS = 10.0
MAX_KEYWORDS = 5

PROCESSOR_PREFIX = re.compile(r"^(paypal|sq|square|tst|pos|ccd|sp|dd)\s*\*\s*")
STORE_NUMBER = re.compile(r"\s*#\s*\d+")
TRAILING_DIGITS = re.compile(r"\s+\d{4,}$")
NON_WORD = re.compile(r"[^\w\s]")

COMPANY_SUFFIXES = [
    ' inc', ' inc.', ' llc', ' ltd', ' ltd.', ' limited',
    ' corp', ' corp.', ' corporation', ' co', ' co.',
    ' gmbh', ' ag', ' plc', ' pty', ' sa', ' nv', ' bv',
    '.com', '.io', '.co', '.org', '.net'
]

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to",
    "for", "of", "with", "from", "by", "purchase", "payment", "card",
})


def normalize(text: Optional[str]) -> str:
    """
    Normalize merchant/description text for comparison.

    Examples:
        "AMAZON.COM"              -> "amazon"
        "SQ *Blue Bottle Coffee"  -> "blue bottle coffee"
        "Starbucks #1234"         -> "starbucks"
        "Café Olé"                -> "cafe ole"
    """
    if not text:
        return ""

    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    normalized = folded.lower().strip()

    normalized = PROCESSOR_PREFIX.sub("", normalized)
    normalized = STORE_NUMBER.sub("", normalized)
    normalized = TRAILING_DIGITS.sub("", normalized)

    for suffix in COMPANY_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[:-len(suffix)]

    normalized = NON_WORD.sub(" ", normalized)
    return " ".join(normalized.split())


def extract_keywords(text: Optional[str], limit: int = MAX_KEYWORDS) -> List[str]:
    """Significant words of a description, in order of appearance."""
    if not text:
        return []
    keywords: List[str] = []
    for word in normalize(text).split():
        if len(word) < 3 or word in STOP_WORDS or word.isdigit():
            continue
        if word not in keywords:
            keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def amount_bucket(amount: Optional[float]) -> Optional[int]:
    """Power-of-two bucket of an amount; bucket k holds [2**(k-1), 2**k)."""
    if amount is None:
        return None
    return int(abs(amount)).bit_length()


def signature_for(record: TransactionRecord) -> Signature:
    """Derive the lookup signature of a record."""
    keywords: FrozenSet[str] = frozenset(extract_keywords(record.description))
    return Signature(
        merchant_token=normalize(record.merchant_name),
        keywords=keywords,
        amount_bucket=amount_bucket(record.amount),
        hour=record.hour,
    )


def _containment_score(shorter: str, longer: str) -> float:
    if not shorter or shorter not in longer:
        return 0.0
    ratio = len(shorter) / len(longer)
    if shorter in longer.split() or longer.startswith(shorter + " "):
        return 0.75 + 0.2 * ratio
    if len(shorter) < 3:
        return 0.0
    return 0.65 + 0.25 * ratio


class FuzzyMatcher:
    """
    Scores textual similarity between record text and pattern values.

    Similarity is the best of three views of the normalized strings:
    character-level (edit distance blended with Jaro-Winkler), token overlap
    and containment. Only exact normalized equality scores 1.0.
    """

    def __init__(
        self,
        min_confidence: float = 0.6,
        max_results: int = 5,
        cache_size: int = 4096,
    ) -> None:
        self.min_confidence = min_confidence
        self.max_results = max_results
        self._similarity = lru_cache(maxsize=cache_size)(self._compute_similarity)
        self._lock = threading.Lock()
        self._match_calls = 0
        self._total_time_ms = 0.0

    def calculate_similarity(self, text1: Optional[str], text2: Optional[str]) -> float:
        """
        Calculate similarity between two strings.

        Returns:
            float: Similarity score 0.0 to 1.0
        """
        norm1 = normalize(text1)
        norm2 = normalize(text2)
        if not norm1 or not norm2:
            return 0.0
        # Symmetric key so (a, b) and (b, a) share a memo entry
        if norm2 < norm1:
            norm1, norm2 = norm2, norm1
        return self._similarity(norm1, norm2)

    @staticmethod
    def _compute_similarity(norm1: str, norm2: str) -> float:
        if norm1 == norm2:
            return 1.0

        character = 0.5 * (fuzz.ratio(norm1, norm2) / 100.0) + 0.5 * JaroWinkler.normalized_similarity(norm1, norm2)
        overlap = 0.9 * fuzz.token_set_ratio(norm1, norm2) / 100.0

        shorter, longer = sorted((norm1, norm2), key=len)
        containment = _containment_score(shorter, longer)

        score = max(character, overlap, containment)
        return round(min(MAX_PARTIAL_SCORE, max(0.0, score)), 6)

    def match_pattern(
        self,
        text: Optional[str],
        patterns: Sequence[Pattern],
        min_confidence: Optional[float] = None,
        max_results: Optional[int] = None,
    ) -> MatchResult:
        """
        Score ``text`` against each pattern's value.

        Args:
            text: Merchant name or description to match
            patterns: Candidate patterns (not modified)
            min_confidence: Minimum similarity to keep a match
            max_results: Maximum number of matches returned

        Returns:
            MatchResult sorted by score, ties kept in input order
        """
        if not text or not patterns:
            return MatchResult.empty(text or "")

        min_confidence = self.min_confidence if min_confidence is None else min_confidence
        max_results = self.max_results if max_results is None else max_results

        start = time.perf_counter()
        scored = []
        for pattern in patterns:
            score = self.calculate_similarity(text, pattern.value)
            if score >= min_confidence and score > 0.0:
                scored.append(MatchItem(pattern_id=pattern.id, score=score))

        # sorted() is stable, so equal scores keep insertion order
        scored = sorted(scored, key=lambda item: -item.score)[:max_results]

        duration_ms = (time.perf_counter() - start) * 1000
        with self._lock:
            self._match_calls += 1
            self._total_time_ms += duration_ms
        if duration_ms > PERFORMANCE_THRESHOLD_MS:
            logger.warning("Slow fuzzy match: %.2fms over %d patterns", duration_ms, len(patterns))

        return MatchResult(matches=tuple(scored), query_text=text)

    def score_record(self, record: TransactionRecord, pattern: Pattern) -> float:
        """
        Score a record against one pattern.

        Merchant patterns read the merchant name and keyword patterns the
        description, each falling back to the other field. Amount and time
        patterns match structurally: 1.0 when the record falls inside the
        range or window, else 0.0.
        """
        if pattern.pattern_type == PatternType.AMOUNT_RANGE:
            return 1.0 if pattern.covers_amount(record.amount) else 0.0
        if pattern.pattern_type == PatternType.TIME:
            return 1.0 if pattern.covers_hour(record.hour) else 0.0
        if pattern.pattern_type == PatternType.MERCHANT:
            text = record.merchant_name or record.description
        else:
            text = record.description or record.merchant_name
        return self.calculate_similarity(text, pattern.value)

    def clear_cache(self) -> None:
        self._similarity.cache_clear()
        logger.debug("Fuzzy matcher cache cleared")

    def reset(self) -> None:
        self.clear_cache()
        with self._lock:
            self._match_calls = 0
            self._total_time_ms = 0.0

    def metrics(self) -> dict:
        info = self._similarity.cache_info()
        with self._lock:
            calls = self._match_calls
            total = self._total_time_ms
        lookups = info.hits + info.misses
        return {
            "match_calls": calls,
            "avg_match_ms": round(total / calls, 3) if calls else 0.0,
            "similarity_cache_size": info.currsize,
            "similarity_cache_hit_rate": round(info.hits / lookups * 100, 2) if lookups else 0.0,
        }
