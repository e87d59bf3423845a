"""
Pattern Cache

Bounded LRU index from a record signature to the active patterns the
repository returns for it. The repository stays the source of truth; the
learner invalidates entries after every committed mutation.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from ledgersort.models.patterns import Pattern
from ledgersort.models.records import Signature, TransactionRecord
from ledgersort.services.fuzzy_matching import signature_for
from ledgersort.services.metrics import MetricsCollector
from ledgersort.services.pattern_store import PatternRepository, matches_signature

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    signature: Signature
    patterns: Tuple[Pattern, ...]


class PatternCache:
    """
    Thread-safe LRU of candidate patterns keyed by ``Signature.cache_key``.

    Repository lookups run outside the lock. Every invalidation bumps a
    version counter, and a lookup that started before an invalidation does
    not store its result.
    """

    def __init__(
        self,
        repository: PatternRepository,
        capacity: int = 1000,
        collector: Optional[MetricsCollector] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.repository = repository
        self.capacity = capacity
        self.collector = collector
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()
        self._version = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stale_skips = 0

    def get_candidates(self, record: TransactionRecord) -> List[Pattern]:
        return self.get_for_signature(signature_for(record))

    def get_for_signature(self, signature: Signature) -> List[Pattern]:
        key = signature.cache_key
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                self._hits += 1
            else:
                self._misses += 1
                version = self._version
        if entry is not None:
            self._count("pattern_cache.hits")
            return list(entry.patterns)

        self._count("pattern_cache.misses")
        patterns = tuple(self.repository.find_active_patterns(signature))

        with self._lock:
            if version == self._version:
                self._entries[key] = _Entry(signature, patterns)
                self._entries.move_to_end(key)
                while len(self._entries) > self.capacity:
                    self._entries.popitem(last=False)
                    self._evictions += 1
            else:
                self._stale_skips += 1
        return list(patterns)

    def warm(self, records: Iterable[TransactionRecord]) -> int:
        """Populate entries for ``records``; returns how many lookups ran."""
        count = 0
        for record in records:
            self.get_candidates(record)
            count += 1
        return count

    def invalidate(self, keys: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            self._version += 1
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def invalidate_patterns(self, patterns: Iterable[Pattern]) -> int:
        """
        Drop every entry that holds one of ``patterns`` or whose signature
        the pattern would now match.
        """
        patterns = list(patterns)
        if not patterns:
            return 0
        ids = {pattern.id for pattern in patterns}
        removed = 0
        with self._lock:
            self._version += 1
            for key in list(self._entries):
                entry = self._entries[key]
                if any(p.id in ids for p in entry.patterns) or any(
                    matches_signature(p, entry.signature) for p in patterns
                ):
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug("Invalidated %d pattern cache entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    def resize(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        with self._lock:
            self.capacity = capacity
            while len(self._entries) > capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._version += 1
            self._entries.clear()

    def reset(self) -> None:
        with self._lock:
            self._version += 1
            self._entries.clear()
            self._hits = self._misses = self._evictions = self._stale_skips = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def _count(self, name: str) -> None:
        if self.collector is not None:
            self.collector.increment(name)

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
                "evictions": self._evictions,
                "stale_skips": self._stale_skips,
            }
