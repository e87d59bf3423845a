"""
Pattern repositories for learned categorization patterns.

The engine reads and writes patterns only through ``PatternRepository``.
Two implementations ship with the package: an in-memory store (tests, demos,
single-process use) and a SQL store built on the shared DB helper.

Writes from the learner go through a ``UnitOfWork``: mutated copies are
staged, and on commit they are applied together with the correction's audit
event. A failure anywhere discards everything staged.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ledgersort.models.patterns import Pattern, PatternType
from ledgersort.models.records import Signature
from ledgersort.services.audit import CorrectionEvent, EventSink
from ledgersort.services.db import DB
from ledgersort.services.errors import LedgerSortError, PersistenceError
from ledgersort.services.fuzzy_matching import normalize

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("LEDGERSORT_DB_PATH", os.path.join(os.getcwd(), "ledgersort.sqlite3"))

# Leading characters of a word used as its index key, so near spellings
# ("amazn", "amazon") land in the same bucket
INDEX_PREFIX = 4


def index_keys(text: str) -> Set[str]:
    return {word[:INDEX_PREFIX] for word in normalize(text).split() if word}


def signature_index_keys(signature: Signature) -> Set[str]:
    keys: Set[str] = set()
    for token in signature.tokens:
        keys.update(word[:INDEX_PREFIX] for word in token.split() if word)
    return keys


def matches_signature(pattern: Pattern, signature: Signature) -> bool:
    """Whether ``pattern`` is a plausible candidate for records with ``signature``."""
    if pattern.pattern_type == PatternType.AMOUNT_RANGE:
        bounds = pattern.amount_range()
        span = signature.amount_bounds
        if bounds is None or span is None:
            return False
        return bounds[0] < span[1] and bounds[1] >= span[0]
    if pattern.pattern_type == PatternType.TIME:
        return pattern.covers_hour(signature.hour)
    keys = signature_index_keys(signature)
    return bool(keys) and bool(index_keys(pattern.value) & keys)


class UnitOfWork:
    """
    Staging area for one atomic batch of pattern writes.

    Reads see staged copies first, then the store. Leaving the ``with`` block
    normally commits; an exception rolls back and propagates.
    """

    def __init__(self, store: "PatternRepository", event_sink: Optional[EventSink] = None) -> None:
        self._store = store
        self._sink = event_sink
        self._staged: Dict[str, Pattern] = {}
        self._events: List[CorrectionEvent] = []
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False
        if not self.committed:
            self.commit()
        return False

    @property
    def staged(self) -> List[Pattern]:
        return list(self._staged.values())

    def get(self, pattern_id: str) -> Optional[Pattern]:
        if pattern_id in self._staged:
            return self._staged[pattern_id]
        return self._store.get(pattern_id)

    def find(self, pattern_type: PatternType, value: str, category_id: str) -> Optional[Pattern]:
        key = (PatternType(pattern_type).value, value, category_id)
        for pattern in self._staged.values():
            if pattern.active and pattern.key == key:
                return pattern
        found = self._store.find(pattern_type, value, category_id)
        if found is not None and found.id in self._staged:
            staged = self._staged[found.id]
            return staged if staged.active else None
        return found

    def find_active_patterns(self, signature: Signature) -> List[Pattern]:
        patterns = []
        seen = set()
        for pattern in self._store.find_active_patterns(signature):
            current = self._staged.get(pattern.id, pattern)
            seen.add(pattern.id)
            if current.active:
                patterns.append(current)
        for pattern in self._staged.values():
            if pattern.id not in seen and pattern.active and matches_signature(pattern, signature):
                patterns.append(pattern)
        return patterns

    def list_all(self) -> List[Pattern]:
        patterns = [self._staged.get(p.id, p) for p in self._store.list_all()]
        known = {p.id for p in patterns}
        patterns.extend(p for p in self._staged.values() if p.id not in known)
        return patterns

    def stage(self, pattern: Pattern) -> Pattern:
        self._staged[pattern.id] = pattern
        return pattern

    def record_event(self, event: CorrectionEvent) -> None:
        self._events.append(event)

    def commit(self) -> None:
        if self.committed:
            return
        self._store._apply(self.staged, self._publish_events)
        self.committed = True
        logger.debug("Committed %d pattern(s), %d event(s)", len(self._staged), len(self._events))

    def rollback(self) -> None:
        if self._staged or self._events:
            logger.debug("Rolled back %d staged pattern(s)", len(self._staged))
        self._staged.clear()
        self._events.clear()

    def _publish_events(self, transaction: Any = None) -> None:
        if self._sink is None:
            return
        for event in self._events:
            self._sink.append(event, transaction)


class PatternRepository(ABC):
    """Source of truth for patterns. Every read returns copies."""

    @abstractmethod
    def find_active_patterns(self, signature: Signature) -> List[Pattern]:
        """Active patterns that may match records with ``signature``."""

    @abstractmethod
    def get(self, pattern_id: str) -> Optional[Pattern]:
        """Pattern by id, active or not."""

    @abstractmethod
    def find(self, pattern_type: PatternType, value: str, category_id: str) -> Optional[Pattern]:
        """Active pattern with exactly this type, value and category."""

    @abstractmethod
    def persist(self, pattern: Pattern) -> Pattern:
        """Insert or replace a single pattern."""

    @abstractmethod
    def list_all(self) -> List[Pattern]:
        """Every pattern, including inactive ones."""

    @abstractmethod
    def _apply(self, patterns: List[Pattern], before_publish: Callable[[Any], None]) -> None:
        """
        Write ``patterns`` atomically.

        ``before_publish`` receives the open transaction (or None) and may
        abort the write by raising.
        """

    def unit_of_work(self, event_sink: Optional[EventSink] = None) -> UnitOfWork:
        return UnitOfWork(self, event_sink)

    def seed(self, patterns: Iterable[Pattern]) -> List[Pattern]:
        return [self.persist(pattern) for pattern in patterns]

    def healthy(self) -> bool:
        return True


class InMemoryPatternStore(PatternRepository):
    """Dict-backed repository guarded by a single lock."""

    def __init__(self, patterns: Optional[Iterable[Pattern]] = None) -> None:
        self._patterns: Dict[str, Pattern] = {}
        self._lock = threading.RLock()
        for pattern in patterns or []:
            self.persist(pattern)

    def find_active_patterns(self, signature: Signature) -> List[Pattern]:
        with self._lock:
            return [
                pattern.copy()
                for pattern in self._patterns.values()
                if pattern.active and matches_signature(pattern, signature)
            ]

    def get(self, pattern_id: str) -> Optional[Pattern]:
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            return pattern.copy() if pattern else None

    def find(self, pattern_type: PatternType, value: str, category_id: str) -> Optional[Pattern]:
        key = (PatternType(pattern_type).value, value, category_id)
        with self._lock:
            for pattern in self._patterns.values():
                if pattern.active and pattern.key == key:
                    return pattern.copy()
        return None

    def persist(self, pattern: Pattern) -> Pattern:
        with self._lock:
            self._patterns[pattern.id] = pattern.copy()
        return pattern

    def list_all(self) -> List[Pattern]:
        with self._lock:
            return [pattern.copy() for pattern in self._patterns.values()]

    def _apply(self, patterns: List[Pattern], before_publish: Callable[[Any], None]) -> None:
        copies = [pattern.copy() for pattern in patterns]
        with self._lock:
            before_publish(None)
            for pattern in copies:
                self._patterns[pattern.id] = pattern

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)


PATTERN_COLUMNS = (
    "id, category_id, pattern_type, value, confidence_weight, usage_count, success_count, "
    "metadata, active, user_created, last_updated, created_at"
)

UPSERT_SQL = f"""
    INSERT INTO ls_patterns ({PATTERN_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        category_id=excluded.category_id,
        pattern_type=excluded.pattern_type,
        value=excluded.value,
        confidence_weight=excluded.confidence_weight,
        usage_count=excluded.usage_count,
        success_count=excluded.success_count,
        metadata=excluded.metadata,
        active=excluded.active,
        user_created=excluded.user_created,
        last_updated=excluded.last_updated
"""


class SQLitePatternStore(PatternRepository):
    """
    Pattern store on the shared DB helper (SQLite, or Postgres when
    DATABASE_URL is set and psycopg is installed).
    """

    def __init__(self, db_path: str = DB_PATH, db: Optional[DB] = None) -> None:
        self.db = db or DB(sqlite_path=db_path)
        self._write_lock = threading.Lock()
        self._ensure_table()

    def _ensure_table(self) -> None:
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS ls_patterns (
                id TEXT PRIMARY KEY,
                category_id TEXT NOT NULL,
                pattern_type TEXT NOT NULL,
                value TEXT NOT NULL,
                confidence_weight REAL NOT NULL,
                usage_count INTEGER NOT NULL DEFAULT 0,
                success_count INTEGER NOT NULL DEFAULT 0,
                metadata TEXT,
                active INTEGER NOT NULL DEFAULT 1,
                user_created INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT,
                created_at TEXT
            )
            """
        )
        self.db.execute(
            "CREATE INDEX IF NOT EXISTS idx_ls_patterns_lookup ON ls_patterns(pattern_type, value, category_id)"
        )

    @staticmethod
    def _row(pattern: Pattern) -> tuple:
        return (
            pattern.id,
            pattern.category_id,
            pattern.pattern_type.value,
            pattern.value,
            pattern.confidence_weight,
            pattern.usage_count,
            pattern.success_count,
            json.dumps(pattern.metadata, default=str),
            1 if pattern.active else 0,
            1 if pattern.user_created else 0,
            pattern.last_updated.isoformat() if pattern.last_updated else None,
            pattern.created_at.isoformat() if pattern.created_at else None,
        )

    @staticmethod
    def _from_row(row: dict) -> Pattern:
        return Pattern(
            id=row["id"],
            category_id=row["category_id"],
            pattern_type=PatternType(row["pattern_type"]),
            value=row["value"],
            confidence_weight=float(row["confidence_weight"]),
            usage_count=int(row["usage_count"]),
            success_count=int(row["success_count"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            active=bool(row["active"]),
            user_created=bool(row["user_created"]),
            last_updated=datetime.fromisoformat(row["last_updated"]) if row["last_updated"] else None,
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        )

    def find_active_patterns(self, signature: Signature) -> List[Pattern]:
        rows = self.db.fetchall_dict(f"SELECT {PATTERN_COLUMNS} FROM ls_patterns WHERE active = 1")
        patterns = [self._from_row(row) for row in rows]
        return [pattern for pattern in patterns if matches_signature(pattern, signature)]

    def get(self, pattern_id: str) -> Optional[Pattern]:
        row = self.db.fetchone_dict(f"SELECT {PATTERN_COLUMNS} FROM ls_patterns WHERE id = ?", (pattern_id,))
        return self._from_row(row) if row else None

    def find(self, pattern_type: PatternType, value: str, category_id: str) -> Optional[Pattern]:
        row = self.db.fetchone_dict(
            f"""
            SELECT {PATTERN_COLUMNS} FROM ls_patterns
            WHERE pattern_type = ? AND value = ? AND category_id = ? AND active = 1
            ORDER BY usage_count DESC, id
            """,
            (PatternType(pattern_type).value, value, category_id),
        )
        return self._from_row(row) if row else None

    def persist(self, pattern: Pattern) -> Pattern:
        self._apply([pattern], lambda transaction: None)
        return pattern

    def list_all(self) -> List[Pattern]:
        rows = self.db.fetchall_dict(f"SELECT {PATTERN_COLUMNS} FROM ls_patterns ORDER BY created_at, id")
        return [self._from_row(row) for row in rows]

    def _apply(self, patterns: List[Pattern], before_publish: Callable[[Any], None]) -> None:
        try:
            with self._write_lock, self.db.transaction() as cur:
                cur.executemany(UPSERT_SQL, [self._row(pattern) for pattern in patterns])
                before_publish(cur)
        except LedgerSortError:
            raise
        except Exception as e:
            raise PersistenceError("pattern commit", str(e)) from e

    def healthy(self) -> bool:
        try:
            self.db.fetchone("SELECT 1")
        except Exception as e:
            logger.warning("Pattern store health check failed: %s", e)
            return False
        return True
