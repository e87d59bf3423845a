"""
LedgerSort Correction Audit

Append-only trail of user corrections. One event is appended per learning
call, inside the same unit of work as the pattern mutations: if the append
fails, the correction is rolled back.
"""
import hashlib
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ledgersort.services.db import DB
from ledgersort.services.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class CorrectionEvent:
    """Immutable record of one correction."""
    record_id: str
    correct_category_id: str
    predicted_category_id: Optional[str] = None
    patterns_created: List[str] = field(default_factory=list)
    patterns_affected: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    checksum: str = ""

    def __post_init__(self):
        if not self.checksum:
            self.checksum = self._calculate_checksum()

    def _calculate_checksum(self) -> str:
        data = {
            "id": self.id,
            "timestamp": self.timestamp,
            "record_id": self.record_id,
            "correct_category_id": self.correct_category_id,
            "predicted_category_id": self.predicted_category_id,
            "patterns_created": self.patterns_created,
            "patterns_affected": self.patterns_affected,
        }
        return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()

    def verify(self) -> bool:
        """Verify entry hasn't been tampered with."""
        return self.checksum == self._calculate_checksum()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventSink(ABC):
    """Append-only consumer of correction events."""

    @abstractmethod
    def append(self, event: CorrectionEvent, transaction: Any = None) -> None:
        """
        Persist ``event``; raise to abort the correction.

        ``transaction`` is the pattern store's open transaction, if it has
        one. Sinks that share the store's database write through it.
        """

    def count(self) -> int:
        return len(self.events())

    @abstractmethod
    def events(self, limit: Optional[int] = None) -> List[CorrectionEvent]:
        """Events in append order."""


class InMemoryEventSink(EventSink):
    def __init__(self) -> None:
        self._events: List[CorrectionEvent] = []
        self._lock = threading.Lock()

    def append(self, event: CorrectionEvent, transaction: Any = None) -> None:
        with self._lock:
            self._events.append(event)

    def events(self, limit: Optional[int] = None) -> List[CorrectionEvent]:
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit else events


INSERT_EVENT_SQL = """
    INSERT INTO ls_correction_events (
        id, timestamp, record_id, correct_category_id, predicted_category_id,
        patterns_created, patterns_affected, checksum
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


class SQLiteEventSink(EventSink):
    """Event sink backed by the shared DB helper."""

    def __init__(self, db_path: str = "ledgersort.sqlite3", db: Optional[DB] = None) -> None:
        self.db = db or DB(sqlite_path=db_path)
        self._ensure_table()

    def _ensure_table(self) -> None:
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS ls_correction_events (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                record_id TEXT NOT NULL,
                correct_category_id TEXT NOT NULL,
                predicted_category_id TEXT,
                patterns_created TEXT,
                patterns_affected TEXT,
                checksum TEXT NOT NULL
            )
            """
        )

    def append(self, event: CorrectionEvent, transaction: Any = None) -> None:
        params = (
            event.id,
            event.timestamp,
            event.record_id,
            event.correct_category_id,
            event.predicted_category_id,
            json.dumps(event.patterns_created),
            json.dumps(event.patterns_affected),
            event.checksum,
        )
        try:
            # A second connection would wait on the store's write lock
            if transaction is not None and transaction.db.same_database(self.db):
                transaction.execute(INSERT_EVENT_SQL, params)
            else:
                self.db.execute(INSERT_EVENT_SQL, params)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("append correction event", str(e)) from e

    def events(self, limit: Optional[int] = None) -> List[CorrectionEvent]:
        rows = self.db.fetchall(
            """
            SELECT id, timestamp, record_id, correct_category_id, predicted_category_id,
                   patterns_created, patterns_affected, checksum
            FROM ls_correction_events ORDER BY timestamp
            """
        )
        events = [
            CorrectionEvent(
                id=row[0],
                timestamp=row[1],
                record_id=row[2],
                correct_category_id=row[3],
                predicted_category_id=row[4],
                patterns_created=json.loads(row[5] or "[]"),
                patterns_affected=json.loads(row[6] or "[]"),
                checksum=row[7],
            )
            for row in rows
        ]
        return events[-limit:] if limit else events
