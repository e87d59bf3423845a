"""
Connection helper for the pattern store and correction audit trail.

SQLite by default; Postgres when DATABASE_URL is set and psycopg is
installed. SQL is written with ``?`` placeholders and rewritten for
Postgres before execution.
"""
from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from ledgersort.services.errors import DependencyUnavailableError

try:
    import psycopg  # type: ignore
except ImportError:  # pragma: no cover
    psycopg = None

logger = logging.getLogger(__name__)

SQLITE_TIMEOUT_SECONDS = 10


def _rows_as_dicts(cursor) -> List[dict]:
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class DB:
    def __init__(self, sqlite_path: str = "ledgersort.sqlite3", dsn: Optional[str] = None) -> None:
        self.dsn = dsn if dsn is not None else os.getenv("DATABASE_URL")
        self.sqlite_path = sqlite_path
        self.use_postgres = bool(self.dsn and psycopg)

    @property
    def backend(self) -> str:
        return "postgres" if self.use_postgres else "sqlite"

    @contextmanager
    def connect(self):
        try:
            if self.use_postgres:
                conn = psycopg.connect(self.dsn)  # type: ignore
            else:
                conn = sqlite3.connect(self.sqlite_path, timeout=SQLITE_TIMEOUT_SECONDS)
        except Exception as e:
            raise DependencyUnavailableError(self.backend, str(e)) from e
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Yield a cursor; commit on success, roll back if the block raises."""
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                yield _Cursor(cur, self)
                conn.commit()
            except Exception:
                conn.rollback()
                logger.debug("Rolled back %s transaction", self.backend)
                raise

    def _run(self, sql: str, params: Sequence[Any], read: Optional[Callable[[Any], Any]] = None) -> Any:
        """Execute one statement on its own connection; ``read`` consumes the cursor."""
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare(sql), tuple(params))
            if read is None:
                conn.commit()
                return None
            return read(cur)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self._run(sql, params)

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple]:
        return self._run(sql, params, lambda cur: cur.fetchall())

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Tuple]:
        return self._run(sql, params, lambda cur: cur.fetchone())

    def fetchall_dict(self, sql: str, params: Sequence[Any] = ()) -> List[dict]:
        return self._run(sql, params, _rows_as_dicts)

    def fetchone_dict(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        rows = self.fetchall_dict(sql, params)
        return rows[0] if rows else None

    def same_database(self, other: "DB") -> bool:
        """Whether ``other`` points at the database this helper uses."""
        if self.backend != other.backend:
            return False
        if self.use_postgres:
            return self.dsn == other.dsn
        return os.path.abspath(self.sqlite_path) == os.path.abspath(other.sqlite_path)

    def _prepare(self, sql: str) -> str:
        if self.use_postgres:
            return sql.replace("?", "%s")
        return sql


class _Cursor:
    """Transaction cursor that rewrites placeholders like ``DB`` does."""

    def __init__(self, cursor, db: DB) -> None:
        self._cursor = cursor
        self._db = db

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self._cursor.execute(self._db._prepare(sql), tuple(params))

    def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        self._cursor.executemany(self._db._prepare(sql), [tuple(row) for row in rows])

    @property
    def db(self) -> DB:
        return self._db
