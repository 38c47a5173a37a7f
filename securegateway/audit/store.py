"""
Durable storage for audit entries
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Union

from ..errors import PersistenceFailure
from .models import COLUMNS, AuditLogEntry, AuditQuery

logger = logging.getLogger(__name__)


class AuditStore(ABC):
    """Append-only store; a batch is written entirely or not at all"""

    @abstractmethod
    def insert_batch(self, entries: List[AuditLogEntry]) -> None:
        """Persist a batch, raising PersistenceFailure if nothing was written"""
        pass

    @abstractmethod
    def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        pass

    def close(self) -> None:
        pass


class MemoryAuditStore(AuditStore):
    """In-process store used when no database path is configured"""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []
        self._lock = threading.Lock()

    def insert_batch(self, entries: List[AuditLogEntry]) -> None:
        with self._lock:
            self.entries.extend(entries)

    def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        with self._lock:
            snapshot = list(self.entries)
        return query.apply(snapshot)


class SQLiteAuditStore(AuditStore):
    """Audit table in a SQLite database file"""

    def __init__(self, database_path: Union[str, Path]):
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite database connection."""
        conn = sqlite3.connect(self.database_path)
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the audit table and its indexes."""
        with self.get_db() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    caller_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    resource TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    security_level TEXT NOT NULL,
                    threat_score REAL DEFAULT 0,
                    metadata TEXT,          -- opaque JSON
                    network_origin TEXT,
                    user_agent TEXT,
                    session_id TEXT
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_caller_ts ON audit_logs(caller_id, timestamp DESC)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_logs(action)')
            conn.commit()

    def insert_batch(self, entries: List[AuditLogEntry]) -> None:
        placeholders = ", ".join("?" for _ in COLUMNS)
        try:
            with self.get_db() as conn:
                # One transaction per batch: commit on success, roll back on any error
                with conn:
                    conn.executemany(
                        f"INSERT INTO audit_logs ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                        [entry.to_row() for entry in entries],
                    )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to write {len(entries)} audit entries: {e}") from e

    def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        clauses, params = [], []
        for column, value in (
            ("caller_id", query.caller_id),
            ("action", query.action),
            ("resource", query.resource),
            ("security_level", query.security_level.value if query.security_level else None),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            with self.get_db() as conn:
                rows = conn.execute(f"SELECT {', '.join(COLUMNS)} FROM audit_logs {where}", params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to read audit entries: {e}") from e

        # Time range and paging are applied on parsed timestamps
        return query.apply([AuditLogEntry.from_row(row) for row in rows])
