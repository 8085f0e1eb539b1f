"""
Storage Backend Module

Provides the abstract record store the ledger is written against, plus an
in-memory implementation (tests, demos) and a SQLite implementation
(persistence). Records are JSON documents keyed by id; monetary values are
stored as Decimal strings.

Both backends implement a real unit of work: every write made between
begin_transaction() and commit() is undone by rollback(). Sequences used for
human-readable codes are allocated outside the unit of work, so a rolled
back unit leaves a gap instead of reusing a number.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Detached JSON copy so callers never share state with the store"""
    return json.loads(json.dumps(data, default=str))


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, or None"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Allocate the next value of a named counter, starting at 1"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def begin_transaction(self) -> None:
        """Start a unit of work (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current unit of work (default no-op)"""
        pass

    def rollback(self) -> None:
        """Undo every write of the current unit of work (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage with per-thread undo journals.

    Each thread that opens a unit of work gets its own journal of the values
    it overwrote, so units running on different threads (payments against
    different loans) proceed in parallel and roll back independently.
    Callers are responsible for not touching the same record from two
    concurrent units; the ledger guarantees that with per-loan locks.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    @property
    def _journal(self) -> Optional[List[Tuple[str, str, Optional[Dict[str, Any]]]]]:
        return getattr(self._local, "journal", None)

    def _remember(self, table: str, record_id: str) -> None:
        """Journal the current value of a record before it is overwritten"""
        journal = self._journal
        if journal is not None:
            journal.append((table, record_id, self._ensure_table(table).get(record_id)))

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._remember(table, record_id)
            self._ensure_table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            return _copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(record) for record in self._ensure_table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            records = self._ensure_table(table)
            if record_id not in records:
                return False
            self._remember(table, record_id)
            del records[record_id]
            return True

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._ensure_table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                _copy(record) for record in self._ensure_table(table).values()
                if all(record.get(key) == value for key, value in filters.items())
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._ensure_table(table))

    def next_sequence(self, name: str) -> int:
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value

    def begin_transaction(self) -> None:
        if self._journal is None:
            self._local.journal = []
            self._local.depth = 0
        self._local.depth += 1

    def commit(self) -> None:
        if self._journal is None:
            return
        self._local.depth -= 1
        if self._local.depth == 0:
            self._local.journal = None

    def rollback(self) -> None:
        journal = self._journal
        if journal is None:
            return
        # Clear first so the restores below are not journaled themselves
        self._local.journal = None
        self._local.depth = 0
        with self._lock:
            for table, record_id, previous in reversed(journal):
                records = self._ensure_table(table)
                if previous is None:
                    records.pop(record_id, None)
                else:
                    records[record_id] = previous

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    One connection is shared by all threads, so a unit of work holds the
    storage lock from begin_transaction() until commit() or rollback();
    units are serialized and plain reads wait for the open unit to finish.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level='DEFERRED'
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: set = set()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS _sequences (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            self._connection.commit()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _commit_unless_in_transaction(self) -> None:
        if not self.in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._commit_unless_in_transaction()
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=str), record_id, now, now))
            self._commit_unless_in_transaction()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY created_at"
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"DELETE FROM {table} WHERE id = ?", (record_id,)
            )
            self._commit_unless_in_transaction()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [
            record for record in self.load_all(table)
            if all(record.get(key) == value for key, value in filters.items())
        ]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {table}"
            ).fetchone()
            return row['count']

    def next_sequence(self, name: str) -> int:
        with self._lock:
            self._connection.execute("""
                INSERT INTO _sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (name,))
            row = self._connection.execute(
                "SELECT value FROM _sequences WHERE name = ?", (name,)
            ).fetchone()
            self._commit_unless_in_transaction()
            return row['value']

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        if not self.in_transaction:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        if not self.in_transaction:
            return
        releases = self._depth
        self._depth = 0
        try:
            self._connection.rollback()
            # Tables created inside the unit are gone again
            self._tables.clear()
        finally:
            for _ in range(releases):
                self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported: "memory://", "sqlite:///relative.db", "sqlite:////abs/path.db"
    and "sqlite://" (in-memory SQLite).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    if database_url == "sqlite://":
        return SQLiteStorage(":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
