"""
Document Storage Module

Abstract document-store interface with an in-memory backend (testing) and a
SQLite backend (persistence). Records are JSON documents keyed by id inside
named collections; monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from pathlib import Path
from contextlib import contextmanager
import copy
import json
import sqlite3
import threading


def _json_default(value: Any) -> str:
    """Serialize values json does not know natively"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Check every filter key for exact equality"""
    return all(key in document and document[key] == value for key, value in filters.items())


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def touch(self) -> None:
        """Refresh the modification timestamp"""
        self.updated_at = datetime.now(timezone.utc)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, collection: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a document"""

    @abstractmethod
    def load(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a document by id"""

    @abstractmethod
    def load_all(self, collection: str) -> List[Dict[str, Any]]:
        """Load every document of a collection in insertion order"""

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Delete a document, returning whether it existed"""

    @abstractmethod
    def find(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find documents whose fields equal all filter values"""

    @abstractmethod
    def count(self, collection: str) -> int:
        """Count documents in a collection"""

    @abstractmethod
    def close(self) -> None:
        """Release backend resources"""

    def exists(self, collection: str, record_id: str) -> bool:
        """Check if a document exists"""
        return self.load(collection, record_id) is not None

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def save(self, collection: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Round-trip through JSON so callers never share mutable state
            self._collection(collection)[record_id] = json.loads(json.dumps(data, default=_json_default))

    def load(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collection(collection).get(record_id)
            return copy.deepcopy(document) if document is not None else None

    def load_all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._collection(collection).values()]

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._collection(collection).pop(record_id, None) is not None

    def find(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(doc) for doc in self._collection(collection).values()
                if _matches(doc, filters)
            ]

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collection(collection))

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._snapshot is None:
            self._snapshot = copy.deepcopy(self._data)

    def commit(self) -> None:
        self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, collection: str) -> None:
        """Ensure the collection table exists"""
        if collection in self._known_tables:
            return
        if not collection.replace('_', '').isalnum():
            raise ValueError(f"Invalid collection name: {collection}")
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {collection} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{collection}_created_at
            ON {collection}(created_at)
        """)
        if not self._in_transaction:
            self._connection.commit()
        self._known_tables.add(collection)

    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def save(self, collection: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(collection)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {collection} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {collection} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=_json_default), record_id, now, now))
            self._maybe_commit()

    def load(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(collection)
            row = self._connection.execute(
                f"SELECT data FROM {collection} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(collection)
            cursor = self._connection.execute(
                f"SELECT data FROM {collection} ORDER BY created_at, rowid"
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(collection)
            cursor = self._connection.execute(
                f"DELETE FROM {collection} WHERE id = ?", (record_id,)
            )
            self._maybe_commit()
            return cursor.rowcount > 0

    def find(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find documents (simple JSON key matching)"""
        return [doc for doc in self.load_all(collection) if _matches(doc, filters)]

    def count(self, collection: str) -> int:
        with self._lock:
            self._ensure_table(collection)
            row = self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {collection}"
            ).fetchone()
            return row['count']

    def begin_transaction(self) -> None:
        self._lock.acquire()
        # SQLite with isolation_level='DEFERRED' opens the transaction on first write
        self._in_transaction = True

    def commit(self) -> None:
        try:
            self._connection.commit()
        finally:
            self._in_transaction = False
            self._lock.release()

    def rollback(self) -> None:
        try:
            self._connection.rollback()
        finally:
            self._in_transaction = False
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_path: str, in_memory: bool = False) -> StorageInterface:
    """Build the configured storage backend"""
    if in_memory:
        return InMemoryStorage()
    return SQLiteStorage(database_path)
