"""
Transactional memory store over SQLite.

Batch operations stage inserts and updates on a StoreTransaction and write
them in one flush, so a rollback leaves the table untouched.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

import numpy as np

from .config import DB_PATH
from .db import connect, get_db, init_db
from .schema import MemoryRecord, MemoryType

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"
EMBEDDING_DTYPE = np.float32

_COLUMNS = (
    "id, project_id, content, embedding, embedding_dim, type, metadata, "
    "created, last_accessed, is_deprecated, is_deleted, deleted_at"
)


class StoreError(Exception):
    """Raised when the underlying database rejects a transactional operation."""
    pass


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so that string ordering matches time ordering."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def encode_embedding(embedding: Optional[List[float]]):
    if embedding is None:
        return None, None
    with np.errstate(over="ignore"):
        vector = np.asarray(embedding, dtype=EMBEDDING_DTYPE)
    if not np.isfinite(vector).all():
        raise ValueError("Embedding contains values that are not finite as 32-bit floats")
    return vector.tobytes(), int(vector.shape[0])


def decode_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(float).tolist()


def _record_to_row(record: MemoryRecord) -> tuple:
    blob, dimension = encode_embedding(record.embedding)
    return (
        record.id,
        record.project_id,
        record.content,
        blob,
        dimension,
        record.type.value,
        json.dumps(record.metadata),
        to_db_timestamp(record.created),
        to_db_timestamp(record.last_accessed),
        bool(record.is_deprecated),
        bool(record.is_deleted),
        to_db_timestamp(record.deleted_at),
    )


def _row_to_record(row: sqlite3.Row) -> MemoryRecord:
    return MemoryRecord(
        id=row["id"],
        project_id=row["project_id"],
        content=row["content"],
        embedding=decode_embedding(row["embedding"]),
        type=MemoryType(row["type"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        created=from_db_timestamp(row["created"]),
        last_accessed=from_db_timestamp(row["last_accessed"]),
        is_deprecated=bool(row["is_deprecated"]),
        is_deleted=bool(row["is_deleted"]),
        deleted_at=from_db_timestamp(row["deleted_at"]),
    )


def _metadata_matches(metadata: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    for key, value in filters.items():
        if key not in metadata or metadata[key] != value:
            return False
    return True


class StoreTransaction:
    """One unit of work on a dedicated connection.

    Inserts and updates are staged in memory and written by flush(); reads
    flush first so staged changes are visible before commit.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._pending_inserts: List[MemoryRecord] = []
        self._pending_updates: Dict[str, MemoryRecord] = {}

    @property
    def active(self) -> bool:
        return self._conn is not None

    def _require_active(self):
        if self._conn is None:
            raise StoreError("Transaction is no longer active")

    def add(self, record: MemoryRecord) -> None:
        """Stage a new record for insertion."""
        self._require_active()
        self._pending_inserts.append(record)

    def add_all(self, records: Iterable[MemoryRecord]) -> None:
        for record in records:
            self.add(record)

    def save(self, record: MemoryRecord) -> None:
        """Stage an update of an existing record."""
        self._require_active()
        self._pending_updates[record.id] = record

    def flush(self) -> None:
        """Write staged inserts and updates inside the open transaction."""
        self._require_active()
        if not self._pending_inserts and not self._pending_updates:
            return

        try:
            cursor = self._conn.cursor()
            if self._pending_inserts:
                cursor.executemany(
                    f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [_record_to_row(record) for record in self._pending_inserts]
                )
            if self._pending_updates:
                cursor.executemany(
                    "UPDATE memories SET project_id = ?, content = ?, embedding = ?, embedding_dim = ?, "
                    "type = ?, metadata = ?, created = ?, last_accessed = ?, is_deprecated = ?, "
                    "is_deleted = ?, deleted_at = ? WHERE id = ?",
                    [_record_to_row(record)[1:] + (record.id,) for record in self._pending_updates.values()]
                )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to flush staged changes: {e}") from e

        self._pending_inserts.clear()
        self._pending_updates.clear()

    def fetch_by_ids(self, ids: Iterable[str]) -> Dict[str, MemoryRecord]:
        """Load live (non-deleted) records for the given ids in a single query."""
        self.flush()
        id_list = list(ids)
        if not id_list:
            return {}

        placeholders = ", ".join("?" for _ in id_list)
        cursor = self._conn.cursor()
        cursor.execute(
            f"SELECT {_COLUMNS} FROM memories WHERE is_deleted = 0 AND id IN ({placeholders})",
            id_list
        )
        return {row["id"]: _row_to_record(row) for row in cursor.fetchall()}

    def find(self, criteria) -> List[MemoryRecord]:
        """Select live records matching deprecation criteria, oldest first, up to max_count."""
        self.flush()
        clauses = ["is_deleted = 0"]
        params: List[Any] = []

        if criteria.project_id:
            clauses.append("project_id = ?")
            params.append(criteria.project_id)

        if criteria.type is not None:
            clauses.append("type = ?")
            params.append(MemoryType(criteria.type).value)

        if criteria.created_before is not None:
            clauses.append("created < ?")
            params.append(to_db_timestamp(criteria.created_before))

        if criteria.last_accessed_before is not None:
            clauses.append("last_accessed < ?")
            params.append(to_db_timestamp(criteria.last_accessed_before))

        if not criteria.include_already_deprecated:
            clauses.append("is_deprecated = 0")

        cursor = self._conn.cursor()
        cursor.execute(
            f"SELECT {_COLUMNS} FROM memories WHERE {' AND '.join(clauses)} ORDER BY created, id",
            params
        )

        # Metadata equality is checked on decoded JSON so values compare by type
        matches: List[MemoryRecord] = []
        for row in cursor:
            if len(matches) >= criteria.max_count:
                break
            record = _row_to_record(row)
            if _metadata_matches(record.metadata, criteria.metadata_filters):
                matches.append(record)
        return matches

    def commit(self) -> None:
        self.flush()
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to commit transaction: {e}") from e
        self._close()

    def rollback(self) -> None:
        """Discard staged and flushed changes. Safe to call more than once."""
        if self._conn is None:
            return
        self._pending_inserts.clear()
        self._pending_updates.clear()
        try:
            self._conn.rollback()
        finally:
            self._close()

    def _close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class MemoryStore:
    """SQLite-backed store handing out explicit transactions."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH
        init_db(self.db_path)

    def begin(self) -> StoreTransaction:
        """Open a connection and start an immediate (write-locking) transaction."""
        conn = connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            raise StoreError(f"Failed to begin transaction: {e}") from e
        return StoreTransaction(conn)

    @contextmanager
    def transaction(self) -> Generator[StoreTransaction, None, None]:
        tx = self.begin()
        try:
            yield tx
            tx.commit()
        except Exception:
            tx.rollback()
            raise

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Get a record by id, including deprecated and deleted ones."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,))
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def count(self, project_id: Optional[str] = None, include_deprecated: bool = True) -> int:
        """Count live records, optionally scoped to a project."""
        clauses = ["is_deleted = 0"]
        params: List[Any] = []
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if not include_deprecated:
            clauses.append("is_deprecated = 0")

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM memories WHERE {' AND '.join(clauses)}", params)
            return cursor.fetchone()[0]
