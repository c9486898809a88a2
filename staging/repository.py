"""
Staging repository: idempotent document store of PendingRecords.

One SQLite table per staging collection, one row per normalized identifier,
the record stored as a camelCase JSON document. Operations are document
level only; there are no cross-document transactions.

Precondition: a single reconciliation run writes to a collection at a time.
This is ensured by scheduling, not by a lock here.
"""

import json
import os
import sqlite3
from typing import Any, Iterable, Optional, Protocol

from pydantic import ValidationError

from shared.log import create_logger
from shared_lib.records import PendingRecord
from validation.errors import PersistenceError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Staging")

WRITE_ONCE_FIELDS = ('createdAt',)


class StagingRepository(Protocol):
    """Interface the reconciler and admin operations depend on."""

    def get(self, record_id: str) -> Optional[PendingRecord]: ...

    def upsert(self, record_id: str, fields: dict[str, Any], merge: bool = True) -> PendingRecord: ...

    def delete_many(self, record_ids: Iterable[str]) -> int: ...

    def list_all_ids(self) -> set[str]: ...

    def list_records(self) -> list[PendingRecord]: ...


def merge_document(
    existing: Optional[dict[str, Any]],
    fields: dict[str, Any],
    merge: bool = True,
) -> dict[str, Any]:
    """
    Compute the stored document after an upsert.

    - merge=True: ``fields`` are merged into the existing document; a value
      of None removes the key
    - merge=False: the document is replaced by ``fields`` (None values dropped)
    - write-once fields (createdAt) keep their existing value either way

    Args:
        existing: Current stored document, or None if absent
        fields: Partial camelCase fields to write
        merge: Merge (default) or replace

    Returns:
        New document dict (never aliases ``existing``)
    """
    document = dict(existing) if (existing and merge) else {}
    for key, value in fields.items():
        if key == 'id':
            continue
        if value is None:
            document.pop(key, None)
        else:
            document[key] = value

    if existing:
        for key in WRITE_ONCE_FIELDS:
            if key in existing:
                document[key] = existing[key]
    return document


class SQLiteStagingRepository:
    """
    StagingRepository backed by a SQLite database file.

    Args:
        db_path: Path of the SQLite database (created if missing)
        collection: Table name for this staging collection (identifier,
                    validated by configuration)
    """

    def __init__(self, db_path: str, collection: str = "pending_services"):
        if not collection.replace('_', '').isalnum() or collection[0].isdigit():
            raise ValueError(f"Invalid collection name: {collection!r}")
        self.db_path = db_path
        self.collection = collection

        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {self.collection} ("
            "id TEXT PRIMARY KEY, data TEXT NOT NULL)"
        )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement in its own transaction; returns rowcount."""
        try:
            conn = self._connect()
            try:
                with conn:
                    cursor = conn.execute(sql, params)
                    return cursor.rowcount
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Staging write failed on {self.collection}: {e}") from e

    def _load_document(self, conn: sqlite3.Connection, record_id: str) -> Optional[dict[str, Any]]:
        row = conn.execute(
            f"SELECT data FROM {self.collection} WHERE id = ?", (record_id,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def _to_record(self, record_id: str, document: Any) -> PendingRecord:
        """Validate a stored document; a corrupt one is a PersistenceError for that id."""
        try:
            return PendingRecord.from_document(record_id, document)
        except (ValidationError, TypeError) as e:
            raise PersistenceError(
                f"Stored document for {record_id} in {self.collection} is invalid: {e}"
            ) from e

    def get(self, record_id: str) -> Optional[PendingRecord]:
        """Return the staged record for an id, or None."""
        try:
            conn = self._connect()
            try:
                document = self._load_document(conn, record_id)
            finally:
                conn.close()
        except (sqlite3.Error, json.JSONDecodeError) as e:
            raise PersistenceError(f"Staging read failed for {record_id}: {e}") from e

        if document is None:
            return None
        return self._to_record(record_id, document)

    def upsert(self, record_id: str, fields: dict[str, Any], merge: bool = True) -> PendingRecord:
        """
        Create or update the document for ``record_id``.

        Calling it repeatedly with identical fields leaves the stored
        document identical.

        Returns:
            The record as stored after the write.
        """
        try:
            conn = self._connect()
            try:
                with conn:
                    existing = self._load_document(conn, record_id)
                    document = merge_document(existing, fields, merge=merge)
                    conn.execute(
                        f"INSERT INTO {self.collection} (id, data) VALUES (?, ?) "
                        "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
                        (record_id, json.dumps(document, sort_keys=True, ensure_ascii=False)),
                    )
            finally:
                conn.close()
        except (sqlite3.Error, json.JSONDecodeError, TypeError) as e:
            raise PersistenceError(f"Staging upsert failed for {record_id}: {e}") from e

        log_trace(f"Upserted {record_id} ({len(fields)} fields, merge={merge})")
        return self._to_record(record_id, document)

    def delete_many(self, record_ids: Iterable[str]) -> int:
        """Delete the given ids; unknown ids are ignored. Returns rows deleted."""
        ids = sorted(set(record_ids))
        if not ids:
            return 0
        deleted = 0
        # Stay under SQLite's bound-parameter limit
        for i in range(0, len(ids), 500):
            chunk = ids[i:i + 500]
            placeholders = ','.join('?' for _ in chunk)
            deleted += self._execute(
                f"DELETE FROM {self.collection} WHERE id IN ({placeholders})", tuple(chunk)
            )
        log_debug(f"Deleted {deleted} staging records")
        return deleted

    def list_all_ids(self) -> set[str]:
        """Every id present in the collection."""
        try:
            conn = self._connect()
            try:
                rows = conn.execute(f"SELECT id FROM {self.collection}").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Staging listing failed on {self.collection}: {e}") from e
        return {row[0] for row in rows}

    def list_records(self) -> list[PendingRecord]:
        """Every record in the collection, ordered by id."""
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"SELECT id, data FROM {self.collection} ORDER BY id"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Staging listing failed on {self.collection}: {e}") from e

        records = []
        for rid, data in rows:
            try:
                document = json.loads(data)
            except json.JSONDecodeError as e:
                raise PersistenceError(f"Stored document for {rid} in {self.collection} is invalid: {e}") from e
            records.append(self._to_record(rid, document))
        return records
