#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Stores

The store is the only source of truth for request state. Two backends share
one blocking key-value protocol:

- InMemoryRequestStore: dict of id → JSON blob, for tests and embedding
- SqliteRequestStore:   one row per request in the requests table

Both return independent copies on every read, so callers can never change
stored state except through upsert().
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

from .errors import StoreError
from .models import Request
from .schema import create_db


class RequestStore(Protocol):
    def get(self, request_id: str) -> Request | None:
        ...

    def upsert(self, request: Request) -> None:
        ...

    def all(self) -> list[Request]:
        ...

    def delete(self, request_id: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryRequestStore:
    """Keeps serialized requests in a dict guarded by a lock."""

    def __init__(self):
        self._blobs: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, request_id: str) -> Request | None:
        with self._lock:
            blob = self._blobs.get(request_id)
        return Request.from_dict(json.loads(blob)) if blob is not None else None

    def upsert(self, request: Request) -> None:
        blob = json.dumps(request.to_dict())
        with self._lock:
            self._blobs[request.id] = blob

    def all(self) -> list[Request]:
        with self._lock:
            blobs = list(self._blobs.values())
        return [Request.from_dict(json.loads(b)) for b in blobs]

    def delete(self, request_id: str) -> bool:
        with self._lock:
            return self._blobs.pop(request_id, None) is not None

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


class SqliteRequestStore:
    """
    SQLite-backed store.

    One connection is shared across threads (check_same_thread=False), so
    every use is serialized through a lock. Writes run inside BEGIN IMMEDIATE
    and are rolled back on failure. Any sqlite3.Error surfaces as StoreError.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str | Path) -> "SqliteRequestStore":
        """Create or open the database file and return a store over it."""
        try:
            return cls(create_db(db_path))
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open request database '{db_path}': {exc}") from exc

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def _write(self, sql: str, params: dict | tuple) -> int:
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                try:
                    cursor = self.conn.execute(sql, params)
                    self.conn.commit()
                    return cursor.rowcount
                except Exception:
                    self.conn.rollback()
                    raise
            except sqlite3.Error as exc:
                raise StoreError(f"Request store write failed: {exc}") from exc

    def get(self, request_id: str) -> Request | None:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT body FROM requests WHERE id = ?", (request_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Request store read failed: {exc}") from exc
        if row is None:
            return None
        return Request.from_dict(json.loads(row["body"]))

    def upsert(self, request: Request) -> None:
        self._write(
            """
            INSERT INTO requests (id, homeowner_id, status, submitted_at, updated_at, body)
            VALUES (:id, :homeowner_id, :status, :submitted_at, :updated_at, :body)
            ON CONFLICT(id) DO UPDATE SET
                homeowner_id = excluded.homeowner_id,
                status       = excluded.status,
                updated_at   = excluded.updated_at,
                body         = excluded.body
            """,
            {
                "id": request.id,
                "homeowner_id": request.homeowner_id,
                "status": request.status,
                "submitted_at": request.submitted_at,
                "updated_at": request.updated_at,
                "body": json.dumps(request.to_dict()),
            },
        )

    def all(self) -> list[Request]:
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT body FROM requests ORDER BY submitted_at ASC, id ASC"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Request store read failed: {exc}") from exc
        return [Request.from_dict(json.loads(row["body"])) for row in rows]

    def delete(self, request_id: str) -> bool:
        return self._write("DELETE FROM requests WHERE id = ?", (request_id,)) > 0
