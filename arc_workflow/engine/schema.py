#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Store Database Schema

SQLite schema for the durable request store. A single table holds each
request as a JSON blob, with a few columns copied out of the blob for
filtering:
- requests: id, homeowner_id, status, updated_at, body (JSON)

Schema version is stored in PRAGMA user_version. The migrate() function
applies schema changes incrementally and is idempotent.

Connection rules:
- All write transactions use BEGIN IMMEDIATE
- PRAGMA busy_timeout=5000 is set on connection open
- WAL mode allows reads while a write transaction is open
"""

import sqlite3
from pathlib import Path

# Current schema version; increment when adding tables or columns
SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Connection helper
# ---------------------------------------------------------------------------


def open_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Open (or create) the request database with required PRAGMAs.

    Sets:
    - journal_mode=WAL: concurrent reads while single writer holds lock
    - busy_timeout=5000: retry on locked DB for up to 5 seconds
    - foreign_keys=ON: enforce referential integrity
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_REQUESTS = """
CREATE TABLE IF NOT EXISTS requests (
    id            TEXT PRIMARY KEY,
    homeowner_id  TEXT NOT NULL,
    status        TEXT NOT NULL,
    submitted_at  TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    body          TEXT NOT NULL              -- full request as JSON
)
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_requests_homeowner ON requests(homeowner_id)",
    "CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status)",
]


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


def _get_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _set_version(conn: sqlite3.Connection, version: int) -> None:
    # PRAGMA does not accept bound parameters
    conn.execute(f"PRAGMA user_version = {int(version)}")


def migrate(conn: sqlite3.Connection) -> int:
    """
    Bring the schema up to SCHEMA_VERSION.

    Returns:
        The schema version after migration.
    """
    version = _get_version(conn)
    if version < 1:
        conn.execute(_CREATE_REQUESTS)
        for ddl in _CREATE_INDEXES:
            conn.execute(ddl)
        _set_version(conn, 1)
        conn.commit()
        version = 1
    return version


def create_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Create or open a request database, applying all migrations.

    Returns an open connection with WAL mode, busy_timeout=5000,
    and foreign_keys=ON. The caller is responsible for closing it.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_db(path)
    migrate(conn)
    return conn
