"""
Tests for engine/store.py and engine/schema.py

Validates:
- Both stores round-trip requests with all sub-records
- Reads return independent copies
- upsert replaces, delete reports whether a row existed
- The SQLite schema sets user_version and PRAGMAs, and survives reopen
- Legacy status aliases are normalized when loading stored blobs
- Backend failures surface as StoreError
"""

import json

import pytest

from arc_workflow.engine.errors import StoreError
from arc_workflow.engine.models import (
    AppealData,
    BoardVote,
    ManagementReview,
    NeighborApproval,
    Request,
    TimelineEvent,
)
from arc_workflow.engine.schema import SCHEMA_VERSION, create_db
from arc_workflow.engine.store import InMemoryRequestStore, SqliteRequestStore


def make_request(request_id: str = "req-0001", homeowner_id: str = "h-jane", **kwargs) -> Request:
    fields = dict(
        id=request_id,
        homeowner_id=homeowner_id,
        title="Backyard ADU",
        type="adu_jadu",
        status="board_voting",
        submitted_at="2026-03-01T09:00:00+00:00",
        updated_at="2026-03-01T11:00:00+00:00",
        lot_number="17",
        priority="high",
        neighbor_approvals=[NeighborApproval("n-alice", "approved", "fine", "2026-03-01T10:00:00+00:00")],
        board_votes=[BoardVote("b-robert", "approve", None, "2026-03-01T10:30:00+00:00")],
        management_review=ManagementReview(
            "allan-chua", "approved", "approve", ["4.2", "7.1"], "meets setbacks",
            "2026-03-01T09:30:00+00:00",
        ),
        appeal=AppealData("reason", "h-jane", "2026-03-01T10:45:00+00:00", "more"),
        timeline=[TimelineEvent(
            f"{request_id}-evt-1", "2026-03-01T09:00:00+00:00", "h-jane", "Jane",
            "submitted", "Request submitted",
        )],
    )
    fields.update(kwargs)
    return Request(**fields)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        s = InMemoryRequestStore()
    else:
        s = SqliteRequestStore.open(tmp_path / "requests.db")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Shared protocol behaviour
# ---------------------------------------------------------------------------


def test_round_trip(any_store):
    original = make_request()
    any_store.upsert(original)
    loaded = any_store.get("req-0001")
    assert loaded == original
    assert loaded is not original


def test_get_missing_returns_none(any_store):
    assert any_store.get("nope") is None


def test_reads_are_independent_copies(any_store):
    any_store.upsert(make_request())
    loaded = any_store.get("req-0001")
    loaded.board_votes.clear()
    loaded.status = "approved"
    again = any_store.get("req-0001")
    assert again.status == "board_voting"
    assert len(again.board_votes) == 1


def test_upsert_replaces(any_store):
    any_store.upsert(make_request())
    any_store.upsert(make_request(status="approved", updated_at="2026-03-01T12:00:00+00:00"))
    assert [r.status for r in any_store.all()] == ["approved"]


def test_all_and_delete(any_store):
    any_store.upsert(make_request("req-0001"))
    any_store.upsert(make_request("req-0002", homeowner_id="h-omar"))
    assert {r.id for r in any_store.all()} == {"req-0001", "req-0002"}
    assert any_store.delete("req-0001") is True
    assert any_store.delete("req-0001") is False
    assert [r.id for r in any_store.all()] == ["req-0002"]


# ---------------------------------------------------------------------------
# SQLite specifics
# ---------------------------------------------------------------------------


def test_schema_version_and_pragmas(tmp_path):
    conn = create_db(tmp_path / "sub" / "requests.db")
    try:
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    finally:
        conn.close()


def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "requests.db"
    first = SqliteRequestStore.open(path)
    first.upsert(make_request())
    first.close()

    second = SqliteRequestStore.open(path)
    try:
        assert second.get("req-0001") == make_request()
    finally:
        second.close()


def test_sqlite_indexes_status_column(tmp_path):
    store = SqliteRequestStore.open(tmp_path / "requests.db")
    try:
        store.upsert(make_request(status="appeal"))
        row = store.conn.execute("SELECT status, homeowner_id FROM requests").fetchone()
        assert row["status"] == "appeal"
        assert row["homeowner_id"] == "h-jane"
    finally:
        store.close()


def test_legacy_status_normalized_on_load(tmp_path):
    store = SqliteRequestStore.open(tmp_path / "requests.db")
    try:
        body = make_request().to_dict()
        body["status"] = "board_review"
        store.conn.execute(
            "INSERT INTO requests (id, homeowner_id, status, submitted_at, updated_at, body) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            ("req-0001", "h-jane", "board_review", body["submitted_at"], body["updated_at"],
             json.dumps(body)),
        )
        store.conn.commit()
        assert store.get("req-0001").status == "board_voting"
    finally:
        store.close()


def test_closed_connection_raises_store_error(tmp_path):
    store = SqliteRequestStore.open(tmp_path / "requests.db")
    store.close()
    with pytest.raises(StoreError):
        store.upsert(make_request())
    with pytest.raises(StoreError):
        store.get("req-0001")
