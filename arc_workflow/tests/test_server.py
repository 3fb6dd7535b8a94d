"""
Tests for server/server.py (ArcServer, without an MCP transport)

Validates:
- Tool-level methods return plain dicts; workflow errors come back as
  {"error", "error_type"} instead of raising
- The happy path through the server produces dispatch records
- The background ticker starts with the server and stops on close()
"""

import pytest

from conftest import BOARD, HOMEOWNER, MANAGER, NEIGHBORS, RecordingGateway

from arc_workflow.engine.mutations import (
    OpenReview,
    RecordBoardVote,
    RecordManagementReview,
    RecordNeighborApproval,
)
from arc_workflow.server.server import ArcServer


@pytest.fixture
def server(tmp_path):
    srv = ArcServer(str(tmp_path / "requests.db"), str(tmp_path), gateway=RecordingGateway())
    yield srv
    srv.close()


def submit(server) -> str:
    result = server.submit_request({
        "homeowner_id": HOMEOWNER.id,
        "title": "Patio cover",
        "type": "exterior_modification",
    })
    assert "error" not in result
    return result["id"]


def test_submit_and_get(server):
    rid = submit(server)
    fetched = server.get_request(rid)
    assert fetched["status"] == "submitted"
    assert fetched["priority"] == "medium"
    assert [r["id"] for r in server.list_requests(homeowner_id=HOMEOWNER.id)] == [rid]


def test_errors_returned_as_dicts(server):
    assert server.get_request("req-nope")["error_type"] == "NotFoundError"
    assert server.submit_request({"homeowner_id": "", "title": "x", "type": "other"})[
        "error_type"
    ] == "ValidationError"

    rid = submit(server)
    result = server.apply(rid, RecordBoardVote(vote="approve"), BOARD[0])
    assert result["error_type"] == "InvalidTransitionError"
    assert server.get_timeline("req-nope")["error_type"] == "NotFoundError"


def test_happy_path_records_dispatches(server):
    rid = submit(server)
    server.apply(rid, OpenReview(), MANAGER)
    server.apply(
        rid,
        RecordManagementReview(
            status="approved", recommendation="approve",
            neighbor_ids=[n.id for n in NEIGHBORS[:3]],
        ),
        MANAGER,
    )
    for neighbor in NEIGHBORS[:3]:
        server.apply(rid, RecordNeighborApproval(status="approved"), neighbor)
    for member in BOARD[:3]:
        state = server.apply(rid, RecordBoardVote(vote="approve"), member)
    assert state["status"] == "approved"

    assert server.orchestrator.flush(timeout=5)
    event_ids = [r["event_id"] for r in server.list_dispatches(rid)]
    assert len(event_ids) == 4          # under_review, neighbor_approval, board_voting, approved
    assert server.get_dashboard()["status_counts"] == {"approved": 1}


def test_cancel_then_delete_refused(server):
    rid = submit(server)
    cancelled = server.cancel_request(rid, HOMEOWNER, reason="Changed plans")
    assert cancelled["status"] == "cancelled"
    refused = server.delete_request(rid)
    assert refused["error_type"] == "PreconditionFailedError"


def test_delete_before_review(server):
    rid = submit(server)
    assert server.delete_request(rid) == {"request_id": rid, "deleted": True}
    assert server.list_requests() == []


def test_ticker_lifecycle(tmp_path):
    srv = ArcServer(str(tmp_path / "requests.db"), str(tmp_path), tick_interval=0.05)
    try:
        assert srv.get_dashboard()["ticker_running"] is True
    finally:
        srv.close()
    assert srv.ticker.is_running is False
