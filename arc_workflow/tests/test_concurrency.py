"""
Concurrency tests for engine/orchestrator.py and engine/ticker.py

Validates:
- Simultaneous votes from different board members on one request are all kept
- Concurrent updates on different requests do not interfere
- tick() running alongside updates never loses a write
- A tick that finds another tick running returns immediately
- Ticker calls tick() periodically and survives a failing tick

Threads share one orchestrator over the SQLite store, matching how the
MCP server runs the ticker next to tool calls.
"""

import threading
import time

import pytest

from conftest import BOARD, NEIGHBORS, Driver, FixedClock, SequentialIds

from arc_workflow.engine.mutations import RecordBoardVote, RecordNeighborApproval
from arc_workflow.engine.orchestrator import RequestOrchestrator
from arc_workflow.engine.store import SqliteRequestStore
from arc_workflow.engine.ticker import Ticker


def run_threads(targets):
    errors: list[BaseException] = []
    barrier = threading.Barrier(len(targets))

    def wrap(fn):
        def runner():
            barrier.wait()
            try:
                fn()
            except BaseException as exc:  # surfaced to the test below
                errors.append(exc)
        return runner

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert not errors, errors


@pytest.fixture(params=["memory", "sqlite"])
def concurrent_orch(request, tmp_path, dispatcher, config, store):
    if request.param == "sqlite":
        backing = SqliteRequestStore.open(tmp_path / "requests.db")
    else:
        backing = store
    orch = RequestOrchestrator(
        backing, dispatcher, config, clock=FixedClock(), id_factory=SequentialIds()
    )
    yield orch
    orch.close()
    backing.close()


def test_simultaneous_board_votes_all_kept(concurrent_orch, draft):
    drive = Driver(concurrent_orch)
    rid = drive.submit(draft)
    drive.board_voting(rid)

    # 2 approve + 2 reject: no majority, so every vote must survive
    ballots = [(BOARD[0], "approve"), (BOARD[1], "reject"), (BOARD[2], "approve"), (BOARD[3], "reject")]
    run_threads([
        lambda m=m, v=v: concurrent_orch.update(rid, RecordBoardVote(vote=v), m)
        for m, v in ballots
    ])

    request = concurrent_orch.get(rid)
    assert request.status == "board_voting"
    assert sorted(v.board_member_id for v in request.board_votes) == sorted(b.id for b, _ in ballots)
    vote_events = [e for e in request.timeline if e.kind == "vote"]
    assert len(vote_events) == 4
    # event ids stay unique and dense under contention
    assert [e.id for e in request.timeline] == [
        f"{rid}-evt-{i}" for i in range(1, len(request.timeline) + 1)
    ]


def test_simultaneous_deciding_votes_transition_once(concurrent_orch, draft):
    drive = Driver(concurrent_orch)
    rid = drive.submit(draft)
    drive.board_voting(rid)
    drive.vote(rid, BOARD[0], "approve")
    drive.vote(rid, BOARD[1], "approve")

    outcomes: list[str] = []
    lock = threading.Lock()

    def vote(member):
        try:
            concurrent_orch.update(rid, RecordBoardVote(vote="approve"), member)
            with lock:
                outcomes.append("ok")
        except Exception as exc:
            with lock:
                outcomes.append(type(exc).__name__)

    run_threads([lambda m=m: vote(m) for m in BOARD[2:5]])

    request = concurrent_orch.get(rid)
    assert request.status == "approved"
    # first deciding vote wins; later ones hit a terminal request
    assert outcomes.count("ok") == 1
    assert outcomes.count("InvalidTransitionError") == 2
    transitions = [e for e in request.timeline if e.metadata.get("to_status") == "approved"]
    assert len(transitions) == 1


def test_updates_on_different_requests_are_independent(concurrent_orch, draft):
    drive = Driver(concurrent_orch)
    ids = [drive.submit(draft) for _ in range(4)]
    for rid in ids:
        drive.neighbor_approval(rid)

    run_threads([
        lambda rid=rid, n=n: concurrent_orch.update(rid, RecordNeighborApproval(status="approved"), n)
        for rid in ids
        for n in NEIGHBORS[:3]
    ])
    assert {concurrent_orch.get(rid).status for rid in ids} == {"board_voting"}


def test_tick_alongside_updates_loses_nothing(concurrent_orch, draft):
    drive = Driver(concurrent_orch)
    rid = drive.submit(draft)
    drive.board_voting(rid)

    targets = [lambda: concurrent_orch.tick() for _ in range(3)]
    targets += [
        lambda m=m: concurrent_orch.update(rid, RecordBoardVote(vote="abstain"), m)
        for m in BOARD
    ]
    run_threads(targets)
    assert len(concurrent_orch.get(rid).board_votes) == 5


def test_tick_is_non_reentrant(orchestrator, drive, draft, store):
    rid = drive.submit(draft)
    drive.neighbor_approval(rid)

    entered = threading.Event()
    release = threading.Event()
    original_all = store.all

    def slow_all():
        entered.set()
        release.wait(5)
        return original_all()

    store.all = slow_all
    results: list = []
    first = threading.Thread(target=lambda: results.append(orchestrator.tick()))
    first.start()
    assert entered.wait(5)

    assert orchestrator.tick() == []   # second tick skipped while first runs
    release.set()
    first.join(5)
    assert results == [[]]


# ---------------------------------------------------------------------------
# Ticker
# ---------------------------------------------------------------------------


class CountingOrchestrator:
    def __init__(self, fail_first: bool = False):
        self.calls = 0
        self.fail_first = fail_first
        self.called = threading.Event()

    def tick(self):
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("store unavailable")
        if self.calls >= 3:
            self.called.set()
        return []


def test_ticker_runs_periodically():
    orch = CountingOrchestrator()
    ticker = Ticker(orch, interval_seconds=0.01)
    ticker.start()
    try:
        assert orch.called.wait(5)
    finally:
        ticker.stop()
    assert not ticker.is_running
    assert ticker.ticks >= 3


def test_ticker_survives_failing_tick():
    orch = CountingOrchestrator(fail_first=True)
    ticker = Ticker(orch, interval_seconds=0.01)
    ticker.start()
    try:
        assert orch.called.wait(5)
    finally:
        ticker.stop()
    assert ticker.errors == 1


def test_ticker_drives_real_transitions(orchestrator, store, drive, draft):
    rid = drive.submit(draft)
    drive.neighbor_approval(rid)
    external = store.get(rid)
    for approval in external.neighbor_approvals:
        approval.status = "approved"
    store.upsert(external)

    ticker = Ticker(orchestrator, interval_seconds=0.01)
    ticker.start()
    try:
        deadline = time.monotonic() + 5
        while orchestrator.get(rid).status != "board_voting" and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        ticker.stop()
    assert orchestrator.get(rid).status == "board_voting"


def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Ticker(CountingOrchestrator(), interval_seconds=0)
