"""
pytest configuration for ARC workflow tests.

Adds the repository root to sys.path so that
'from arc_workflow.engine.xxx import ...' works without installing.

Shared fixtures:
- fixed clock and sequential request ids for deterministic timelines
- a community config: 5 board members, 3 required neighbor approvals
- RecordingGateway / FailingGateway test doubles
- an orchestrator over the in-memory store, plus a `drive` helper that walks
  a request along the happy path
"""

import sys
import threading
from pathlib import Path

import pytest

# Ensure the repo root is on the path (arc_workflow package lives there)
repo_root = Path(__file__).parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from arc_workflow.engine.models import Actor, RequestDraft, Role, WorkflowConfig
from arc_workflow.engine.mutations import (
    OpenReview,
    RecordBoardVote,
    RecordManagementReview,
    RecordNeighborApproval,
)
from arc_workflow.engine.notifications import (
    ContactDirectory,
    DeliveryResult,
    NotificationDispatcher,
)
from arc_workflow.engine.orchestrator import RequestOrchestrator
from arc_workflow.engine.store import InMemoryRequestStore


HOMEOWNER = Actor("h-jane", "Jane Homeowner", Role.HOMEOWNER)
OTHER_HOMEOWNER = Actor("h-omar", "Omar Other", Role.HOMEOWNER)
MANAGER = Actor("allan-chua", "Allan Chua", Role.MANAGEMENT)
NEIGHBORS = [
    Actor("n-alice", "Alice North", Role.NEIGHBOR),
    Actor("n-bob", "Bob East", Role.NEIGHBOR),
    Actor("n-carol", "Carol West", Role.NEIGHBOR),
    Actor("n-dave", "Dave South", Role.NEIGHBOR),
]
BOARD = [
    Actor("b-robert", "Robert B", Role.BOARD_MEMBER),
    Actor("b-dean", "Dean K", Role.BOARD_MEMBER),
    Actor("b-maria", "Maria L", Role.BOARD_MEMBER),
    Actor("b-tom", "Tom P", Role.BOARD_MEMBER),
    Actor("b-sue", "Sue W", Role.BOARD_MEMBER),
]


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FixedClock:
    """Returns strictly increasing ISO timestamps, one second apart."""

    def __init__(self):
        self._n = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self._n += 1
            n = self._n
        return f"2026-03-01T{9 + n // 3600:02d}:{(n // 60) % 60:02d}:{n % 60:02d}+00:00"


class SequentialIds:
    def __init__(self, prefix: str = "req"):
        self._n = 0
        self._prefix = prefix
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self._n += 1
            return f"{self._prefix}-{self._n:04d}"


class RecordingGateway:
    """Records every dispatch call; can be told to fail specific recipients."""

    def __init__(self, failing_recipients: set[str] | None = None):
        self.calls: list[list] = []
        self.failing_recipients = set(failing_recipients or ())
        self._lock = threading.Lock()

    def dispatch(self, payloads):
        with self._lock:
            self.calls.append(list(payloads))
        return [
            DeliveryResult(
                p.recipient,
                p.channel,
                p.recipient not in self.failing_recipients,
                "mailbox unavailable" if p.recipient in self.failing_recipients else None,
            )
            for p in payloads
        ]

    @property
    def payloads(self):
        with self._lock:
            return [p for call in self.calls for p in call]


class FailingGateway:
    """Raises on every dispatch, like a transport that is down."""

    def __init__(self):
        self.attempts = 0

    def dispatch(self, payloads):
        self.attempts += 1
        raise ConnectionError("smtp relay unreachable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _contacts() -> dict[str, dict]:
    people = {}
    for i, actor in enumerate([HOMEOWNER, OTHER_HOMEOWNER, MANAGER] + NEIGHBORS + BOARD):
        people[actor.id] = {
            "name": actor.name,
            "email": f"{actor.id}@example.org",
            "phone": f"+1555000{i:04d}",
        }
    return people


@pytest.fixture
def config():
    return WorkflowConfig(
        db_path=":memory:",
        required_neighbor_approvals=3,
        board_members=[b.id for b in BOARD],
        management_contacts=[MANAGER.id],
        contacts=_contacts(),
    )


@pytest.fixture
def directory(config):
    return ContactDirectory.from_config(config)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def dispatcher(gateway, directory, config):
    d = NotificationDispatcher(gateway, directory, config)
    yield d
    d.close()


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def orchestrator(store, dispatcher, config):
    orch = RequestOrchestrator(
        store, dispatcher, config, clock=FixedClock(), id_factory=SequentialIds()
    )
    yield orch
    orch.close()


@pytest.fixture
def draft():
    return RequestDraft(
        homeowner_id=HOMEOWNER.id,
        title="Replace front fence",
        type="exterior_modification",
        community_id="oak-hills",
        description="Six-foot cedar fence along the front lot line",
        lot_number="42",
    )


class Driver:
    """Walks a request along the happy path, one stage per call."""

    def __init__(self, orch: RequestOrchestrator):
        self.orch = orch

    def submit(self, draft: RequestDraft) -> str:
        return self.orch.submit(draft).id

    def under_review(self, request_id: str):
        return self.orch.update(request_id, OpenReview(), MANAGER)

    def neighbor_approval(self, request_id: str, neighbors=None):
        self.under_review(request_id)
        return self.orch.update(
            request_id,
            RecordManagementReview(
                status="approved",
                recommendation="approve",
                neighbor_ids=[n.id for n in (neighbors or NEIGHBORS[:3])],
            ),
            MANAGER,
        )

    def board_voting(self, request_id: str):
        self.neighbor_approval(request_id)
        request = None
        for neighbor in NEIGHBORS[:3]:
            request = self.orch.update(
                request_id, RecordNeighborApproval(status="approved"), neighbor
            )
        return request

    def vote(self, request_id: str, member: Actor, vote: str):
        return self.orch.update(request_id, RecordBoardVote(vote=vote), member)


@pytest.fixture
def drive(orchestrator):
    return Driver(orchestrator)
