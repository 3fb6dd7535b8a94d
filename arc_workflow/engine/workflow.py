#!/usr/bin/env python3
# Design: DESIGN.md
"""
Workflow Engine Evaluation

Decides whether a request's sub-records license a status change, and applies
status changes to a working copy.

evaluate() is pure and deterministic: it reads only the request and the
config, never the clock. Re-evaluating an unchanged request returns the same
answer, and once a guard has fired the new status has its own guard, so
repeated evaluation never produces duplicate transitions.

Guards:
- under_review: review approved + recommend approve → neighbor_approval
                review needs_info                   → homeowner_reply_needed
- neighbor_approval: approved neighbors >= required → board_voting
- board_voting / appeal: approve >= majority and approve > reject → approved
                         reject  >= majority and reject > approve → rejected
                         anything else (including a tie) waits
"""

from dataclasses import dataclass, field
from typing import Any

from . import timeline
from .models import (
    Actor,
    EventKind,
    Recommendation,
    Request,
    RequestStatus,
    ReviewStatus,
    TimelineEvent,
    WorkflowConfig,
)
from .state_machine import is_terminal, validate_transition


@dataclass
class Delta:
    """A transition the engine decided should fire."""
    new_status: str
    kind: str
    description: str
    clear_board_votes: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _evaluate_review(request: Request) -> Delta | None:
    review = request.management_review
    if review is None:
        return None
    if (
        review.status == ReviewStatus.APPROVED
        and review.recommendation == Recommendation.APPROVE
    ):
        return Delta(
            new_status=RequestStatus.NEIGHBOR_APPROVAL,
            kind=EventKind.UPDATED,
            description="Management review approved; neighbor approval requested",
            metadata={"reviewer_id": review.reviewer_id},
        )
    if review.status == ReviewStatus.NEEDS_INFO:
        return Delta(
            new_status=RequestStatus.HOMEOWNER_REPLY_NEEDED,
            kind=EventKind.MANAGEMENT,
            description="Management requested more information from the homeowner",
            metadata={"reviewer_id": review.reviewer_id},
        )
    return None


def _evaluate_neighbors(request: Request, config: WorkflowConfig) -> Delta | None:
    approved = request.approved_neighbor_count
    if approved < config.required_neighbor_approvals:
        return None
    return Delta(
        new_status=RequestStatus.BOARD_VOTING,
        kind=EventKind.UPDATED,
        description=(
            f"Neighbor approvals complete ({approved}/"
            f"{config.required_neighbor_approvals}); moved to board voting"
        ),
        clear_board_votes=True,
        metadata={"approved_neighbors": approved},
    )


def _evaluate_votes(request: Request, config: WorkflowConfig) -> Delta | None:
    approve, reject = request.vote_tally()
    majority = config.majority
    tally = {"approve": approve, "reject": reject, "majority": majority}
    if approve >= majority and approve > reject:
        return Delta(
            new_status=RequestStatus.APPROVED,
            kind=EventKind.APPROVED,
            description=f"Board approved the request ({approve} approve, {reject} reject)",
            metadata=tally,
        )
    if reject >= majority and reject > approve:
        return Delta(
            new_status=RequestStatus.REJECTED,
            kind=EventKind.REJECTED,
            description=f"Board rejected the request ({approve} approve, {reject} reject)",
            metadata=tally,
        )
    return None


def evaluate(request: Request, config: WorkflowConfig) -> Delta | None:
    """
    Return the transition the request's current state licenses, or None.

    Never raises and never mutates the request.
    """
    status = request.status
    if status == RequestStatus.UNDER_REVIEW:
        return _evaluate_review(request)
    if status == RequestStatus.NEIGHBOR_APPROVAL:
        return _evaluate_neighbors(request, config)
    if status in (RequestStatus.BOARD_VOTING, RequestStatus.APPEAL):
        return _evaluate_votes(request, config)
    return None


# ---------------------------------------------------------------------------
# Applying transitions
# ---------------------------------------------------------------------------


def transition(
    request: Request,
    to_status: str,
    kind: str,
    description: str,
    actor: Actor,
    now: str,
    metadata: dict[str, Any] | None = None,
) -> TimelineEvent:
    """
    Move request to to_status and record exactly one timeline event.

    Sets completed_at the first time a terminal status is reached; it is never
    changed afterwards.

    Raises:
        InvalidTransitionError: if the edge is not in VALID_TRANSITIONS
    """
    old_status = request.status
    validate_transition(old_status, to_status, request.id)
    request.status = to_status
    if is_terminal(to_status) and request.completed_at is None:
        request.completed_at = now
    event_metadata = dict(metadata or {})
    event_metadata["from_status"] = old_status
    event_metadata["to_status"] = to_status
    return timeline.append(
        request,
        kind=kind,
        description=description,
        actor_id=actor.id,
        actor_name=actor.name,
        timestamp=now,
        metadata=event_metadata,
    )


def apply_delta(request: Request, delta: Delta, now: str) -> TimelineEvent:
    """Apply an engine-decided delta to the request in place."""
    if delta.clear_board_votes:
        request.board_votes = []
    return transition(
        request,
        delta.new_status,
        kind=delta.kind,
        description=delta.description,
        actor=Actor.system(),
        now=now,
        metadata=delta.metadata,
    )


def run_to_fixpoint(request: Request, config: WorkflowConfig, now: str) -> list[TimelineEvent]:
    """
    Evaluate and apply deltas until none fires.

    The loop is bounded by the number of statuses; each delta moves the
    request forward along the graph, so a chain can never revisit a guard.
    """
    applied: list[TimelineEvent] = []
    for _ in range(len(RequestStatus.ALL)):
        delta = evaluate(request, config)
        if delta is None:
            break
        applied.append(apply_delta(request, delta, now))
    return applied


# ---------------------------------------------------------------------------
# Progress helpers
# ---------------------------------------------------------------------------

# Position of each non-terminal status along the happy path
_PROGRESS_ORDER = {
    RequestStatus.SUBMITTED: 0,
    RequestStatus.UNDER_REVIEW: 1,
    RequestStatus.HOMEOWNER_REPLY_NEEDED: 1,
    RequestStatus.NEIGHBOR_APPROVAL: 2,
    RequestStatus.BOARD_VOTING: 3,
    RequestStatus.APPEAL: 3,
}
_PROGRESS_STEPS = 4


def can_progress(request: Request, config: WorkflowConfig) -> bool:
    """Return True if evaluate() would fire a transition right now."""
    return evaluate(request, config) is not None


def next_status(request: Request, config: WorkflowConfig) -> str | None:
    """Return the status evaluate() would move to, or None."""
    delta = evaluate(request, config)
    return delta.new_status if delta else None


def progress_percentage(status: str) -> int:
    """Rough completion percentage for display; terminal statuses are 100."""
    if is_terminal(status):
        return 100
    position = _PROGRESS_ORDER.get(status, 0)
    return round(position / _PROGRESS_STEPS * 100)
