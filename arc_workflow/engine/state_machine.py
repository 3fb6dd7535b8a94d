#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Status State Machine

Defines valid request status transitions and validates them.

State diagram:
    submitted              → under_review            (management opens review)
    under_review           → neighbor_approval       (review approved + recommend approve)
    under_review           → homeowner_reply_needed  (management requests more info)
    homeowner_reply_needed → under_review            (homeowner replies)
    neighbor_approval      → board_voting            (approved neighbors >= required)
    board_voting           → approved | rejected     (board majority reached)
    approved               → completed               (work finished)
    rejected               → appeal                  (homeowner appeals)
    appeal                 → approved | rejected     (board re-vote)
    any non-terminal       → cancelled               (homeowner cancels)

Guarded edges are fired by workflow.evaluate(); the rest are manual and
applied by mutations. Both paths validate against VALID_TRANSITIONS.
Invalid transitions raise InvalidTransitionError.
"""

from .errors import InvalidTransitionError, UnknownStatusError
from .models import RequestStatus


# ---------------------------------------------------------------------------
# Valid transitions: {from_status: set(to_statuses)}
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    RequestStatus.SUBMITTED: frozenset([
        RequestStatus.UNDER_REVIEW,
        RequestStatus.CANCELLED,
    ]),
    RequestStatus.UNDER_REVIEW: frozenset([
        RequestStatus.NEIGHBOR_APPROVAL,
        RequestStatus.HOMEOWNER_REPLY_NEEDED,
        RequestStatus.CANCELLED,
    ]),
    RequestStatus.HOMEOWNER_REPLY_NEEDED: frozenset([
        RequestStatus.UNDER_REVIEW,
        RequestStatus.CANCELLED,
    ]),
    RequestStatus.NEIGHBOR_APPROVAL: frozenset([
        RequestStatus.BOARD_VOTING,
        RequestStatus.CANCELLED,
    ]),
    RequestStatus.BOARD_VOTING: frozenset([
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    ]),
    RequestStatus.APPEAL: frozenset([
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    ]),
    # Terminal, but still reachable by a manual edge
    RequestStatus.APPROVED: frozenset([
        RequestStatus.COMPLETED,
    ]),
    RequestStatus.REJECTED: frozenset([
        RequestStatus.APPEAL,
    ]),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

# Edges fired only by workflow.evaluate(), never by a caller directly
GUARDED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset([
    (RequestStatus.UNDER_REVIEW, RequestStatus.NEIGHBOR_APPROVAL),
    (RequestStatus.UNDER_REVIEW, RequestStatus.HOMEOWNER_REPLY_NEEDED),
    (RequestStatus.NEIGHBOR_APPROVAL, RequestStatus.BOARD_VOTING),
    (RequestStatus.BOARD_VOTING, RequestStatus.APPROVED),
    (RequestStatus.BOARD_VOTING, RequestStatus.REJECTED),
    (RequestStatus.APPEAL, RequestStatus.APPROVED),
    (RequestStatus.APPEAL, RequestStatus.REJECTED),
])


# ---------------------------------------------------------------------------
# State machine functions
# ---------------------------------------------------------------------------


def normalize_status(status: str) -> str:
    """
    Map a stored or wire status literal onto the canonical status set.

    Legacy aliases (cc_r_review, board_review, appeal_requested, appeal_review)
    are folded into their canonical statuses.

    Raises:
        UnknownStatusError: if the value is neither canonical nor an alias
    """
    if status in RequestStatus.ALL:
        return status
    canonical = RequestStatus.ALIASES.get(status)
    if canonical is None:
        raise UnknownStatusError(status, RequestStatus.ALL)
    return canonical


def validate_transition(
    from_status: str,
    to_status: str,
    request_id: str | None = None,
) -> None:
    """
    Validate that a request status transition is allowed.

    Raises:
        UnknownStatusError: if either status is not in RequestStatus.ALL
        InvalidTransitionError: if the transition is not in VALID_TRANSITIONS
    """
    if from_status not in RequestStatus.ALL:
        raise UnknownStatusError(from_status, RequestStatus.ALL)
    if to_status not in RequestStatus.ALL:
        raise UnknownStatusError(to_status, RequestStatus.ALL)

    allowed = VALID_TRANSITIONS.get(from_status, frozenset())
    if to_status not in allowed:
        raise InvalidTransitionError(
            from_status, to_status, request_id, valid_targets=allowed
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """Return True if the transition from_status → to_status is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: str) -> bool:
    """Return True if the status is terminal (no engine-driven transitions leave it)."""
    return status in RequestStatus.TERMINAL


def is_cancellable(status: str) -> bool:
    """Return True if a homeowner may still cancel a request in this status."""
    return RequestStatus.CANCELLED in VALID_TRANSITIONS.get(status, frozenset())


def available_transitions(from_status: str) -> frozenset[str]:
    """Return the set of valid destination statuses from from_status."""
    return VALID_TRANSITIONS.get(from_status, frozenset())
