#!/usr/bin/env python3
# Design: DESIGN.md
"""
Workflow Engine Data Models

Typed dataclasses for the request lifecycle: the Request aggregate, its owned
sub-records (neighbor approvals, board votes, management review, appeal) and
its append-only timeline. Also the events the orchestrator hands to the
notification dispatcher, and the resolved WorkflowConfig.

All models are plain @dataclass objects. JSON conversion is explicit
(to_dict / from_dict) so the stores can keep each request as one JSON blob.
"""

import copy
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar


# ---------------------------------------------------------------------------
# Status and enum constants
# ---------------------------------------------------------------------------

class RequestStatus:
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    HOMEOWNER_REPLY_NEEDED = "homeowner_reply_needed"
    NEIGHBOR_APPROVAL = "neighbor_approval"
    BOARD_VOTING = "board_voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPEAL = "appeal"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = frozenset([
        SUBMITTED, UNDER_REVIEW, HOMEOWNER_REPLY_NEEDED, NEIGHBOR_APPROVAL,
        BOARD_VOTING, APPROVED, REJECTED, APPEAL, COMPLETED, CANCELLED,
    ])

    # Terminal states: no engine-driven transition leaves them
    TERMINAL = frozenset([APPROVED, REJECTED, COMPLETED, CANCELLED])

    # Legacy literals still found in stored records
    ALIASES = {
        "cc_r_review": UNDER_REVIEW,
        "board_review": BOARD_VOTING,
        "appeal_requested": APPEAL,
        "appeal_review": APPEAL,
    }


class RequestType:
    EXTERIOR_MODIFICATION = "exterior_modification"
    LANDSCAPING = "landscaping"
    ARCHITECTURAL_CHANGE = "architectural_change"
    ADU_JADU = "adu_jadu"
    MAINTENANCE_REQUEST = "maintenance_request"
    VIOLATION_REPORT = "violation_report"
    OTHER = "other"

    ALL = frozenset([
        EXTERIOR_MODIFICATION, LANDSCAPING, ARCHITECTURAL_CHANGE, ADU_JADU,
        MAINTENANCE_REQUEST, VIOLATION_REPORT, OTHER,
    ])


class Priority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    ALL = frozenset([LOW, MEDIUM, HIGH])


class ApprovalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL = frozenset([PENDING, APPROVED, REJECTED])


class VoteChoice:
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"

    ALL = frozenset([APPROVE, REJECT, ABSTAIN])


class ReviewStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_INFO = "needs_info"

    ALL = frozenset([PENDING, APPROVED, REJECTED, NEEDS_INFO])


class Recommendation:
    APPROVE = "approve"
    REJECT = "reject"

    ALL = frozenset([APPROVE, REJECT])


class EventKind:
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    UPDATED = "updated"
    COMMENT = "comment"
    SYSTEM = "system"
    MANAGEMENT = "management"
    VOTE = "vote"
    NEIGHBOR = "neighbor"
    APPEAL = "appeal"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Role:
    HOMEOWNER = "homeowner"
    MANAGEMENT = "management"
    BOARD_MEMBER = "board_member"
    NEIGHBOR = "neighbor"
    SYSTEM = "system"


class ActivityKind:
    REQUEST_SUBMITTED = "request_submitted"
    NEIGHBOR_RESPONSE = "neighbor_response"


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """Who is performing an action. The role string is the only authorization input."""
    id: str
    name: str
    role: str = Role.HOMEOWNER

    @classmethod
    def system(cls) -> "Actor":
        return cls(id="system", name="Workflow Engine", role=Role.SYSTEM)


# ---------------------------------------------------------------------------
# Sub-records owned by a Request
# ---------------------------------------------------------------------------


@dataclass
class NeighborApproval:
    neighbor_id: str
    status: str = ApprovalStatus.PENDING
    comments: str | None = None
    submitted_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "neighbor_id": self.neighbor_id,
            "status": self.status,
            "comments": self.comments,
            "submitted_at": self.submitted_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "NeighborApproval":
        return cls(
            neighbor_id=d["neighbor_id"],
            status=d.get("status") or ApprovalStatus.PENDING,
            comments=d.get("comments"),
            submitted_at=d.get("submitted_at"),
        )


@dataclass
class BoardVote:
    board_member_id: str
    vote: str
    comments: str | None = None
    submitted_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "board_member_id": self.board_member_id,
            "vote": self.vote,
            "comments": self.comments,
            "submitted_at": self.submitted_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "BoardVote":
        return cls(
            board_member_id=d["board_member_id"],
            vote=d["vote"],
            comments=d.get("comments"),
            submitted_at=d.get("submitted_at"),
        )


@dataclass
class ManagementReview:
    """Outcome of the management CC&R compliance review."""
    reviewer_id: str
    status: str = ReviewStatus.PENDING
    recommendation: str | None = None       # approve | reject | None
    ccrs_references: list[str] = field(default_factory=list)
    comments: str | None = None
    reviewed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reviewer_id": self.reviewer_id,
            "status": self.status,
            "recommendation": self.recommendation,
            "ccrs_references": list(self.ccrs_references),
            "comments": self.comments,
            "reviewed_at": self.reviewed_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ManagementReview":
        return cls(
            reviewer_id=d["reviewer_id"],
            status=d.get("status") or ReviewStatus.PENDING,
            recommendation=d.get("recommendation"),
            ccrs_references=list(d.get("ccrs_references") or []),
            comments=d.get("comments"),
            reviewed_at=d.get("reviewed_at"),
        )


@dataclass
class AppealData:
    reason: str
    submitted_by: str
    submitted_at: str
    additional_info: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "additional_info": self.additional_info,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AppealData":
        return cls(
            reason=d["reason"],
            submitted_by=d["submitted_by"],
            submitted_at=d["submitted_at"],
            additional_info=d.get("additional_info"),
        )


@dataclass
class TimelineEvent:
    """One append-only entry in a request's history."""
    id: str                         # "<request_id>-evt-<n>"
    timestamp: str
    actor_id: str
    actor_name: str
    kind: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_transition(self) -> bool:
        """True if this event records a status change."""
        return "to_status" in self.metadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "kind": self.kind,
            "description": self.description,
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TimelineEvent":
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            actor_id=d["actor_id"],
            actor_name=d.get("actor_name") or d["actor_id"],
            kind=d["kind"],
            description=d.get("description", ""),
            metadata=dict(d.get("metadata") or {}),
        )


# ---------------------------------------------------------------------------
# Request aggregate
# ---------------------------------------------------------------------------


@dataclass
class RequestDraft:
    """Homeowner-supplied fields for a new request, before an id is assigned."""
    homeowner_id: str
    title: str
    type: str
    community_id: str = ""
    description: str = ""
    lot_number: str | None = None
    priority: str = Priority.MEDIUM

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RequestDraft":
        return cls(
            homeowner_id=d.get("homeowner_id") or "",
            title=d.get("title") or "",
            type=d.get("type") or "",
            community_id=d.get("community_id") or "",
            description=d.get("description") or "",
            lot_number=d.get("lot_number"),
            priority=d.get("priority") or Priority.MEDIUM,
        )


@dataclass
class Request:
    id: str
    homeowner_id: str
    title: str
    type: str
    status: str
    submitted_at: str
    updated_at: str
    community_id: str = ""
    description: str = ""
    lot_number: str | None = None
    priority: str = Priority.MEDIUM
    neighbor_approvals: list[NeighborApproval] = field(default_factory=list)
    board_votes: list[BoardVote] = field(default_factory=list)
    management_review: ManagementReview | None = None
    appeal: AppealData | None = None
    request_info_message: str | None = None
    timeline: list[TimelineEvent] = field(default_factory=list)
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in RequestStatus.TERMINAL

    @property
    def assigned_neighbor_ids(self) -> list[str]:
        return [a.neighbor_id for a in self.neighbor_approvals]

    @property
    def approved_neighbor_count(self) -> int:
        """Distinct neighbors whose current response is approved."""
        return len({
            a.neighbor_id for a in self.neighbor_approvals
            if a.status == ApprovalStatus.APPROVED
        })

    def vote_tally(self) -> tuple[int, int]:
        """Return (approve, reject) counts over each member's latest vote."""
        latest: dict[str, str] = {}
        for v in self.board_votes:
            latest[v.board_member_id] = v.vote
        approve = sum(1 for vote in latest.values() if vote == VoteChoice.APPROVE)
        reject = sum(1 for vote in latest.values() if vote == VoteChoice.REJECT)
        return approve, reject

    def find_neighbor_approval(self, neighbor_id: str) -> NeighborApproval | None:
        for approval in self.neighbor_approvals:
            if approval.neighbor_id == neighbor_id:
                return approval
        return None

    def copy(self) -> "Request":
        """Return an independent deep copy."""
        return Request.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "homeowner_id": self.homeowner_id,
            "community_id": self.community_id,
            "title": self.title,
            "description": self.description,
            "lot_number": self.lot_number,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "neighbor_approvals": [a.to_dict() for a in self.neighbor_approvals],
            "board_votes": [v.to_dict() for v in self.board_votes],
            "management_review": (
                self.management_review.to_dict() if self.management_review else None
            ),
            "appeal": self.appeal.to_dict() if self.appeal else None,
            "request_info_message": self.request_info_message,
            "timeline": [e.to_dict() for e in self.timeline],
            "submitted_at": self.submitted_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Request":
        """Construct from a stored JSON dict. Legacy status aliases are normalized."""
        # Local import: state_machine imports this module.
        from .state_machine import normalize_status

        review = d.get("management_review")
        appeal = d.get("appeal")
        return cls(
            id=d["id"],
            homeowner_id=d["homeowner_id"],
            community_id=d.get("community_id") or "",
            title=d["title"],
            description=d.get("description") or "",
            lot_number=d.get("lot_number"),
            type=d["type"],
            priority=d.get("priority") or Priority.MEDIUM,
            status=normalize_status(d["status"]),
            neighbor_approvals=[
                NeighborApproval.from_dict(a) for a in d.get("neighbor_approvals") or []
            ],
            board_votes=[BoardVote.from_dict(v) for v in d.get("board_votes") or []],
            management_review=ManagementReview.from_dict(review) if review else None,
            appeal=AppealData.from_dict(appeal) if appeal else None,
            request_info_message=d.get("request_info_message"),
            timeline=[TimelineEvent.from_dict(e) for e in d.get("timeline") or []],
            submitted_at=d["submitted_at"],
            updated_at=d.get("updated_at") or d["submitted_at"],
            completed_at=d.get("completed_at"),
        )

    def summary(self) -> dict[str, Any]:
        """Compact listing view (no sub-records or timeline)."""
        approve, reject = self.vote_tally()
        return {
            "id": self.id,
            "title": self.title,
            "homeowner_id": self.homeowner_id,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "neighbor_approvals": self.approved_neighbor_count,
            "votes_approve": approve,
            "votes_reject": reject,
            "submitted_at": self.submitted_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


# ---------------------------------------------------------------------------
# Events handed to the notification dispatcher
# ---------------------------------------------------------------------------


@dataclass
class StatusChanged:
    """A committed status change. event_id is the id of the timeline event that recorded it."""
    kind: ClassVar[str] = "status_changed"

    event_id: str
    request_id: str
    old_status: str
    new_status: str
    actor_id: str
    actor_name: str
    occurred_at: str
    request: Request | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "request_id": self.request_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "occurred_at": self.occurred_at,
        }


@dataclass
class RequestActivity:
    """A notifiable sub-event that is not a status change (submission, neighbor response)."""
    event_id: str
    kind: str
    request_id: str
    actor_id: str
    actor_name: str
    occurred_at: str
    details: dict[str, Any] = field(default_factory=dict)
    request: Request | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "request_id": self.request_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "occurred_at": self.occurred_at,
            "details": dict(self.details),
        }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class WorkflowConfig:
    """Resolved engine configuration (from .arc/config.yaml + defaults)."""
    db_path: str = ".arc/requests.db"
    required_neighbor_approvals: int = 3
    board_members: list[str] = field(default_factory=list)
    board_size: int = 5
    board_majority: int | None = None
    tick_interval_seconds: float = 3.0
    critical_statuses: list[str] = field(
        default_factory=lambda: ["approved", "rejected", "requires_changes"]
    )
    notify_on_submit: bool = False
    notify_on_neighbor_response: bool = False
    dispatch_max_workers: int = 2
    management_contacts: list[str] = field(default_factory=list)
    # person id -> {"name": ..., "email": ..., "phone": ...}
    contacts: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def effective_board_size(self) -> int:
        return len(self.board_members) or self.board_size

    @property
    def majority(self) -> int:
        """Votes needed on one side to decide; defaults to ceil(board size / 2)."""
        if self.board_majority is not None:
            return self.board_majority
        return math.ceil(self.effective_board_size / 2)
