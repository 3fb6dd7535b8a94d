#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Mutations

Caller-supplied partial changes applied by RequestOrchestrator.update().

Each mutation:
- declares the statuses it may run from (allowed_from)
- checks the actor is authorized before touching the request
- applies its change to the orchestrator's private working copy
- appends exactly one timeline event (CancelRequest appends two)

Mutations never commit and never run the engine; the orchestrator re-runs
workflow.run_to_fixpoint() on the merged record before the single commit.
"""

from dataclasses import dataclass, field
from typing import ClassVar

from . import timeline
from .errors import InvalidTransitionError, ValidationError
from .models import (
    ActivityKind,
    Actor,
    AppealData,
    ApprovalStatus,
    BoardVote,
    EventKind,
    ManagementReview,
    NeighborApproval,
    Recommendation,
    Request,
    RequestStatus,
    ReviewStatus,
    Role,
    VoteChoice,
    WorkflowConfig,
)
from .state_machine import is_cancellable
from .workflow import transition


class Mutation:
    """Base class. Subclasses are dataclasses carrying the mutation's inputs."""

    name: ClassVar[str] = "modify"
    allowed_from: ClassVar[frozenset[str]] = frozenset()
    # ActivityKind emitted as a notification sub-event, if any
    activity: ClassVar[str | None] = None

    def check(self, request: Request, actor: Actor, config: WorkflowConfig) -> None:
        """Validate status and authorization. Raises before anything is changed."""
        if request.status not in self.allowed_from:
            raise InvalidTransitionError(
                request.status, None, request.id, action=self.name
            )
        self.authorize(request, actor, config)

    def authorize(self, request: Request, actor: Actor, config: WorkflowConfig) -> None:
        pass

    def apply(self, request: Request, actor: Actor, config: WorkflowConfig, now: str) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Authorization helpers
# ---------------------------------------------------------------------------


def _require_role(actor: Actor, role: str, action: str) -> None:
    if actor.role != role:
        raise ValidationError(
            f"Actor '{actor.id}' with role '{actor.role}' may not {action} "
            f"(requires role '{role}')"
        )


def _require_homeowner(request: Request, actor: Actor, action: str) -> None:
    if actor.id != request.homeowner_id:
        raise ValidationError(
            f"Only the homeowner '{request.homeowner_id}' may {action} "
            f"request '{request.id}' (actor '{actor.id}')"
        )


def _require_text(value: str | None, what: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{what} is required")
    return value.strip()


# ---------------------------------------------------------------------------
# Management actions
# ---------------------------------------------------------------------------


@dataclass
class OpenReview(Mutation):
    """Management starts the CC&R compliance review."""
    comments: str | None = None

    name: ClassVar[str] = "open review on"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.SUBMITTED])

    def authorize(self, request, actor, config):
        _require_role(actor, Role.MANAGEMENT, "open a review")

    def apply(self, request, actor, config, now):
        request.management_review = ManagementReview(reviewer_id=actor.id)
        transition(
            request,
            RequestStatus.UNDER_REVIEW,
            kind=EventKind.REVIEWED,
            description="Started management review",
            actor=actor,
            now=now,
            metadata={"comments": self.comments} if self.comments else None,
        )


@dataclass
class RecordManagementReview(Mutation):
    """
    Management records its review outcome.

    neighbor_ids assigns the neighbors whose approval is required; each gets
    a pending NeighborApproval record (existing records are kept as-is).
    A needs_info outcome stores info_message (or comments) for the homeowner.
    """
    status: str
    recommendation: str | None = None
    comments: str | None = None
    ccrs_references: list[str] = field(default_factory=list)
    neighbor_ids: list[str] = field(default_factory=list)
    info_message: str | None = None

    name: ClassVar[str] = "record a management review on"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.UNDER_REVIEW])

    def authorize(self, request, actor, config):
        _require_role(actor, Role.MANAGEMENT, "record a management review")
        if self.status not in ReviewStatus.ALL:
            raise ValidationError(
                f"Invalid review status '{self.status}'. "
                f"Valid: {sorted(ReviewStatus.ALL)}"
            )
        if self.recommendation is not None and self.recommendation not in Recommendation.ALL:
            raise ValidationError(
                f"Invalid recommendation '{self.recommendation}'. "
                f"Valid: {sorted(Recommendation.ALL)}"
            )
        if self.status == ReviewStatus.NEEDS_INFO and not (self.info_message or self.comments):
            raise ValidationError("A needs_info review must say what information is needed")
        if (
            self.status == ReviewStatus.APPROVED
            and self.recommendation == Recommendation.APPROVE
        ):
            # neighbors can only be assigned here; the approval threshold must be reachable
            assigned = set(request.assigned_neighbor_ids) | set(self.neighbor_ids)
            if len(assigned) < config.required_neighbor_approvals:
                raise ValidationError(
                    f"An approving review must assign at least "
                    f"{config.required_neighbor_approvals} neighbor(s); "
                    f"{len(assigned)} assigned ({sorted(assigned)})"
                )

    def apply(self, request, actor, config, now):
        request.management_review = ManagementReview(
            reviewer_id=actor.id,
            status=self.status,
            recommendation=self.recommendation,
            ccrs_references=list(self.ccrs_references),
            comments=self.comments,
            reviewed_at=now,
        )
        for neighbor_id in self.neighbor_ids:
            if request.find_neighbor_approval(neighbor_id) is None:
                request.neighbor_approvals.append(NeighborApproval(neighbor_id=neighbor_id))
        if self.status == ReviewStatus.NEEDS_INFO:
            request.request_info_message = self.info_message or self.comments

        recommendation = f", recommends {self.recommendation}" if self.recommendation else ""
        timeline.append(
            request,
            kind=EventKind.REVIEWED,
            description=f"Management review recorded: {self.status}{recommendation}",
            actor_id=actor.id,
            actor_name=actor.name,
            timestamp=now,
            metadata={
                "review_status": self.status,
                "recommendation": self.recommendation,
                "neighbor_ids": list(self.neighbor_ids),
            },
        )


@dataclass
class MarkCompleted(Mutation):
    """Management confirms the approved work is finished."""
    notes: str | None = None

    name: ClassVar[str] = "complete"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.APPROVED])

    def authorize(self, request, actor, config):
        _require_role(actor, Role.MANAGEMENT, "mark a request completed")

    def apply(self, request, actor, config, now):
        transition(
            request,
            RequestStatus.COMPLETED,
            kind=EventKind.COMPLETED,
            description=self.notes or "Approved work marked completed",
            actor=actor,
            now=now,
        )


# ---------------------------------------------------------------------------
# Homeowner actions
# ---------------------------------------------------------------------------


@dataclass
class HomeownerReply(Mutation):
    """Homeowner answers a request for more information; review resumes."""
    message: str

    name: ClassVar[str] = "reply to"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.HOMEOWNER_REPLY_NEEDED])

    def authorize(self, request, actor, config):
        _require_homeowner(request, actor, "reply to")
        _require_text(self.message, "Reply message")

    def apply(self, request, actor, config, now):
        if request.management_review is not None:
            request.management_review.status = ReviewStatus.PENDING
            request.management_review.recommendation = None
        request.request_info_message = None
        transition(
            request,
            RequestStatus.UNDER_REVIEW,
            kind=EventKind.UPDATED,
            description=f"Homeowner replied: {self.message.strip()}",
            actor=actor,
            now=now,
        )


@dataclass
class FileAppeal(Mutation):
    """Homeowner appeals a rejection; the board votes again from scratch."""
    reason: str
    additional_info: str | None = None

    name: ClassVar[str] = "appeal"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.REJECTED])

    def authorize(self, request, actor, config):
        _require_homeowner(request, actor, "appeal")
        _require_text(self.reason, "Appeal reason")

    def apply(self, request, actor, config, now):
        request.appeal = AppealData(
            reason=self.reason.strip(),
            additional_info=self.additional_info,
            submitted_by=actor.id,
            submitted_at=now,
        )
        request.board_votes = []
        transition(
            request,
            RequestStatus.APPEAL,
            kind=EventKind.APPEAL,
            description=f"Appeal submitted: {self.reason.strip()}",
            actor=actor,
            now=now,
        )


@dataclass
class CancelRequest(Mutation):
    """Homeowner (or management) withdraws the request; management is notified."""
    reason: str | None = None

    name: ClassVar[str] = "cancel"
    allowed_from: ClassVar[frozenset[str]] = frozenset(
        s for s in RequestStatus.ALL if is_cancellable(s)
    )

    def authorize(self, request, actor, config):
        if actor.role != Role.MANAGEMENT:
            _require_homeowner(request, actor, "cancel")

    def apply(self, request, actor, config, now):
        description = "Request cancelled by homeowner - management notified"
        if actor.role == Role.MANAGEMENT:
            description = "Request cancelled by management"
        transition(
            request,
            RequestStatus.CANCELLED,
            kind=EventKind.CANCELLED,
            description=description,
            actor=actor,
            now=now,
            metadata={"reason": self.reason} if self.reason else None,
        )
        system = Actor.system()
        timeline.append(
            request,
            kind=EventKind.SYSTEM,
            description="HOA Management notified of cancellation",
            actor_id=system.id,
            actor_name=system.name,
            timestamp=now,
        )


# ---------------------------------------------------------------------------
# Neighbor and board actions
# ---------------------------------------------------------------------------


@dataclass
class RecordNeighborApproval(Mutation):
    """An assigned neighbor approves or rejects; their earlier answer is replaced."""
    status: str
    comments: str | None = None

    name: ClassVar[str] = "record a neighbor response on"
    allowed_from: ClassVar[frozenset[str]] = frozenset([RequestStatus.NEIGHBOR_APPROVAL])
    activity: ClassVar[str | None] = ActivityKind.NEIGHBOR_RESPONSE

    def authorize(self, request, actor, config):
        if self.status not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            raise ValidationError(
                f"Invalid neighbor response '{self.status}'. "
                f"Valid: ['approved', 'rejected']"
            )
        if request.find_neighbor_approval(actor.id) is None:
            raise ValidationError(
                f"Neighbor '{actor.id}' is not assigned to request '{request.id}'. "
                f"Assigned: {request.assigned_neighbor_ids}"
            )

    def apply(self, request, actor, config, now):
        approval = request.find_neighbor_approval(actor.id)
        approval.status = self.status
        approval.comments = self.comments
        approval.submitted_at = now
        timeline.append(
            request,
            kind=EventKind.NEIGHBOR,
            description=f"Neighbor {actor.name} {self.status} the request",
            actor_id=actor.id,
            actor_name=actor.name,
            timestamp=now,
            metadata={"neighbor_status": self.status},
        )


@dataclass
class RecordBoardVote(Mutation):
    """A board member votes; a repeat vote replaces their earlier one."""
    vote: str
    comments: str | None = None

    name: ClassVar[str] = "vote on"
    allowed_from: ClassVar[frozenset[str]] = frozenset(
        [RequestStatus.BOARD_VOTING, RequestStatus.APPEAL]
    )

    def authorize(self, request, actor, config):
        if self.vote not in VoteChoice.ALL:
            raise ValidationError(
                f"Invalid vote '{self.vote}'. Valid: {sorted(VoteChoice.ALL)}"
            )
        _require_role(actor, Role.BOARD_MEMBER, "vote")
        if config.board_members and actor.id not in config.board_members:
            raise ValidationError(
                f"Actor '{actor.id}' is not a configured board member"
            )

    def apply(self, request, actor, config, now):
        ballot = BoardVote(
            board_member_id=actor.id,
            vote=self.vote,
            comments=self.comments,
            submitted_at=now,
        )
        replaced = False
        for i, existing in enumerate(request.board_votes):
            if existing.board_member_id == actor.id:
                request.board_votes[i] = ballot
                replaced = True
                break
        if not replaced:
            request.board_votes.append(ballot)
        verb = "changed vote to" if replaced else "voted"
        timeline.append(
            request,
            kind=EventKind.VOTE,
            description=f"Board member {actor.name} {verb} {self.vote}",
            actor_id=actor.id,
            actor_name=actor.name,
            timestamp=now,
            metadata={"vote": self.vote, "replaced": replaced},
        )


# ---------------------------------------------------------------------------
# Anyone
# ---------------------------------------------------------------------------


@dataclass
class AddComment(Mutation):
    text: str

    name: ClassVar[str] = "comment on"
    allowed_from: ClassVar[frozenset[str]] = RequestStatus.ALL

    def authorize(self, request, actor, config):
        _require_text(self.text, "Comment text")

    def apply(self, request, actor, config, now):
        timeline.append(
            request,
            kind=EventKind.COMMENT,
            description=self.text.strip(),
            actor_id=actor.id,
            actor_name=actor.name,
            timestamp=now,
        )
