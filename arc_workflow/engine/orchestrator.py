#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Orchestrator

The single entry point that changes request state. It performs:

1. submit   — validate a draft, assign an id, commit status=submitted
2. update   — apply a Mutation to a private copy, re-run the engine, commit once
3. tick     — re-evaluate every non-terminal request (catches conditions met
              without a direct caller action)
4. cancel / delete — close out a request
5. get / list_by_homeowner / list_requests — read-only views

Consistency rules:
- Mutations on the same request id are serialized by a per-id lock and always
  re-read the record inside the lock.
- A failed call commits nothing: all work happens on a copy and the store is
  written once at the end.
- StatusChanged events are handed to the dispatcher only after the store
  write succeeds, one per transition. Dispatch failures never reach the caller.
- tick() is idempotent and non-reentrant: a tick that finds another running
  returns [] immediately.
"""

import logging
import threading
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from . import timeline
from .errors import NotFoundError, PreconditionFailedError, ValidationError
from .models import (
    ActivityKind,
    Actor,
    EventKind,
    Priority,
    Request,
    RequestActivity,
    RequestDraft,
    RequestStatus,
    RequestType,
    StatusChanged,
    TimelineEvent,
    WorkflowConfig,
)
from .monitoring import log_event
from .mutations import CancelRequest, Mutation
from .notifications import NotificationDispatcher
from .state_machine import is_terminal
from .store import RequestStore
from .workflow import run_to_fixpoint

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


class RequestOrchestrator:
    """
    Owns the mutation path for requests.

    Args:
        store: RequestStore backend (in-memory or SQLite)
        dispatcher: NotificationDispatcher, or None to skip notifications
        config: WorkflowConfig (thresholds, board roster, notification flags)
        clock: returns the current timestamp as an ISO string
        id_factory: returns a fresh request id
    """

    def __init__(
        self,
        store: RequestStore,
        dispatcher: NotificationDispatcher | None = None,
        config: WorkflowConfig | None = None,
        clock: Callable[[], str] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config or WorkflowConfig()
        self._clock = clock or _utc_now
        self._id_factory = id_factory or _new_request_id
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()
        self._tick_lock = threading.Lock()

    @contextmanager
    def _locked(self, request_id: str):
        """
        Hold the per-id lock for request_id.

        Entries are reference-counted and dropped when the last holder or
        waiter leaves, so the table only holds ids with calls in flight.
        """
        with self._locks_guard:
            entry = self._locks.get(request_id)
            if entry is None:
                entry = self._locks[request_id] = [threading.Lock(), 0]   # [lock, users]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[request_id]

    def _load(self, request_id: str) -> Request:
        request = self.store.get(request_id)
        if request is None:
            raise NotFoundError(request_id)
        return request

    # -----------------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------------

    def _validate_draft(self, draft: RequestDraft) -> None:
        problems: list[str] = []
        if not draft.homeowner_id or not draft.homeowner_id.strip():
            problems.append("homeowner_id is required")
        if not draft.title or not draft.title.strip():
            problems.append("title is required")
        if draft.type not in RequestType.ALL:
            problems.append(
                f"type '{draft.type}' is invalid (valid: {sorted(RequestType.ALL)})"
            )
        if draft.priority not in Priority.ALL:
            problems.append(
                f"priority '{draft.priority}' is invalid (valid: {sorted(Priority.ALL)})"
            )
        if problems:
            raise ValidationError("Invalid request draft: " + "; ".join(problems))

    def submit(self, draft: RequestDraft, actor: Actor | None = None) -> Request:
        """
        Create a new request in status 'submitted'.

        Raises:
            ValidationError: missing required fields or out-of-enum type/priority
            StoreError: the store write failed
        """
        self._validate_draft(draft)
        now = self._clock()
        request_id = self._id_factory()
        actor = actor or Actor(id=draft.homeowner_id, name=draft.homeowner_id)

        request = Request(
            id=request_id,
            homeowner_id=draft.homeowner_id.strip(),
            community_id=draft.community_id,
            title=draft.title.strip(),
            description=draft.description,
            lot_number=draft.lot_number,
            type=draft.type,
            priority=draft.priority,
            status=RequestStatus.SUBMITTED,
            submitted_at=now,
            updated_at=now,
        )
        timeline.append(
            request,
            kind=EventKind.SUBMITTED,
            description="Request submitted",
            actor_id=actor.id,
            actor_name=actor.name,
            timestamp=now,
        )
        with self._locked(request_id):
            if self.store.get(request_id) is not None:
                raise ValidationError(f"Request id '{request_id}' already exists")
            self.store.upsert(request)

        log_event("request.submitted", {
            "request_id": request_id,
            "homeowner_id": request.homeowner_id,
            "type": request.type,
            "priority": request.priority,
        })
        if self.config.notify_on_submit:
            self._publish([RequestActivity(
                event_id=request.timeline[0].id,
                kind=ActivityKind.REQUEST_SUBMITTED,
                request_id=request_id,
                actor_id=actor.id,
                actor_name=actor.name,
                occurred_at=now,
                request=request.copy(),
            )])
        return request.copy()

    # -----------------------------------------------------------------------
    # Mutation path
    # -----------------------------------------------------------------------

    def update(self, request_id: str, mutation: Mutation, actor: Actor) -> Request:
        """
        Apply a mutation, re-run the engine, and commit the merged record once.

        Raises:
            NotFoundError: unknown request id
            InvalidTransitionError: the mutation is not allowed in the current status
            ValidationError: bad input or unauthorized actor
            StoreError: the store write failed (nothing committed)
        """
        with self._locked(request_id):
            request = self._load(request_id)
            mark = len(request.timeline)
            now = self._clock()

            mutation.check(request, actor, self.config)
            mutation.apply(request, actor, self.config, now)
            run_to_fixpoint(request, self.config, now)
            request.updated_at = now
            self.store.upsert(request)

        new_events = timeline.events_since(request, mark)
        outgoing: list[StatusChanged | RequestActivity] = self._status_events(request, new_events)
        if mutation.activity and self._activity_enabled(mutation.activity):
            first = new_events[0]
            outgoing.insert(0, RequestActivity(
                event_id=first.id,
                kind=mutation.activity,
                request_id=request.id,
                actor_id=actor.id,
                actor_name=actor.name,
                occurred_at=now,
                details=dict(first.metadata),
                request=request.copy(),
            ))
        self._publish(outgoing)
        return request.copy()

    def cancel(self, request_id: str, actor: Actor, reason: str | None = None) -> Request:
        """
        Cancel a non-terminal request.

        Appends the cancellation event and a "management notified" system
        event, then sets status=cancelled.
        """
        request = self.update(request_id, CancelRequest(reason=reason), actor)
        log_event("request.cancelled", {"request_id": request_id, "actor_id": actor.id})
        return request

    def delete(self, request_id: str) -> None:
        """
        Remove a request that has not entered review.

        Raises:
            NotFoundError: unknown request id
            PreconditionFailedError: review has begun; use cancel() instead
        """
        with self._locked(request_id):
            request = self._load(request_id)
            if request.status != RequestStatus.SUBMITTED or request.management_review is not None:
                raise PreconditionFailedError(
                    f"Request '{request_id}' cannot be deleted in status "
                    f"'{request.status}' once review has begun; cancel it instead"
                )
            self.store.delete(request_id)
        log_event("request.deleted", {"request_id": request_id})

    # -----------------------------------------------------------------------
    # Periodic sweep
    # -----------------------------------------------------------------------

    def tick(self) -> list[StatusChanged]:
        """
        Re-evaluate every non-terminal request and commit any transitions.

        Returns the StatusChanged events committed by this sweep. Returns []
        immediately if another tick is already running.
        """
        if not self._tick_lock.acquire(blocking=False):
            log_event("tick.skipped", {"reason": "tick already running"})
            return []
        try:
            changed: list[StatusChanged] = []
            scanned = 0
            for snapshot in self.store.all():
                if is_terminal(snapshot.status):
                    continue
                scanned += 1
                changed.extend(self._tick_one(snapshot.id))
            log_event("tick.completed", {"scanned": scanned, "transitions": len(changed)})
            return changed
        finally:
            self._tick_lock.release()

    def _tick_one(self, request_id: str) -> list[StatusChanged]:
        with self._locked(request_id):
            request = self.store.get(request_id)
            if request is None or is_terminal(request.status):
                return []
            now = self._clock()
            applied = run_to_fixpoint(request, self.config, now)
            if not applied:
                return []
            request.updated_at = now
            self.store.upsert(request)
        events = self._status_events(request, applied)
        self._publish(events)
        return events

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, request_id: str) -> Request:
        """Return a copy of the request. Raises NotFoundError if unknown."""
        return self._load(request_id)

    def list_by_homeowner(self, homeowner_id: str) -> list[Request]:
        """A homeowner's requests, newest first."""
        requests = [r for r in self.store.all() if r.homeowner_id == homeowner_id]
        return sorted(requests, key=lambda r: r.submitted_at, reverse=True)

    def list_requests(self, status: str | None = None) -> list[Request]:
        """All requests, newest first, optionally filtered by status."""
        requests = self.store.all()
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return sorted(requests, key=lambda r: r.submitted_at, reverse=True)

    def dashboard(self) -> dict[str, Any]:
        """Request counts by status plus dispatch failure count."""
        counts: dict[str, int] = {}
        for request in self.store.all():
            counts[request.status] = counts.get(request.status, 0) + 1
        return {
            "total_requests": sum(counts.values()),
            "open_requests": sum(n for s, n in counts.items() if not is_terminal(s)),
            "status_counts": counts,
            "dispatch_failures": self.dispatcher.failure_count if self.dispatcher else 0,
        }

    # -----------------------------------------------------------------------
    # Notification hand-off
    # -----------------------------------------------------------------------

    def _activity_enabled(self, kind: str) -> bool:
        if kind == ActivityKind.NEIGHBOR_RESPONSE:
            return self.config.notify_on_neighbor_response
        if kind == ActivityKind.REQUEST_SUBMITTED:
            return self.config.notify_on_submit
        return False

    def _status_events(
        self,
        request: Request,
        events: list[TimelineEvent],
    ) -> list[StatusChanged]:
        snapshot = request.copy()
        changes: list[StatusChanged] = []
        for event in events:
            if not event.is_transition:
                continue
            change = StatusChanged(
                event_id=event.id,
                request_id=request.id,
                old_status=event.metadata["from_status"],
                new_status=event.metadata["to_status"],
                actor_id=event.actor_id,
                actor_name=event.actor_name,
                occurred_at=event.timestamp,
                request=snapshot,
            )
            log_event("request.transition", change.to_dict())
            changes.append(change)
        return changes

    def _publish(self, events: list[StatusChanged | RequestActivity]) -> None:
        if self.dispatcher is None:
            return
        for event in events:
            self.dispatcher.submit(event)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for background notification deliveries to finish."""
        if self.dispatcher is None:
            return True
        return self.dispatcher.wait_idle(timeout)

    def close(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.close()
