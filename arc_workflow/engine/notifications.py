#!/usr/bin/env python3
# Design: DESIGN.md
"""
Notification Dispatcher

Turns committed workflow events into addressed payloads and hands them to a
delivery gateway.

compose_payloads() is pure: for a StatusChanged it always addresses the
homeowner by email, adds an SMS for critical statuses, and addresses the
parties who must act next (assigned neighbors, board members, management).
RequestActivity sub-events (submission, neighbor response) map the same way.

NotificationDispatcher sends in the background on a small thread pool:
- each event_id is dispatched at most once
- gateway failures are logged, counted and recorded, never raised
- the core never retries; retry policy belongs to the gateway
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import DispatchError
from .models import (
    ActivityKind,
    Priority,
    Request,
    RequestActivity,
    RequestStatus,
    StatusChanged,
    WorkflowConfig,
)
from .monitoring import log_event

logger = logging.getLogger(__name__)

# Dispatch records and dedup ids kept in memory by a long-running dispatcher
DEFAULT_HISTORY_SIZE = 1000


class Channel:
    EMAIL = "email"
    SMS = "sms"


class Template:
    REQUEST_STATUS_UPDATE = "request_status_update"
    REQUEST_STATUS_SMS = "request_status_sms"
    NEIGHBOR_APPROVAL_REQUEST = "neighbor_approval_request"
    BOARD_VOTING_REQUEST = "board_voting_request"
    REQUEST_CANCELLED = "request_cancelled"
    NEW_REQUEST_SUBMITTED = "new_request_submitted"
    NEW_REQUEST_SMS = "new_request_sms"
    NEIGHBOR_RESPONSE = "neighbor_response"


STATUS_MESSAGES: dict[str, str] = {
    RequestStatus.SUBMITTED: "Your request has been submitted and is under review.",
    RequestStatus.UNDER_REVIEW: "Your request is being reviewed for CC&R compliance.",
    RequestStatus.HOMEOWNER_REPLY_NEEDED: "Management needs more information about your request.",
    RequestStatus.NEIGHBOR_APPROVAL: "Your request is pending neighbor approval.",
    RequestStatus.BOARD_VOTING: "Your request is being reviewed by the board.",
    RequestStatus.APPEAL: "Your appeal has been received and will be reviewed by the board.",
    RequestStatus.APPROVED: "Congratulations! Your request has been approved.",
    RequestStatus.REJECTED: "Your request has been rejected. Please review the feedback.",
    RequestStatus.COMPLETED: "Your request has been marked completed.",
    RequestStatus.CANCELLED: "Your request has been cancelled.",
    "requires_changes": "Your request requires changes before approval.",
}
DEFAULT_STATUS_MESSAGE = "Your request status has been updated."


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, DEFAULT_STATUS_MESSAGE)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@dataclass
class Contact:
    id: str
    name: str
    email: str | None = None
    phone: str | None = None

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name.strip() else self.id


class ContactDirectory:
    """Resolves person ids to contact details, plus the management and board rosters."""

    def __init__(
        self,
        people: dict[str, Contact] | None = None,
        management_ids: list[str] | None = None,
        board_member_ids: list[str] | None = None,
    ):
        self.people = dict(people or {})
        self.management_ids = list(management_ids or [])
        self.board_member_ids = list(board_member_ids or [])

    @classmethod
    def from_config(cls, config: WorkflowConfig) -> "ContactDirectory":
        people = {
            person_id: Contact(
                id=person_id,
                name=str(info.get("name") or person_id),
                email=info.get("email"),
                phone=info.get("phone"),
            )
            for person_id, info in config.contacts.items()
        }
        return cls(people, config.management_contacts, config.board_members)

    def lookup(self, person_id: str) -> Contact | None:
        return self.people.get(person_id)

    def resolve(self, person_ids: list[str]) -> list[Contact]:
        """Contacts for the given ids, skipping unknown ids."""
        return [c for c in (self.lookup(pid) for pid in person_ids) if c is not None]

    def management(self) -> list[Contact]:
        return self.resolve(self.management_ids)

    def board(self) -> list[Contact]:
        return self.resolve(self.board_member_ids)


# ---------------------------------------------------------------------------
# Payloads and gateway contract
# ---------------------------------------------------------------------------


@dataclass
class NotificationPayload:
    recipient: str                  # email address or phone number
    channel: str
    template_id: str
    template_data: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient": self.recipient,
            "channel": self.channel,
            "template_id": self.template_id,
            "template_data": dict(self.template_data),
            "user_id": self.user_id,
        }


@dataclass
class DeliveryResult:
    recipient: str
    channel: str
    success: bool
    error: str | None = None


class NotificationGateway(Protocol):
    """External send gateway. Returns one result per payload."""

    def dispatch(self, payloads: list[NotificationPayload]) -> list[DeliveryResult]:
        ...


class NoOpGateway:
    """Gateway that delivers nothing and always reports success."""

    def dispatch(self, payloads: list[NotificationPayload]) -> list[DeliveryResult]:
        for p in payloads:
            logger.debug("noop delivery %s via %s (%s)", p.recipient, p.channel, p.template_id)
        return [DeliveryResult(p.recipient, p.channel, True) for p in payloads]


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def _email(contact: Contact, template_id: str, data: dict[str, Any]) -> NotificationPayload | None:
    if not contact.email:
        return None
    return NotificationPayload(
        recipient=contact.email,
        channel=Channel.EMAIL,
        template_id=template_id,
        template_data={**data, "recipient_name": contact.name},
        user_id=contact.id,
    )


def _sms(contact: Contact, template_id: str, data: dict[str, Any]) -> NotificationPayload | None:
    if not contact.phone:
        return None
    return NotificationPayload(
        recipient=contact.phone,
        channel=Channel.SMS,
        template_id=template_id,
        template_data={**data, "recipient_name": contact.first_name},
        user_id=contact.id,
    )


def _base_data(request: Request) -> dict[str, Any]:
    return {
        "request_id": request.id,
        "request_title": request.title,
        "request_type": request.type,
        "community_id": request.community_id,
        "priority": request.priority,
    }


def _compose_status_changed(
    event: StatusChanged,
    directory: ContactDirectory,
    config: WorkflowConfig,
) -> list[NotificationPayload | None]:
    request = event.request
    data = {
        **_base_data(request),
        "old_status": event.old_status,
        "new_status": event.new_status,
        "status_message": status_message(event.new_status),
        "changed_by": event.actor_name,
    }
    if event.new_status == RequestStatus.HOMEOWNER_REPLY_NEEDED and request.request_info_message:
        data["info_message"] = request.request_info_message

    payloads: list[NotificationPayload | None] = []
    homeowner = directory.lookup(request.homeowner_id)
    if homeowner is not None:
        data["homeowner_name"] = homeowner.name
        payloads.append(_email(homeowner, Template.REQUEST_STATUS_UPDATE, data))
        if event.new_status in config.critical_statuses:
            payloads.append(_sms(homeowner, Template.REQUEST_STATUS_SMS, data))

    if event.new_status == RequestStatus.NEIGHBOR_APPROVAL:
        for neighbor in directory.resolve(request.assigned_neighbor_ids):
            payloads.append(_email(neighbor, Template.NEIGHBOR_APPROVAL_REQUEST, data))
    elif event.new_status in (RequestStatus.BOARD_VOTING, RequestStatus.APPEAL):
        for member in directory.board():
            payloads.append(_email(member, Template.BOARD_VOTING_REQUEST, data))
    elif event.new_status == RequestStatus.CANCELLED:
        for manager in directory.management():
            payloads.append(_email(manager, Template.REQUEST_CANCELLED, data))
    return payloads


def _compose_activity(
    event: RequestActivity,
    directory: ContactDirectory,
) -> list[NotificationPayload | None]:
    request = event.request
    data = {**_base_data(request), **event.details, "actor_name": event.actor_name}
    payloads: list[NotificationPayload | None] = []
    if event.kind == ActivityKind.REQUEST_SUBMITTED:
        for manager in directory.management():
            payloads.append(_email(manager, Template.NEW_REQUEST_SUBMITTED, data))
            if request.priority == Priority.HIGH:
                payloads.append(_sms(manager, Template.NEW_REQUEST_SMS, data))
    elif event.kind == ActivityKind.NEIGHBOR_RESPONSE:
        homeowner = directory.lookup(request.homeowner_id)
        if homeowner is not None:
            payloads.append(_email(homeowner, Template.NEIGHBOR_RESPONSE, data))
    return payloads


def compose_payloads(
    event: StatusChanged | RequestActivity,
    directory: ContactDirectory,
    config: WorkflowConfig,
) -> list[NotificationPayload]:
    """
    Map an event to its addressed payloads.

    Recipients without an address for the channel are skipped. Events without
    a request snapshot, or of an unknown kind, yield an empty list.
    """
    if event.request is None:
        return []
    if isinstance(event, StatusChanged):
        candidates = _compose_status_changed(event, directory, config)
    else:
        candidates = _compose_activity(event, directory)
    return [p for p in candidates if p is not None]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass
class DispatchRecord:
    event_id: str
    kind: str
    request_id: str
    results: list[DeliveryResult] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and all(r.success for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "request_id": self.request_id,
            "success": self.success,
            "error": self.error,
            "results": [
                {"recipient": r.recipient, "channel": r.channel,
                 "success": r.success, "error": r.error}
                for r in self.results
            ],
        }


class NotificationDispatcher:
    """
    Fire-and-forget delivery of workflow events.

    submit() returns immediately; deliver() is the synchronous path used by
    the pool workers and by callers that want the result.

    Only the most recent `history_size` event ids and dispatch records are
    retained; older ones are evicted oldest-first.
    """

    def __init__(
        self,
        gateway: NotificationGateway | None = None,
        directory: ContactDirectory | None = None,
        config: WorkflowConfig | None = None,
        max_workers: int | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        if history_size < 1:
            raise ValueError("history_size must be positive")
        self.gateway = gateway or NoOpGateway()
        self.config = config or WorkflowConfig()
        self.directory = directory or ContactDirectory.from_config(self.config)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.config.dispatch_max_workers,
            thread_name_prefix="arc-dispatch",
        )
        self._lock = threading.Lock()
        self.history_size = history_size
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._pending: set[Future] = set()
        self._records: deque[DispatchRecord] = deque(maxlen=history_size)
        self.failure_count = 0

    def _claim(self, event_id: str) -> bool:
        with self._lock:
            if event_id in self._seen:
                return False
            self._seen.add(event_id)
            self._seen_order.append(event_id)
            if len(self._seen_order) > self.history_size:
                self._seen.discard(self._seen_order.popleft())
            return True

    def submit(self, event: StatusChanged | RequestActivity) -> bool:
        """
        Schedule background delivery of an event.

        Returns False if the event was already dispatched (or queued), or if
        the dispatcher has been closed.
        """
        if not self._claim(event.event_id):
            logger.debug("event %s already dispatched; skipping", event.event_id)
            return False
        try:
            future = self._executor.submit(self.deliver, event, True)
        except RuntimeError as exc:
            # Executor shut down
            self._record_failure(event, DispatchError(event.event_id, str(exc)), [])
            return False
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def deliver(
        self,
        event: StatusChanged | RequestActivity,
        claimed: bool = False,
    ) -> DispatchRecord | None:
        """
        Compose and send an event synchronously.

        Returns the DispatchRecord, or None if the event was already dispatched.
        """
        if not claimed and not self._claim(event.event_id):
            return None

        payloads = compose_payloads(event, self.directory, self.config)
        try:
            results = self.gateway.dispatch(payloads)
        except Exception as exc:
            failed = [
                DeliveryResult(p.recipient, p.channel, False, str(exc)) for p in payloads
            ]
            return self._record_failure(event, DispatchError(event.event_id, str(exc)), failed)

        record = DispatchRecord(event.event_id, event.kind, event.request_id, list(results))
        failures = [r for r in results if not r.success]
        with self._lock:
            self._records.append(record)
            self.failure_count += len(failures)
        for r in failures:
            logger.warning(
                "delivery to %s via %s failed for event %s: %s",
                r.recipient, r.channel, event.event_id, r.error,
            )
        log_event(
            "dispatch.failed" if failures else "dispatch.sent",
            {
                "event_id": event.event_id,
                "request_id": event.request_id,
                "kind": event.kind,
                "payloads": len(payloads),
                "failed": len(failures),
            },
        )
        return record

    def _record_failure(
        self,
        event: StatusChanged | RequestActivity,
        error: DispatchError,
        results: list[DeliveryResult],
    ) -> DispatchRecord:
        logger.warning("%s", error)
        record = DispatchRecord(event.event_id, event.kind, event.request_id, results, str(error))
        with self._lock:
            self._records.append(record)
            self.failure_count += 1
        log_event(
            "dispatch.failed",
            {"event_id": event.event_id, "request_id": event.request_id, "error": str(error)},
            level=logging.WARNING,
        )
        return record

    def records(self, request_id: str | None = None) -> list[DispatchRecord]:
        with self._lock:
            records = list(self._records)
        if request_id is not None:
            records = [r for r in records if r.request_id == request_id]
        return records

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until queued deliveries finish. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)
