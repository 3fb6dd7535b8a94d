#!/usr/bin/env python3
# Design: DESIGN.md
"""
Request Timeline Helpers

Every action on a request is recorded in its timeline. The timeline is
append-only: entries are never rewritten or removed, and every commit adds at
least one entry.

Actors:
- The homeowner id for submissions, replies, appeals and cancellations
- Management / board member / neighbor ids for reviews, votes and approvals
- "system" for engine-driven transitions and automatic follow-ups

Kinds (models.EventKind):
- submitted  — request created
- reviewed   — management opened or recorded a review
- management — management requested information or was notified
- neighbor   — a neighbor responded
- vote       — a board member voted
- approved / rejected — board decision reached
- updated    — engine moved the request to a new phase
- appeal     — homeowner appealed a rejection
- cancelled / completed — closing actions
- comment / system — free-form notes
"""

from typing import Any

from .models import Request, TimelineEvent


def next_event_id(request: Request) -> str:
    """Return the id the next appended event will receive."""
    return f"{request.id}-evt-{len(request.timeline) + 1}"


def append(
    request: Request,
    kind: str,
    description: str,
    actor_id: str,
    actor_name: str,
    timestamp: str,
    metadata: dict[str, Any] | None = None,
) -> TimelineEvent:
    """
    Append an event to the request's timeline.

    This function does NOT persist. The orchestrator commits the whole
    request, so the event is atomic with the change it records.

    Returns:
        The appended TimelineEvent.
    """
    event = TimelineEvent(
        id=next_event_id(request),
        timestamp=timestamp,
        actor_id=actor_id,
        actor_name=actor_name,
        kind=kind,
        description=description,
        metadata=dict(metadata or {}),
    )
    request.timeline.append(event)
    return event


def events_since(request: Request, mark: int) -> list[TimelineEvent]:
    """Return events appended after the timeline had `mark` entries."""
    return list(request.timeline[mark:])


def query_timeline(
    request: Request,
    kind: str | None = None,
    actor_id: str | None = None,
    transitions_only: bool = False,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    Query a request's timeline with optional filters.

    All filters are combined with AND. Results are ordered newest-first.
    """
    result: list[dict[str, Any]] = []
    for event in reversed(request.timeline):
        if kind is not None and event.kind != kind:
            continue
        if actor_id is not None and event.actor_id != actor_id:
            continue
        if transitions_only and not event.is_transition:
            continue
        result.append(event.to_dict())
        if len(result) >= limit:
            break
    return result
