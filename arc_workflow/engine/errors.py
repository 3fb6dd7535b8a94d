#!/usr/bin/env python3
# Design: DESIGN.md
"""
Workflow Engine Error Types

Every error raised across the orchestrator boundary derives from WorkflowError.

Propagation:
- ValidationError, NotFoundError, InvalidTransitionError and
  PreconditionFailedError are raised before anything is committed.
- StoreError is fatal to the calling operation; the caller may retry.
- DispatchError never propagates out of the orchestrator. The dispatcher
  logs it and records failed delivery results instead.
"""


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class ValidationError(WorkflowError, ValueError):
    """Malformed or missing input, or an actor not authorized for the action."""


class UnknownStatusError(ValidationError):
    """Raised when a status literal is outside the wire set and its aliases."""

    def __init__(self, status: str, valid: frozenset[str] | None = None):
        self.status = status
        valid_info = f" Valid statuses: {sorted(valid)}" if valid else ""
        super().__init__(f"Unknown request status: '{status}'.{valid_info}")


class NotFoundError(WorkflowError, LookupError):
    """Raised when a request id is not present in the store."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request '{request_id}' not found")


class InvalidTransitionError(WorkflowError, ValueError):
    """
    Raised when a status change or mutation is not allowed by the state machine.

    When to_status is None the error describes a mutation (e.g. a board vote)
    attempted from a status that does not accept it.
    """

    def __init__(
        self,
        from_status: str,
        to_status: str | None,
        request_id: str | None = None,
        valid_targets: frozenset[str] | None = None,
        action: str | None = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.request_id = request_id
        self.action = action
        request_info = f" (request_id={request_id})" if request_id is not None else ""
        if to_status is None:
            message = (
                f"Cannot {action or 'modify'} request{request_info} "
                f"in status '{from_status}'"
            )
        else:
            message = (
                f"Invalid request transition{request_info}: "
                f"'{from_status}' → '{to_status}'. "
                f"Valid transitions from '{from_status}': "
                f"{sorted(valid_targets or frozenset())}"
            )
        super().__init__(message)


class PreconditionFailedError(WorkflowError):
    """Raised when an operation's precondition no longer holds (e.g. delete after review)."""


class DispatchError(WorkflowError):
    """A notification hand-off to the delivery gateway failed."""

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Dispatch failed for event '{event_id}': {reason}")


class StoreError(WorkflowError):
    """The persistence backend failed to read or write a request."""
