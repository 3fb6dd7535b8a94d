#!/usr/bin/env python3
# Design: DESIGN.md
"""
ARC Workflow CLI

Human-facing command-line interface for architectural-change requests.
Covers submission, management review, neighbor and board input, closing
actions, and inspection.

Usage:
    # All commands auto-detect .arc/config.yaml from the current directory
    # or accept --db and --project-root overrides. --actor/--role identify
    # who is acting; homeowner commands default to the request's homeowner.

    arc-workflow submit --homeowner h-1 --title "New fence" --type landscaping
    arc-workflow list [--homeowner h-1] [--status board_voting]
    arc-workflow show <request-id>
    arc-workflow timeline <request-id>

    arc-workflow open-review <request-id> --actor allan-chua
    arc-workflow review <request-id> approved --recommend approve --neighbor n-1 --neighbor n-2
    arc-workflow reply <request-id> "Fence height is 6ft"
    arc-workflow neighbor <request-id> approved --actor n-1
    arc-workflow vote <request-id> approve --actor robert-b
    arc-workflow complete <request-id>
    arc-workflow appeal <request-id> --reason "..."
    arc-workflow comment <request-id> "..."
    arc-workflow cancel <request-id>
    arc-workflow delete <request-id>

    arc-workflow tick                  # re-evaluate all open requests
    arc-workflow dashboard             # counts by status
"""

import argparse
import json
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from arc_workflow.engine.config import load_workflow_config
from arc_workflow.engine.errors import WorkflowError
from arc_workflow.engine.models import Actor, Request, RequestDraft, Role
from arc_workflow.engine.monitoring import configure_logging
from arc_workflow.engine.mutations import (
    AddComment,
    FileAppeal,
    HomeownerReply,
    MarkCompleted,
    Mutation,
    OpenReview,
    RecordBoardVote,
    RecordManagementReview,
    RecordNeighborApproval,
)
from arc_workflow.engine.notifications import ContactDirectory, NoOpGateway, NotificationDispatcher
from arc_workflow.engine.orchestrator import RequestOrchestrator
from arc_workflow.engine.store import SqliteRequestStore
from arc_workflow.engine.timeline import query_timeline
from arc_workflow.engine.workflow import progress_percentage


def _find_project_root(start: Path | None = None) -> Path:
    """Walk up from start directory to find .arc/ directory."""
    current = start or Path.cwd()
    for candidate in [current] + list(current.parents):
        if (candidate / ".arc").exists():
            return candidate
    return current  # fallback to cwd


@contextmanager
def _session(args: argparse.Namespace) -> Iterator[RequestOrchestrator]:
    """Open the store, build an orchestrator from args or auto-discovery, close on exit."""
    project_root = Path(args.project_root) if args.project_root else _find_project_root()
    config = load_workflow_config(project_root)

    db_path = args.db if args.db else config.db_path
    store = SqliteRequestStore.open(db_path)
    dispatcher = NotificationDispatcher(
        NoOpGateway(), ContactDirectory.from_config(config), config
    )
    orch = RequestOrchestrator(store, dispatcher, config)
    try:
        yield orch
    finally:
        orch.close()
        store.close()


def _fail(exc: WorkflowError) -> int:
    print(f"Error: {exc}", file=sys.stderr)
    return 1


def _actor(
    args: argparse.Namespace,
    orch: RequestOrchestrator,
    default_role: str,
    default_id: str | None = None,
) -> Actor:
    actor_id = args.actor or default_id or "cli-user"
    name = args.actor_name
    if not name:
        contact = orch.config.contacts.get(actor_id) or {}
        name = contact.get("name") or actor_id
    return Actor(id=actor_id, name=name, role=args.role or default_role)


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_request(request: Request) -> None:
    approve, reject = request.vote_tally()
    print(f"Request {request.id}: {request.title}")
    print(f"  Homeowner:  {request.homeowner_id}")
    print(f"  Type:       {request.type} ({request.priority} priority)")
    print(f"  Status:     {request.status} ({progress_percentage(request.status)}%)")
    print(f"  Submitted:  {request.submitted_at[:19]}")
    if request.completed_at:
        print(f"  Completed:  {request.completed_at[:19]}")
    review = request.management_review
    if review is not None:
        recommendation = f", recommends {review.recommendation}" if review.recommendation else ""
        print(f"  Review:     {review.status}{recommendation} (by {review.reviewer_id})")
    if request.request_info_message:
        print(f"  Info asked: {request.request_info_message}")
    if request.neighbor_approvals:
        print(f"  Neighbors:  {request.approved_neighbor_count}/{len(request.neighbor_approvals)} approved")
        for a in request.neighbor_approvals:
            print(f"    - {a.neighbor_id:<16} {a.status}")
    if request.board_votes:
        print(f"  Board:      {approve} approve / {reject} reject")
        for v in request.board_votes:
            print(f"    - {v.board_member_id:<16} {v.vote}")
    if request.appeal is not None:
        print(f"  Appeal:     {request.appeal.reason}")


def _show(args: argparse.Namespace, request: Request) -> None:
    if args.json:
        _emit(request.to_dict())
    else:
        _print_request(request)


# ---------------------------------------------------------------------------
# Submission and inspection
# ---------------------------------------------------------------------------


def cmd_submit(args: argparse.Namespace) -> int:
    """Submit a new request."""
    try:
        with _session(args) as orch:
            draft = RequestDraft(
                homeowner_id=args.homeowner,
                title=args.title,
                type=args.type,
                community_id=args.community or "",
                description=args.description or "",
                lot_number=args.lot,
                priority=args.priority,
            )
            actor = _actor(args, orch, Role.HOMEOWNER, default_id=args.homeowner)
            _show(args, orch.submit(draft, actor))
        return 0
    except WorkflowError as exc:
        return _fail(exc)


def cmd_show(args: argparse.Namespace) -> int:
    """Show one request."""
    try:
        with _session(args) as orch:
            _show(args, orch.get(args.request_id))
        return 0
    except WorkflowError as exc:
        return _fail(exc)


def cmd_list(args: argparse.Namespace) -> int:
    """List requests, optionally for one homeowner or status."""
    try:
        with _session(args) as orch:
            if args.homeowner:
                requests = orch.list_by_homeowner(args.homeowner)
                if args.status:
                    requests = [r for r in requests if r.status == args.status]
            else:
                requests = orch.list_requests(args.status)
    except WorkflowError as exc:
        return _fail(exc)

    if args.json:
        _emit([r.summary() for r in requests])
        return 0
    if not requests:
        print("No requests found.")
        return 0

    print(f"{'ID':<18} {'Status':<24} {'Priority':<8} {'Homeowner':<14} {'Title'}")
    print("-" * 90)
    for r in requests:
        print(f"{r.id:<18} {r.status:<24} {r.priority:<8} {r.homeowner_id:<14} {r.title}")
    print(f"\n{len(requests)} request(s).")
    return 0


def cmd_timeline(args: argparse.Namespace) -> int:
    """Show a request's timeline, newest first."""
    try:
        with _session(args) as orch:
            request = orch.get(args.request_id)
    except WorkflowError as exc:
        return _fail(exc)

    entries = query_timeline(request, kind=args.kind, limit=args.limit)
    if args.json:
        _emit(entries)
        return 0
    print(f"{'Timestamp':<20} {'Kind':<11} {'Actor':<18} {'Description'}")
    print("-" * 90)
    for e in entries:
        print(f"{e['timestamp'][:19]:<20} {e['kind']:<11} {e['actor_name'][:18]:<18} {e['description']}")
    return 0


def cmd_dashboard(args: argparse.Namespace) -> int:
    """Show request counts by status."""
    try:
        with _session(args) as orch:
            data = orch.dashboard()
    except WorkflowError as exc:
        return _fail(exc)

    if args.json:
        _emit(data)
        return 0
    print(f"Requests: {data['total_requests']} total, {data['open_requests']} open")
    for status, count in sorted(data["status_counts"].items()):
        print(f"  {status:<24} {count}")
    return 0


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def _run_mutation(
    args: argparse.Namespace,
    build: Callable[[argparse.Namespace], Mutation],
    default_role: str,
    act_as_homeowner: bool = False,
) -> int:
    try:
        with _session(args) as orch:
            request = orch.get(args.request_id)
            default_id = request.homeowner_id if act_as_homeowner else None
            actor = _actor(args, orch, default_role, default_id)
            updated = orch.update(args.request_id, build(args), actor)
    except WorkflowError as exc:
        return _fail(exc)

    if updated.status != request.status and not args.json:
        print(f"Request {updated.id}: {request.status} → {updated.status}")
    _show(args, updated)
    return 0


def cmd_open_review(args: argparse.Namespace) -> int:
    """Management opens the compliance review."""
    return _run_mutation(args, lambda a: OpenReview(comments=a.comments), Role.MANAGEMENT)


def cmd_review(args: argparse.Namespace) -> int:
    """Management records its review outcome."""
    return _run_mutation(
        args,
        lambda a: RecordManagementReview(
            status=a.status,
            recommendation=a.recommend,
            comments=a.comments,
            ccrs_references=a.ccrs or [],
            neighbor_ids=a.neighbor or [],
            info_message=a.info,
        ),
        Role.MANAGEMENT,
    )


def cmd_reply(args: argparse.Namespace) -> int:
    """Homeowner answers a request for more information."""
    return _run_mutation(
        args, lambda a: HomeownerReply(message=a.message), Role.HOMEOWNER, act_as_homeowner=True
    )


def cmd_neighbor(args: argparse.Namespace) -> int:
    """An assigned neighbor approves or rejects."""
    return _run_mutation(
        args,
        lambda a: RecordNeighborApproval(status=a.status, comments=a.comments),
        Role.NEIGHBOR,
    )


def cmd_vote(args: argparse.Namespace) -> int:
    """A board member votes."""
    return _run_mutation(
        args, lambda a: RecordBoardVote(vote=a.vote, comments=a.comments), Role.BOARD_MEMBER
    )


def cmd_complete(args: argparse.Namespace) -> int:
    """Management marks approved work completed."""
    return _run_mutation(args, lambda a: MarkCompleted(notes=a.notes), Role.MANAGEMENT)


def cmd_appeal(args: argparse.Namespace) -> int:
    """Homeowner appeals a rejection."""
    return _run_mutation(
        args,
        lambda a: FileAppeal(reason=a.reason, additional_info=a.info),
        Role.HOMEOWNER,
        act_as_homeowner=True,
    )


def cmd_comment(args: argparse.Namespace) -> int:
    """Add a comment to the timeline."""
    return _run_mutation(
        args, lambda a: AddComment(text=a.text), Role.HOMEOWNER, act_as_homeowner=True
    )


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a request."""
    try:
        with _session(args) as orch:
            request = orch.get(args.request_id)
            actor = _actor(args, orch, Role.HOMEOWNER, request.homeowner_id)
            cancelled = orch.cancel(args.request_id, actor, reason=args.reason)
    except WorkflowError as exc:
        return _fail(exc)

    if args.json:
        _emit(cancelled.to_dict())
    else:
        print(f"Request {cancelled.id} CANCELLED.")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a request that has not entered review."""
    try:
        with _session(args) as orch:
            orch.delete(args.request_id)
    except WorkflowError as exc:
        return _fail(exc)
    print(f"Request {args.request_id} deleted.")
    return 0


def cmd_tick(args: argparse.Namespace) -> int:
    """Re-evaluate every open request."""
    try:
        with _session(args) as orch:
            changed = orch.tick()
    except WorkflowError as exc:
        return _fail(exc)

    if args.json:
        _emit([c.to_dict() for c in changed])
        return 0
    for c in changed:
        print(f"  {c.request_id}: {c.old_status} → {c.new_status}")
    print(f"Tick complete: {len(changed)} transition(s).")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arc-workflow",
        description="ARC Workflow CLI: architectural-change request lifecycle",
    )
    parser.add_argument(
        "--db",
        metavar="PATH",
        help="Path to requests.db (default: read from .arc/config.yaml)",
    )
    parser.add_argument(
        "--project-root",
        metavar="PATH",
        help="Path to project root (default: auto-detect from .arc/)",
    )
    parser.add_argument("--actor", help="Acting person id")
    parser.add_argument("--actor-name", help="Acting person display name")
    parser.add_argument(
        "--role",
        choices=[Role.HOMEOWNER, Role.MANAGEMENT, Role.BOARD_MEMBER, Role.NEIGHBOR],
        help="Acting role (default depends on the command)",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # submit
    p_submit = subparsers.add_parser("submit", help="Submit a new request")
    p_submit.add_argument("--homeowner", required=True, help="Homeowner id")
    p_submit.add_argument("--title", required=True)
    p_submit.add_argument("--type", required=True, help="Request type (e.g. landscaping)")
    p_submit.add_argument("--priority", default="medium", help="low | medium | high")
    p_submit.add_argument("--description")
    p_submit.add_argument("--community")
    p_submit.add_argument("--lot")
    p_submit.set_defaults(func=cmd_submit)

    # show
    p_show = subparsers.add_parser("show", help="Show one request")
    p_show.add_argument("request_id")
    p_show.set_defaults(func=cmd_show)

    # list
    p_list = subparsers.add_parser("list", help="List requests")
    p_list.add_argument("--homeowner", help="Only this homeowner's requests")
    p_list.add_argument("--status", help="Filter by status")
    p_list.set_defaults(func=cmd_list)

    # timeline
    p_timeline = subparsers.add_parser("timeline", help="Show a request's timeline")
    p_timeline.add_argument("request_id")
    p_timeline.add_argument("--kind", help="Filter by event kind")
    p_timeline.add_argument("--limit", type=int, default=50, help="Max entries")
    p_timeline.set_defaults(func=cmd_timeline)

    # open-review
    p_open = subparsers.add_parser("open-review", help="Management opens review")
    p_open.add_argument("request_id")
    p_open.add_argument("--comments")
    p_open.set_defaults(func=cmd_open_review)

    # review
    p_review = subparsers.add_parser("review", help="Record the management review outcome")
    p_review.add_argument("request_id")
    p_review.add_argument("status", help="pending | approved | rejected | needs_info")
    p_review.add_argument("--recommend", help="approve | reject")
    p_review.add_argument("--comments")
    p_review.add_argument("--info", help="Information requested from the homeowner")
    p_review.add_argument("--ccrs", action="append", help="CC&R section reference (repeatable)")
    p_review.add_argument("--neighbor", action="append", help="Neighbor id to assign (repeatable)")
    p_review.set_defaults(func=cmd_review)

    # reply
    p_reply = subparsers.add_parser("reply", help="Homeowner replies to an info request")
    p_reply.add_argument("request_id")
    p_reply.add_argument("message")
    p_reply.set_defaults(func=cmd_reply)

    # neighbor
    p_neighbor = subparsers.add_parser("neighbor", help="Record a neighbor response")
    p_neighbor.add_argument("request_id")
    p_neighbor.add_argument("status", choices=["approved", "rejected"])
    p_neighbor.add_argument("--comments")
    p_neighbor.set_defaults(func=cmd_neighbor)

    # vote
    p_vote = subparsers.add_parser("vote", help="Record a board vote")
    p_vote.add_argument("request_id")
    p_vote.add_argument("vote", choices=["approve", "reject", "abstain"])
    p_vote.add_argument("--comments")
    p_vote.set_defaults(func=cmd_vote)

    # complete
    p_complete = subparsers.add_parser("complete", help="Mark approved work completed")
    p_complete.add_argument("request_id")
    p_complete.add_argument("--notes")
    p_complete.set_defaults(func=cmd_complete)

    # appeal
    p_appeal = subparsers.add_parser("appeal", help="Appeal a rejection")
    p_appeal.add_argument("request_id")
    p_appeal.add_argument("--reason", required=True)
    p_appeal.add_argument("--info", help="Additional information")
    p_appeal.set_defaults(func=cmd_appeal)

    # comment
    p_comment = subparsers.add_parser("comment", help="Add a timeline comment")
    p_comment.add_argument("request_id")
    p_comment.add_argument("text")
    p_comment.set_defaults(func=cmd_comment)

    # cancel
    p_cancel = subparsers.add_parser("cancel", help="Cancel a request")
    p_cancel.add_argument("request_id")
    p_cancel.add_argument("--reason")
    p_cancel.set_defaults(func=cmd_cancel)

    # delete
    p_delete = subparsers.add_parser("delete", help="Delete a request not yet in review")
    p_delete.add_argument("request_id")
    p_delete.set_defaults(func=cmd_delete)

    # tick
    p_tick = subparsers.add_parser("tick", help="Re-evaluate all open requests")
    p_tick.set_defaults(func=cmd_tick)

    # dashboard
    p_dash = subparsers.add_parser("dashboard", help="Show counts by status")
    p_dash.set_defaults(func=cmd_dashboard)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
