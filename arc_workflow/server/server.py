#!/usr/bin/env python3
# Design: DESIGN.md
"""
ARC Workflow MCP Server

FastMCP server exposing the request orchestrator via MCP tools.
Supports both stdio (local development) and SSE (hosted) transports.

Usage (stdio mode):
    python -m arc_workflow.server.server <db_path> --project-root <path>

Usage (SSE mode, with the periodic tick running every 3 seconds):
    python -m arc_workflow.server.server <db_path> --project-root <path> \
        --transport sse --port 8080 --tick-interval 3

Usage (CLI smoke-test):
    python -m arc_workflow.server.server <db_path> --project-root <path> dashboard

MCP Tools exposed:
    submit_request        — create a request in status 'submitted'
    get_request           — full request state
    list_requests         — requests by homeowner and/or status
    get_timeline          — a request's timeline, newest first
    open_review           — management opens the compliance review
    record_review         — management records its review outcome
    homeowner_reply       — homeowner answers an info request
    record_neighbor_response — assigned neighbor approves/rejects
    record_board_vote     — board member votes
    mark_completed        — management marks approved work done
    file_appeal           — homeowner appeals a rejection
    add_comment           — free-form timeline comment
    cancel_request        — cancel a non-terminal request
    delete_request        — delete a request not yet in review
    run_tick              — re-evaluate all open requests
    list_dispatches       — notification dispatch records

MCP Resources:
    arc://dashboard       — summary dashboard
    arc://request/{id}    — full request state
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from arc_workflow.engine.config import load_workflow_config
from arc_workflow.engine.errors import WorkflowError
from arc_workflow.engine.models import Actor, RequestDraft
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
from arc_workflow.engine.notifications import (
    ContactDirectory,
    NoOpGateway,
    NotificationDispatcher,
    NotificationGateway,
)
from arc_workflow.engine.orchestrator import RequestOrchestrator
from arc_workflow.engine.store import SqliteRequestStore
from arc_workflow.engine.ticker import Ticker
from arc_workflow.engine.timeline import query_timeline


def _error(exc: WorkflowError) -> dict[str, Any]:
    return {"error": str(exc), "error_type": type(exc).__name__}


class ArcServer:
    """
    Request workflow server wrapping the SQLite store.

    Owns the store, dispatcher and optional ticker. The FastMCP tools
    delegate to this class; workflow errors come back as {"error": ...}.
    """

    def __init__(
        self,
        db_path: str,
        project_root: str,
        gateway: NotificationGateway | None = None,
        tick_interval: float | None = None,
    ):
        self.db_path = db_path
        self.project_root = Path(project_root)
        self.config = load_workflow_config(project_root)
        self.store = SqliteRequestStore.open(db_path)
        self.dispatcher = NotificationDispatcher(
            gateway or NoOpGateway(), ContactDirectory.from_config(self.config), self.config
        )
        self.orchestrator = RequestOrchestrator(self.store, self.dispatcher, self.config)
        self.ticker: Ticker | None = None
        if tick_interval:
            self.ticker = Ticker(self.orchestrator, tick_interval)
            self.ticker.start()

    def close(self) -> None:
        """Stop the ticker, drain dispatches and close the database."""
        if self.ticker is not None:
            self.ticker.stop()
        self.orchestrator.close()
        self.store.close()

    # -----------------------------------------------------------------------
    # Requests
    # -----------------------------------------------------------------------

    def submit_request(self, draft: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.orchestrator.submit(RequestDraft.from_dict(draft)).to_dict()
        except WorkflowError as exc:
            return _error(exc)

    def get_request(self, request_id: str) -> dict[str, Any]:
        try:
            return self.orchestrator.get(request_id).to_dict()
        except WorkflowError as exc:
            return _error(exc)

    def list_requests(
        self,
        homeowner_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        if homeowner_id:
            requests = self.orchestrator.list_by_homeowner(homeowner_id)
            if status:
                requests = [r for r in requests if r.status == status]
        else:
            requests = self.orchestrator.list_requests(status)
        return [r.summary() for r in requests]

    def get_timeline(self, request_id: str, limit: int = 50) -> Any:
        try:
            return query_timeline(self.orchestrator.get(request_id), limit=limit)
        except WorkflowError as exc:
            return _error(exc)

    def apply(self, request_id: str, mutation: Mutation, actor: Actor) -> dict[str, Any]:
        """Run a mutation through the orchestrator and return the new state."""
        try:
            return self.orchestrator.update(request_id, mutation, actor).to_dict()
        except WorkflowError as exc:
            return _error(exc)

    def cancel_request(self, request_id: str, actor: Actor, reason: str | None = None) -> dict[str, Any]:
        try:
            return self.orchestrator.cancel(request_id, actor, reason).to_dict()
        except WorkflowError as exc:
            return _error(exc)

    def delete_request(self, request_id: str) -> dict[str, Any]:
        try:
            self.orchestrator.delete(request_id)
        except WorkflowError as exc:
            return _error(exc)
        return {"request_id": request_id, "deleted": True}

    def run_tick(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.orchestrator.tick()]

    def list_dispatches(self, request_id: str | None = None) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.dispatcher.records(request_id)]

    def get_dashboard(self) -> dict[str, Any]:
        data = self.orchestrator.dashboard()
        data["ticker_running"] = bool(self.ticker and self.ticker.is_running)
        return data


# ---------------------------------------------------------------------------
# FastMCP server factory
# ---------------------------------------------------------------------------


def create_mcp_server(
    db_path: str,
    project_root: str,
    tick_interval: float | None = None,
) -> FastMCP:
    """Create a FastMCP server wrapping an ArcServer."""
    srv = ArcServer(db_path, project_root, tick_interval=tick_interval)
    mcp = FastMCP("arc-workflow")

    def actor(actor_id: str, actor_name: str | None, role: str) -> Actor:
        contact = srv.config.contacts.get(actor_id) or {}
        return Actor(id=actor_id, name=actor_name or contact.get("name") or actor_id, role=role)

    @mcp.tool()
    def submit_request(
        homeowner_id: str,
        title: str,
        type: str,
        description: str = "",
        priority: str = "medium",
        community_id: str = "",
        lot_number: str | None = None,
    ) -> str:
        """
        Submit a new architectural-change request.

        Args:
            homeowner_id: Submitting homeowner
            title: Short title (required)
            type: exterior_modification | landscaping | architectural_change |
                  adu_jadu | maintenance_request | violation_report | other
            priority: low | medium | high
        """
        draft = {
            "homeowner_id": homeowner_id,
            "title": title,
            "type": type,
            "description": description,
            "priority": priority,
            "community_id": community_id,
            "lot_number": lot_number,
        }
        return json.dumps(srv.submit_request(draft), indent=2, default=str)

    @mcp.tool()
    def get_request(request_id: str) -> str:
        """Full request state including approvals, votes, review and timeline."""
        return json.dumps(srv.get_request(request_id), indent=2, default=str)

    @mcp.tool()
    def list_requests(homeowner_id: str | None = None, status: str | None = None) -> str:
        """List requests (newest first), optionally for one homeowner and/or status."""
        return json.dumps(srv.list_requests(homeowner_id, status), indent=2, default=str)

    @mcp.tool()
    def get_timeline(request_id: str, limit: int = 50) -> str:
        """A request's timeline events, newest first."""
        return json.dumps(srv.get_timeline(request_id, limit), indent=2, default=str)

    @mcp.tool()
    def open_review(request_id: str, actor_id: str, actor_name: str | None = None,
                    comments: str | None = None) -> str:
        """Management opens the CC&R review (submitted → under_review)."""
        result = srv.apply(
            request_id, OpenReview(comments=comments), actor(actor_id, actor_name, "management")
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def record_review(
        request_id: str,
        actor_id: str,
        status: str,
        recommendation: str | None = None,
        comments: str | None = None,
        info_message: str | None = None,
        neighbor_ids: list[str] | None = None,
        ccrs_references: list[str] | None = None,
        actor_name: str | None = None,
    ) -> str:
        """
        Record the management review outcome.

        status approved + recommendation approve moves the request to
        neighbor approval; status needs_info asks the homeowner for more
        information. neighbor_ids assigns the neighbors who must approve.
        """
        mutation = RecordManagementReview(
            status=status,
            recommendation=recommendation,
            comments=comments,
            ccrs_references=ccrs_references or [],
            neighbor_ids=neighbor_ids or [],
            info_message=info_message,
        )
        result = srv.apply(request_id, mutation, actor(actor_id, actor_name, "management"))
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def homeowner_reply(request_id: str, actor_id: str, message: str,
                        actor_name: str | None = None) -> str:
        """Homeowner answers a request for more information; review resumes."""
        result = srv.apply(
            request_id, HomeownerReply(message=message), actor(actor_id, actor_name, "homeowner")
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def record_neighbor_response(request_id: str, actor_id: str, status: str,
                                 comments: str | None = None,
                                 actor_name: str | None = None) -> str:
        """An assigned neighbor approves or rejects (status: approved | rejected)."""
        result = srv.apply(
            request_id,
            RecordNeighborApproval(status=status, comments=comments),
            actor(actor_id, actor_name, "neighbor"),
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def record_board_vote(request_id: str, actor_id: str, vote: str,
                          comments: str | None = None,
                          actor_name: str | None = None) -> str:
        """A board member votes approve | reject | abstain. A repeat vote replaces the earlier one."""
        result = srv.apply(
            request_id,
            RecordBoardVote(vote=vote, comments=comments),
            actor(actor_id, actor_name, "board_member"),
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def mark_completed(request_id: str, actor_id: str, notes: str | None = None,
                       actor_name: str | None = None) -> str:
        """Management marks approved work as completed."""
        result = srv.apply(
            request_id, MarkCompleted(notes=notes), actor(actor_id, actor_name, "management")
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def file_appeal(request_id: str, actor_id: str, reason: str,
                    additional_info: str | None = None,
                    actor_name: str | None = None) -> str:
        """Homeowner appeals a rejected request; the board votes again."""
        result = srv.apply(
            request_id,
            FileAppeal(reason=reason, additional_info=additional_info),
            actor(actor_id, actor_name, "homeowner"),
        )
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def add_comment(request_id: str, actor_id: str, text: str, role: str = "homeowner",
                    actor_name: str | None = None) -> str:
        """Append a comment to the request timeline."""
        result = srv.apply(request_id, AddComment(text=text), actor(actor_id, actor_name, role))
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def cancel_request(request_id: str, actor_id: str, role: str = "homeowner",
                       reason: str | None = None, actor_name: str | None = None) -> str:
        """Cancel a non-terminal request. Management is notified."""
        result = srv.cancel_request(request_id, actor(actor_id, actor_name, role), reason)
        return json.dumps(result, indent=2, default=str)

    @mcp.tool()
    def delete_request(request_id: str) -> str:
        """Delete a request that is still 'submitted' with no review started."""
        return json.dumps(srv.delete_request(request_id), indent=2)

    @mcp.tool()
    def run_tick() -> str:
        """Re-evaluate every open request and return the transitions committed."""
        return json.dumps(srv.run_tick(), indent=2, default=str)

    @mcp.tool()
    def list_dispatches(request_id: str | None = None) -> str:
        """Notification dispatch records with per-recipient results."""
        return json.dumps(srv.list_dispatches(request_id), indent=2, default=str)

    # MCP Resources
    @mcp.resource("arc://dashboard")
    def dashboard() -> str:
        """Summary dashboard: request counts by status and dispatch failures."""
        return json.dumps(srv.get_dashboard(), indent=2)

    @mcp.resource("arc://request/{request_id}")
    def request_resource(request_id: str) -> str:
        """Full request state."""
        return json.dumps(srv.get_request(request_id), indent=2, default=str)

    return mcp


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        description="ARC Workflow MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # MCP server mode (stdio)
    python -m arc_workflow.server.server .arc/requests.db --project-root .

    # SSE mode with periodic tick
    python -m arc_workflow.server.server requests.db --transport sse --port 8080 --tick-interval 3

    # CLI smoke tests
    python -m arc_workflow.server.server .arc/requests.db --project-root . dashboard
    python -m arc_workflow.server.server .arc/requests.db --project-root . run_tick
        """,
    )
    parser.add_argument("database", help="Path to the request SQLite database")
    parser.add_argument("--project-root", default=".", help="Path to project root")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="stdio")
    parser.add_argument("--port", type=int, default=8080, help="Port for SSE mode")
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Run the periodic tick every N seconds (default: off)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument(
        "command",
        nargs="?",
        help="CLI command (omit for MCP server mode)",
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    db_path = Path(args.database)
    project_root = Path(args.project_root)

    if not args.command:
        # MCP server mode
        mcp_server = create_mcp_server(str(db_path), str(project_root), args.tick_interval)
        if args.transport == "sse":
            mcp_server.settings.port = args.port
            mcp_server.run(transport="sse")
        else:
            mcp_server.run(transport="stdio")
        return

    # CLI mode: create server and run command
    srv = ArcServer(str(db_path), str(project_root))
    try:
        if args.command == "dashboard":
            result = srv.get_dashboard()
        elif args.command == "run_tick":
            result = srv.run_tick()
        elif args.command == "list_requests":
            result = srv.list_requests()
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            sys.exit(1)

        print(json.dumps(result, indent=2, default=str))
    finally:
        srv.close()


if __name__ == "__main__":
    main()
