"""
ARC Workflow: architectural-change request lifecycle for homeowner associations.

Design: DESIGN.md

Packages:
- engine: request models, state machine, orchestrator, stores, notifications
- cli:    human-facing command-line interface (arc-workflow)
- server: FastMCP server exposing the orchestrator as MCP tools
"""

__version__ = "0.1.0"
