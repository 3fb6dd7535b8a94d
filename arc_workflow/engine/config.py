#!/usr/bin/env python3
# Design: DESIGN.md
"""
Workflow Engine Configuration Reader

Reads community-specific configuration from the project's .arc/ directory:
- .arc/config.yaml — database path, approval thresholds, board roster,
                     tick interval, notification options, contact directory

The engine has sensible defaults for all settings and the file is optional.
Relative paths are resolved against the project root.
"""

from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .models import WorkflowConfig


# ---------------------------------------------------------------------------
# Default config.yaml (documented defaults; used when no file exists)
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_YAML = """
database:
  path: ".arc/requests.db"

approvals:
  required_neighbor_approvals: 3

board:
  members: []          # empty: any actor with role board_member may vote
  size: 5              # used for the majority when members is empty
  majority: null       # null: ceil(board size / 2)

tick:
  interval_seconds: 3

notifications:
  critical_statuses: ["approved", "rejected", "requires_changes"]
  notify_on_submit: false
  notify_on_neighbor_response: false
  max_workers: 2

contacts:
  management: []
  people: {}
"""


def _positive_int(value: Any, name: str, minimum: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"config: {name} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ValidationError(f"config: {name} must be >= {minimum}, got {number}")
    return number


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"config: {name} must be a number, got {value!r}") from exc
    if not number > 0:
        raise ValidationError(f"config: {name} must be > 0, got {number}")
    return number


def parse_config(config_doc: dict[str, Any], project_root: str | Path = ".") -> WorkflowConfig:
    """
    Build a WorkflowConfig from a parsed config.yaml document.

    Missing sections fall back to DEFAULT_CONFIG_YAML values.
    """
    project_root = Path(project_root)
    defaults = yaml.safe_load(DEFAULT_CONFIG_YAML)

    # Extract database settings
    db_section = config_doc.get("database") or {}
    db_path = db_section.get("path", defaults["database"]["path"])
    if not Path(db_path).is_absolute():
        db_path = str(project_root / db_path)

    # Extract approval thresholds
    approvals_section = config_doc.get("approvals") or {}
    required_neighbor_approvals = _positive_int(
        approvals_section.get("required_neighbor_approvals", 3),
        "approvals.required_neighbor_approvals",
        minimum=0,
    )

    # Extract board roster
    board_section = config_doc.get("board") or {}
    board_members = [str(m) for m in board_section.get("members") or []]
    board_size = _positive_int(board_section.get("size", 5), "board.size")
    board_majority = board_section.get("majority")
    if board_majority is not None:
        board_majority = _positive_int(board_majority, "board.majority")
        seats = len(board_members) or board_size
        if board_majority > seats:
            raise ValidationError(
                f"config: board.majority ({board_majority}) exceeds the board size ({seats})"
            )

    # Extract tick settings
    tick_section = config_doc.get("tick") or {}
    tick_interval_seconds = _positive_float(
        tick_section.get("interval_seconds", 3), "tick.interval_seconds"
    )

    # Extract notification settings; an explicit empty list disables SMS
    notif_section = config_doc.get("notifications") or {}
    critical_statuses = notif_section.get("critical_statuses")
    if critical_statuses is None:
        critical_statuses = defaults["notifications"]["critical_statuses"]
    if not isinstance(critical_statuses, list):
        raise ValidationError(
            f"config: notifications.critical_statuses must be a list, got {critical_statuses!r}"
        )
    critical_statuses = [str(s) for s in critical_statuses]
    notify_on_submit = bool(notif_section.get("notify_on_submit", False))
    notify_on_neighbor_response = bool(notif_section.get("notify_on_neighbor_response", False))
    max_workers = _positive_int(notif_section.get("max_workers", 2), "notifications.max_workers")

    # Extract contact directory (person id -> name/email/phone)
    contacts_section = config_doc.get("contacts") or {}
    management_contacts = [str(m) for m in contacts_section.get("management") or []]
    contacts: dict[str, dict[str, Any]] = {}
    for person_id, info in (contacts_section.get("people") or {}).items():
        contacts[str(person_id)] = dict(info or {})

    return WorkflowConfig(
        db_path=db_path,
        required_neighbor_approvals=required_neighbor_approvals,
        board_members=board_members,
        board_size=board_size,
        board_majority=board_majority,
        tick_interval_seconds=tick_interval_seconds,
        critical_statuses=critical_statuses,
        notify_on_submit=notify_on_submit,
        notify_on_neighbor_response=notify_on_neighbor_response,
        dispatch_max_workers=max_workers,
        management_contacts=management_contacts,
        contacts=contacts,
    )


def load_workflow_config(
    project_root: str | Path,
    config_yaml_path: str | Path | None = None,
) -> WorkflowConfig:
    """
    Load WorkflowConfig from .arc/config.yaml.

    Args:
        project_root: Root of the project (holds the .arc/ directory).
        config_yaml_path: Override path for config.yaml (default: .arc/config.yaml).

    Returns:
        WorkflowConfig with all settings resolved (defaults applied where missing).
    """
    project_root = Path(project_root)
    config_path = (
        Path(config_yaml_path) if config_yaml_path
        else project_root / ".arc" / "config.yaml"
    )

    config_doc: dict[str, Any] = {}
    if config_path.exists():
        try:
            config_doc = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ValidationError(f"config: {config_path} is not valid YAML: {exc}") from exc
    if not isinstance(config_doc, dict):
        raise ValidationError(f"config: {config_path} must contain a mapping")

    return parse_config(config_doc, project_root)
