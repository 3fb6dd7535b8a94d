"""
Tests for engine/config.py

Validates:
- Defaults apply when .arc/config.yaml is absent
- All sections are read from a real config.yaml
- Relative database paths resolve against the project root
- Invalid values raise ValidationError
- The contact directory is built from the contacts section
"""

import textwrap

import pytest

from arc_workflow.engine.config import DEFAULT_CONFIG_YAML, load_workflow_config, parse_config
from arc_workflow.engine.errors import ValidationError
from arc_workflow.engine.notifications import ContactDirectory


def write_config(root, body: str):
    arc_dir = root / ".arc"
    arc_dir.mkdir(parents=True, exist_ok=True)
    (arc_dir / "config.yaml").write_text(textwrap.dedent(body), encoding="utf-8")


def test_defaults_without_config_file(tmp_path):
    config = load_workflow_config(tmp_path)
    assert config.db_path == str(tmp_path / ".arc" / "requests.db")
    assert config.required_neighbor_approvals == 3
    assert config.board_members == []
    assert config.board_size == 5
    assert config.majority == 3
    assert config.tick_interval_seconds == 3.0
    assert config.critical_statuses == ["approved", "rejected", "requires_changes"]
    assert config.notify_on_submit is False
    assert config.notify_on_neighbor_response is False
    assert config.dispatch_max_workers == 2
    assert config.contacts == {}


def test_default_yaml_matches_parse_defaults(tmp_path):
    import yaml

    from_defaults = parse_config(yaml.safe_load(DEFAULT_CONFIG_YAML), tmp_path)
    assert from_defaults == load_workflow_config(tmp_path)


def test_full_config_file(tmp_path):
    write_config(tmp_path, """
        database:
          path: data/arc.db
        approvals:
          required_neighbor_approvals: 2
        board:
          members: [b-robert, b-dean, b-maria, b-tom]
          majority: 3
        tick:
          interval_seconds: 0.5
        notifications:
          critical_statuses: [approved]
          notify_on_submit: true
          max_workers: 4
        contacts:
          management: [allan-chua]
          people:
            allan-chua:
              name: Allan Chua
              email: allan@example.org
              phone: "+15550001"
            b-robert:
              name: Robert B
              email: robert@example.org
    """)
    config = load_workflow_config(tmp_path)
    assert config.db_path == str(tmp_path / "data" / "arc.db")
    assert config.required_neighbor_approvals == 2
    assert config.board_members == ["b-robert", "b-dean", "b-maria", "b-tom"]
    assert config.effective_board_size == 4
    assert config.majority == 3
    assert config.tick_interval_seconds == 0.5
    assert config.critical_statuses == ["approved"]
    assert config.notify_on_submit is True
    assert config.dispatch_max_workers == 4

    directory = ContactDirectory.from_config(config)
    assert [c.email for c in directory.management()] == ["allan@example.org"]
    assert [c.name for c in directory.board()] == ["Robert B"]   # others have no contact entry


def test_board_roster_drives_default_majority(tmp_path):
    write_config(tmp_path, """
        board:
          members: [a, b, c, d, e, f, g]
    """)
    assert load_workflow_config(tmp_path).majority == 4


def test_absolute_db_path_kept(tmp_path):
    absolute = tmp_path / "elsewhere" / "x.db"
    write_config(tmp_path, f"""
        database:
          path: {absolute}
    """)
    assert load_workflow_config(tmp_path).db_path == str(absolute)


def test_explicit_config_path(tmp_path):
    custom = tmp_path / "custom.yaml"
    custom.write_text("approvals:\n  required_neighbor_approvals: 5\n", encoding="utf-8")
    assert load_workflow_config(tmp_path, custom).required_neighbor_approvals == 5


def test_empty_file_uses_defaults(tmp_path):
    write_config(tmp_path, "")
    assert load_workflow_config(tmp_path).required_neighbor_approvals == 3


@pytest.mark.parametrize("body", [
    "approvals:\n  required_neighbor_approvals: -1\n",
    "approvals:\n  required_neighbor_approvals: lots\n",
    "board:\n  size: 0\n",
    "board:\n  majority: 0\n",
    "board:\n  size: 5\n  majority: 6\n",
    "board:\n  members: [a, b, c]\n  majority: 4\n",
    "tick:\n  interval_seconds: soon\n",
    "tick:\n  interval_seconds: 0\n",
    "notifications:\n  critical_statuses: approved\n",
    "approvals: [unclosed\n",
    "notifications:\n  max_workers: 0\n",
    "- just\n- a\n- list\n",
])
def test_invalid_values_rejected(tmp_path, body):
    write_config(tmp_path, body)
    with pytest.raises(ValidationError):
        load_workflow_config(tmp_path)


def test_empty_critical_statuses_disables_sms(tmp_path):
    write_config(tmp_path, """
        notifications:
          critical_statuses: []
    """)
    assert load_workflow_config(tmp_path).critical_statuses == []


def test_majority_equal_to_board_size_allowed(tmp_path):
    write_config(tmp_path, """
        board:
          members: [a, b, c]
          majority: 3
    """)
    assert load_workflow_config(tmp_path).majority == 3
