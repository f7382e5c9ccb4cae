"""Tests for data models."""

from datetime import datetime, timezone

from td.models import (
    Handoff, Issue, IssueType, Priority, Status,
    format_rfc3339_seconds, format_timestamp, generate_action_id,
    generate_issue_id, generate_session_id, normalize_issue_id, parse_timestamp,
)


def test_issue_defaults():
    issue = Issue()
    assert issue.status == Status.OPEN
    assert issue.type == IssueType.TASK
    assert issue.priority == Priority.P2
    assert issue.labels == []


def test_issue_to_dict_omitempty():
    issue = Issue(
        id="td-abc123",
        title="Test Issue",
        created_at=datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        updated_at=datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
    )
    d = issue.to_dict()
    assert d["id"] == "td-abc123"
    assert d["priority"] == "P2"
    assert d["created_at"] == "2026-01-15T10:00:00Z"
    assert "description" not in d
    assert "labels" not in d
    assert "parent_id" not in d
    assert "closed_at" not in d


def test_issue_to_dict_with_labels_and_parent():
    issue = Issue(id="td-1", title="x", labels=["a", "b"], parent_id="td-0")
    d = issue.to_dict()
    assert d["labels"] == ["a", "b"]
    assert d["parent_id"] == "td-0"


def test_priority_normalize():
    assert Priority.normalize("1") == "P1"
    assert Priority.normalize("p3") == "P3"
    assert Priority.normalize(" P0 ") == "P0"
    assert Priority.normalize("P7") is None
    assert Priority.normalize("high") is None


def test_priority_rank_orders_critical_first():
    assert Priority.rank("P0") < Priority.rank("P1") < Priority.rank("P4")
    assert Priority.rank("bogus") > Priority.rank("P4")


def test_status_terminal():
    assert Status.is_terminal(Status.CLOSED)
    assert not Status.is_terminal(Status.IN_REVIEW)
    assert Status.is_valid("in_progress")
    assert not Status.is_valid("tombstone")


def test_issue_type_normalize():
    assert IssueType.normalize("Enhancement") == IssueType.FEATURE
    assert IssueType.normalize("feat") == IssueType.FEATURE
    assert IssueType.normalize("BUG") == IssueType.BUG


def test_timestamp_roundtrip():
    dt = datetime(2026, 1, 15, 10, 30, 45, 123456, tzinfo=timezone.utc)
    s = format_timestamp(dt)
    assert s is not None and s.endswith("Z")
    assert parse_timestamp(s) == dt


def test_parse_timestamp_sqlite_default_format():
    dt = parse_timestamp("2026-01-15 10:30:45")
    assert dt == datetime(2026, 1, 15, 10, 30, 45, tzinfo=timezone.utc)


def test_parse_timestamp_empty():
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_rfc3339_seconds_drops_fraction():
    dt = datetime(2026, 1, 15, 10, 30, 45, 999999, tzinfo=timezone.utc)
    assert format_rfc3339_seconds(dt) == "2026-01-15T10:30:45Z"


def test_generated_ids():
    issue_id = generate_issue_id()
    assert issue_id.startswith("td-") and len(issue_id) == 9
    action_id = generate_action_id()
    assert action_id.startswith("al-") and len(action_id) == 11
    assert generate_session_id().startswith("ses_")


def test_normalize_issue_id():
    assert normalize_issue_id("abc123") == "td-abc123"
    assert normalize_issue_id("td-abc123") == "td-abc123"
    assert normalize_issue_id("") == ""


def test_handoff_to_dict_copies_lists():
    h = Handoff(issue_id="td-1", done=["a"], remaining=["b"])
    d = h.to_dict()
    d["done"].append("c")
    assert h.done == ["a"]
    assert d["remaining"] == ["b"]
