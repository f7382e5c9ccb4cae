"""Tests for SQLite storage."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from td.errors import StoreError
from td.models import (
    ActionLog, ActionType, Comment, Handoff, Issue, IssueFile, Log, SessionRow,
    Status, generate_action_id, now_utc,
)
from td.storage.sqlite_store import SQLiteStorage, db_timestamp


@pytest.fixture
def store():
    """Create a temporary storage for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = SQLiteStorage(path)
    yield s
    s.close()
    os.unlink(path)


def _make_issue(id: str, title: str = "Test", **kwargs) -> Issue:
    defaults = dict(
        id=id, title=title, status=Status.OPEN, priority="P2",
        type="task", created_at=now_utc(), updated_at=now_utc(),
    )
    defaults.update(kwargs)
    return Issue(**defaults)


def _action(entity_id: str, action_type: str, ts: datetime) -> ActionLog:
    return ActionLog(
        id=generate_action_id(), session_id="ses_test", action_type=action_type,
        entity_id=entity_id, timestamp=ts,
    )


class TestIssueCRUD:
    def test_create_and_get(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-abc123", "My Issue", labels=["ui", "bug"]))
        got = store.get_issue("td-abc123")
        assert got is not None
        assert got.title == "My Issue"
        assert got.status == Status.OPEN
        assert got.labels == ["ui", "bug"]

    def test_get_nonexistent(self, store: SQLiteStorage):
        assert store.get_issue("td-nope") is None

    def test_duplicate_id_raises_store_error(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        with pytest.raises(StoreError):
            store.create_issue(_make_issue("td-1"))

    def test_update(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1", "Original"))
        store.update_issue("td-1", {"title": "Updated", "priority": "P0"})
        got = store.get_issue("td-1")
        assert got.title == "Updated"
        assert got.priority == "P0"

    def test_update_unknown_field(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        with pytest.raises(StoreError):
            store.update_issue("td-1", {"assignee": "bob"})

    def test_update_missing_issue(self, store: SQLiteStorage):
        with pytest.raises(StoreError):
            store.update_issue("td-missing", {"title": "x"})

    def test_close_sets_closed_at_and_reopen_clears_it(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.update_issue("td-1", {"status": Status.CLOSED})
        assert store.get_issue("td-1").closed_at is not None
        store.update_issue("td-1", {"status": Status.OPEN})
        assert store.get_issue("td-1").closed_at is None

    def test_list_issues_restricted_to_ids(self, store: SQLiteStorage):
        for i in range(5):
            store.create_issue(_make_issue(f"td-{i}"))
        got = store.list_issues(ids=["td-1", "td-3", "td-missing"])
        assert [i.id for i in got] == ["td-1", "td-3"]

    def test_list_issues_sort_and_limit(self, store: SQLiteStorage):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i, pri in enumerate(["P3", "P0", "P1"]):
            store.create_issue(_make_issue(f"td-{i}", priority=pri,
                                           created_at=base + timedelta(hours=i)))
        assert [i.id for i in store.list_issues(sort_by="priority")] == ["td-1", "td-2", "td-0"]
        assert [i.id for i in store.list_issues(descending=True, limit=2)] == ["td-2", "td-1"]

    def test_get_children(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-p"))
        store.create_issue(_make_issue("td-c1", parent_id="td-p"))
        store.create_issue(_make_issue("td-c2", parent_id="td-p"))
        store.create_issue(_make_issue("td-x"))
        assert store.get_children("td-p") == ["td-c1", "td-c2"]


class TestTimestamps:
    def test_db_timestamp_is_fixed_width(self):
        a = db_timestamp(datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc))
        b = db_timestamp(datetime(2026, 1, 1, 0, 0, 0, 5, tzinfo=timezone.utc))
        assert len(a) == len(b)
        assert a < b


class TestDependencies:
    def test_add_and_get(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.create_issue(_make_issue("td-2"))
        store.add_dependency("td-2", "td-1", "depends_on")
        assert store.get_dependencies("td-2") == ["td-1"]
        assert store.get_blocked_by("td-1") == ["td-2"]
        assert store.dependency_exists("td-2", "td-1")
        assert not store.dependency_exists("td-1", "td-2")

    def test_remove(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.create_issue(_make_issue("td-2"))
        store.add_dependency("td-2", "td-1", "depends_on")
        store.remove_dependency("td-2", "td-1")
        assert store.get_dependencies("td-2") == []
        # Removing again is not an error
        store.remove_dependency("td-2", "td-1")

    def test_open_deps(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.create_issue(_make_issue("td-2"))
        store.create_issue(_make_issue("td-3", status=Status.CLOSED))
        store.add_dependency("td-2", "td-1", "depends_on")
        store.add_dependency("td-1", "td-3", "depends_on")
        assert store.get_issues_with_open_deps() == {"td-2"}


class TestReadyWork:
    def test_unblocked_is_ready(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        assert [i.id for i in store.get_ready_work()] == ["td-1"]

    def test_blocked_not_ready(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.create_issue(_make_issue("td-2"))
        store.add_dependency("td-2", "td-1", "depends_on")
        assert [i.id for i in store.get_ready_work()] == ["td-1"]

    def test_unblocked_after_close(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.create_issue(_make_issue("td-2"))
        store.add_dependency("td-2", "td-1", "depends_on")
        store.update_issue("td-1", {"status": Status.CLOSED})
        assert [i.id for i in store.get_ready_work()] == ["td-2"]

    def test_review_and_closed_not_ready(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1", status=Status.IN_REVIEW))
        store.create_issue(_make_issue("td-2", status=Status.CLOSED))
        store.create_issue(_make_issue("td-3", status=Status.IN_PROGRESS))
        assert [i.id for i in store.get_ready_work()] == ["td-3"]

    def test_ordered_by_priority(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1", priority="P3"))
        store.create_issue(_make_issue("td-2", priority="P0"))
        assert [i.id for i in store.get_ready_work(limit=1)] == ["td-2"]


class TestEventStreams:
    def test_logs(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        log_id = store.add_log(Log(issue_id="td-1", session_id="ses_a", message="started"))
        assert log_id > 0
        logs = store.get_logs("td-1")
        assert [l.message for l in logs] == ["started"]

    def test_comments(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.add_comment(Comment(issue_id="td-1", session_id="ses_a", text="First"))
        store.add_comment(Comment(issue_id="td-1", session_id="ses_a", text="Second"))
        assert [c.text for c in store.get_comments("td-1")] == ["First", "Second"]

    def test_latest_handoff(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        t0 = now_utc()
        store.add_handoff(Handoff(issue_id="td-1", session_id="s", done=["old"], timestamp=t0))
        store.add_handoff(Handoff(issue_id="td-1", session_id="s", done=["new"],
                                  remaining=["tests"], timestamp=t0 + timedelta(seconds=1)))
        latest = store.get_latest_handoff("td-1")
        assert latest.done == ["new"]
        assert latest.remaining == ["tests"]
        assert store.get_latest_handoff("td-none") is None

    def test_link_file_replaces_existing_link(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1"))
        store.link_file(IssueFile(issue_id="td-1", file_path="src/a.py"))
        store.link_file(IssueFile(issue_id="td-1", file_path="src/a.py", role="test"))
        files = store.get_linked_files("td-1")
        assert len(files) == 1
        assert files[0].role == "test"


class TestActionLog:
    def test_rowid_tracking(self, store: SQLiteStorage):
        assert store.max_action_rowid() == 0
        store.log_action(_action("td-1", ActionType.CREATE, now_utc()))
        mark = store.max_action_rowid()
        store.log_action(_action("td-1", ActionType.UPDATE, now_utc()))
        after = store.get_actions_after_rowid(mark)
        assert [a.action_type for a in after] == [ActionType.UPDATE]

    def test_list_filters(self, store: SQLiteStorage):
        store.log_action(_action("td-1", ActionType.CREATE, now_utc()))
        store.log_action(_action("td-2", ActionType.CREATE, now_utc()))
        assert len(store.list_action_log(entity_id="td-2")) == 1
        assert len(store.list_action_log(action_type=ActionType.CREATE)) == 2

    def test_rejected_in_progress(self, store: SQLiteStorage):
        t0 = now_utc()
        for id_ in ("td-1", "td-2", "td-3"):
            store.create_issue(_make_issue(id_, status=Status.IN_PROGRESS))
        store.log_action(_action("td-1", ActionType.REJECT, t0))
        store.log_action(_action("td-2", ActionType.REJECT, t0))
        store.log_action(_action("td-2", ActionType.REVIEW, t0 + timedelta(seconds=1)))
        assert store.get_rejected_in_progress_ids() == {"td-1"}

    def test_rejected_tie_broken_by_insertion_order(self, store: SQLiteStorage):
        t0 = now_utc()
        store.create_issue(_make_issue("td-1", status=Status.IN_PROGRESS))
        store.log_action(_action("td-1", ActionType.REJECT, t0))
        store.log_action(_action("td-1", ActionType.REVIEW, t0))
        assert store.get_rejected_in_progress_ids() == set()

    def test_rejected_but_closed_excluded(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-1", status=Status.CLOSED))
        store.log_action(_action("td-1", ActionType.REJECT, now_utc()))
        assert store.get_rejected_in_progress_ids() == set()


class TestSessions:
    def _row(self, id: str, fp: str = "explicit_a", **kwargs) -> SessionRow:
        defaults = dict(id=id, branch="main", agent_type=fp, started_at=now_utc())
        defaults.update(kwargs)
        return SessionRow(**defaults)

    def test_insert_if_absent(self, store: SQLiteStorage):
        assert store.insert_session_if_absent(self._row("ses_1", name="first"))
        assert not store.insert_session_if_absent(self._row("ses_1", name="second"))
        assert store.get_session_by_id("ses_1").name == "first"

    def test_lookup_by_fingerprint(self, store: SQLiteStorage):
        t0 = now_utc()
        store.upsert_session(self._row("ses_old", last_activity=t0))
        store.upsert_session(self._row("ses_new", last_activity=t0 + timedelta(seconds=5)))
        store.upsert_session(self._row("ses_other", fp="explicit_b"))
        got = store.get_session_by_fingerprint("main", "explicit_a", 0)
        assert got.id == "ses_new"
        assert store.get_session_by_fingerprint("dev", "explicit_a", 0) is None

    def test_update_name_and_activity(self, store: SQLiteStorage):
        store.upsert_session(self._row("ses_1"))
        when = now_utc() + timedelta(minutes=1)
        store.update_session_name("ses_1", "fixer")
        store.update_session_activity("ses_1", when)
        row = store.get_session_by_id("ses_1")
        assert row.name == "fixer"
        assert row.last_activity == when

    def test_delete_stale(self, store: SQLiteStorage):
        now = now_utc()
        store.upsert_session(self._row("ses_old", last_activity=now - timedelta(days=30)))
        store.upsert_session(self._row("ses_fresh", last_activity=now))
        assert store.delete_stale_sessions(now - timedelta(days=7)) == 1
        assert [s.id for s in store.list_all_sessions()] == ["ses_fresh"]


class TestPartialIDResolution:
    def test_exact_match(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-abc123"))
        assert store.resolve_id("td-abc123") == "td-abc123"

    def test_bare_id(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-abc123"))
        assert store.resolve_id("abc123") == "td-abc123"

    def test_prefix_match(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-abc123"))
        assert store.resolve_id("abc") == "td-abc123"

    def test_ambiguous(self, store: SQLiteStorage):
        store.create_issue(_make_issue("td-abc123"))
        store.create_issue(_make_issue("td-abc456"))
        assert store.resolve_id("abc") is None

    def test_not_found(self, store: SQLiteStorage):
        assert store.resolve_id("zzz") is None
