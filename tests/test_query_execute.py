"""Tests for query evaluation against a store."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from td.dependency import DependencyGraph
from td.errors import QueryValidationError
from td.models import (
    ActionLog, ActionType, Comment, FileRole, Handoff, Issue, IssueFile, IssueType,
    Log, LogType, Status, generate_action_id,
)
from td.query import EvalContext, Evaluator, execute, parse_and_validate, quick_search
from td.query.evaluator import DateRange, resolve_date
from td.query.ast import DateValue
from td.storage.sqlite_store import SQLiteStorage

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

EPIC = "td-epic01"
TASK = "td-task01"
SUBTASK = "td-task02"
BUG = "td-bug001"
DONE = "td-done01"


@pytest.fixture
def store():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = SQLiteStorage(path)
    yield s
    s.close()
    os.unlink(path)


def _make_issue(store: SQLiteStorage, id: str, title: str = "", **kwargs) -> Issue:
    created = kwargs.pop("created_at", NOW - timedelta(days=30))
    issue = Issue(id=id, title=title or id, created_at=created,
                  updated_at=created, **kwargs)
    store.create_issue(issue)
    return issue


@pytest.fixture
def populated(store: SQLiteStorage) -> SQLiteStorage:
    _make_issue(store, EPIC, "Login revamp", type=IssueType.EPIC, priority="P1",
                labels=["deferred"], created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    _make_issue(store, TASK, "Fix login page", priority="P0", parent_id=EPIC,
                labels=["backend", "frontend"],
                created_at=datetime(2026, 1, 10, 10, tzinfo=timezone.utc))
    _make_issue(store, SUBTASK, "Write login tests", status=Status.IN_PROGRESS,
                parent_id=TASK, created_at=datetime(2026, 1, 14, 9, tzinfo=timezone.utc))
    _make_issue(store, BUG, "Crash on save", type=IssueType.BUG, priority="P3",
                description="Segfault when saving",
                created_at=datetime(2026, 1, 15, 8, tzinfo=timezone.utc))
    _make_issue(store, DONE, "Old chore", status=Status.CLOSED,
                created_at=datetime(2026, 1, 5, 6, tzinfo=timezone.utc))

    graph = DependencyGraph(store)
    graph.validate_and_add(BUG, TASK)
    graph.validate_and_add(SUBTASK, DONE)

    store.add_log(Log(issue_id=TASK, session_id="ses_me", message="flaky test found",
                      type="blocker", timestamp=NOW))
    store.add_comment(Comment(issue_id=BUG, session_id="ses_other", text="needs repro"))
    store.add_handoff(Handoff(issue_id=SUBTASK, session_id="ses_me",
                              done=["wrote fixtures"], remaining=["edge cases"]))
    store.link_file(IssueFile(issue_id=TASK, file_path="src/login.py"))
    store.link_file(IssueFile(issue_id=SUBTASK, file_path="tests/test_login.py", role="test"))
    return store


def _ids(store: SQLiteStorage, text: str, **kwargs) -> set[str]:
    kwargs.setdefault("now", NOW)
    return {i.id for i in execute(store, text, **kwargs)}


class TestScenarios:
    def test_epic_labels_cross_entity(self, store: SQLiteStorage):
        _make_issue(store, "td-e", type=IssueType.EPIC, labels=["deferred"])
        _make_issue(store, "td-t1", parent_id="td-e")
        _make_issue(store, "td-t2")
        assert _ids(store, 'epic.labels ~ "deferred"') == {"td-t1"}
        assert _ids(store, 'NOT epic.labels ~ "deferred"') == {"td-e", "td-t2"}

    def test_rework(self, store: SQLiteStorage):
        for id_ in ("td-i1", "td-i2", "td-i3"):
            _make_issue(store, id_, status=Status.IN_PROGRESS)
        t0 = NOW

        def act(entity_id: str, action_type: str, ts: datetime) -> None:
            store.log_action(ActionLog(id=generate_action_id(), session_id="ses_x",
                                       action_type=action_type, entity_id=entity_id,
                                       timestamp=ts))

        act("td-i1", ActionType.REJECT, t0)
        act("td-i2", ActionType.REJECT, t0)
        act("td-i2", ActionType.REVIEW, t0 + timedelta(minutes=1))
        assert _ids(store, "rework()") == {"td-i1"}


class TestFieldQueries:
    def test_status_and_list(self, populated: SQLiteStorage):
        assert _ids(populated, "status = open") == {EPIC, TASK, BUG}
        assert _ids(populated, "status = (open, in_progress)") == {EPIC, TASK, SUBTASK, BUG}
        assert _ids(populated, "status != (open, in_progress)") == {DONE}

    def test_priority_uses_rank(self, populated: SQLiteStorage):
        assert _ids(populated, "priority <= P1") == {EPIC, TASK}
        assert _ids(populated, "priority > 2") == {BUG}

    def test_labels_membership_vs_substring(self, populated: SQLiteStorage):
        assert _ids(populated, "labels = FRONTEND") == {TASK}
        assert _ids(populated, "labels = front") == set()
        assert _ids(populated, "labels ~ front") == {TASK}

    def test_special_values(self, populated: SQLiteStorage):
        assert _ids(populated, "closed != NULL") == {DONE}
        assert _ids(populated, "description = EMPTY") == {EPIC, TASK, SUBTASK, DONE}

    def test_dates(self, populated: SQLiteStorage):
        assert _ids(populated, "created = today") == {BUG}
        assert _ids(populated, "created = yesterday") == {SUBTASK}
        assert _ids(populated, "created >= -7d") == {TASK, SUBTASK, BUG}
        assert _ids(populated, "created < 2026-01-05") == {EPIC}
        assert _ids(populated, "created = 2026-01-10") == {TASK}

    def test_text_search(self, populated: SQLiteStorage):
        assert _ids(populated, "login") == {EPIC, TASK, SUBTASK}
        assert _ids(populated, '"segfault"') == {BUG}

    def test_boolean_composition(self, populated: SQLiteStorage):
        assert _ids(populated, "type = bug OR type = epic") == {BUG, EPIC}
        assert _ids(populated, "NOT type = task") == {EPIC, BUG}
        assert _ids(populated, "login -type = epic") == {TASK, SUBTASK}


class TestHierarchy:
    def test_epic_equals_is_all_descendants(self, populated: SQLiteStorage):
        assert _ids(populated, f"epic = {EPIC}") == {TASK, SUBTASK}
        assert _ids(populated, "epic = epic01") == {TASK, SUBTASK}
        assert _ids(populated, f"epic != {EPIC}") == {EPIC, BUG, DONE}

    def test_child_and_descendant(self, populated: SQLiteStorage):
        assert _ids(populated, f"child_of({EPIC})") == {TASK}
        assert _ids(populated, f"descendant_of({EPIC})") == {TASK, SUBTASK}
        assert _ids(populated, "has(parent)") == {TASK, SUBTASK}


class TestDependencyFunctions:
    def test_blocks_and_blocked_by(self, populated: SQLiteStorage):
        assert _ids(populated, f"blocks({BUG})") == {TASK}
        assert _ids(populated, f"blocked_by({TASK})") == {BUG}
        assert _ids(populated, f"dep.depends_on = {TASK}") == {BUG}

    def test_readiness(self, populated: SQLiteStorage):
        assert _ids(populated, "has_open_deps()") == {BUG}
        assert _ids(populated, "is_ready()") == {EPIC, TASK, SUBTASK, DONE}


class TestCrossEntity:
    def test_logs(self, populated: SQLiteStorage):
        assert _ids(populated, 'log.message ~ "flaky"') == {TASK}
        assert _ids(populated, "log.type = blocker") == {TASK}
        assert _ids(populated, "log.session = @me", session_id="ses_me") == {TASK}
        assert _ids(populated, "log.session = @me", session_id="ses_nobody") == set()

    def test_comments_handoffs_files(self, populated: SQLiteStorage):
        assert _ids(populated, 'comment.text ~ "repro"') == {BUG}
        assert _ids(populated, 'handoff.done ~ "fixtures"') == {SUBTASK}
        assert _ids(populated, 'handoff.remaining ~ "edge"') == {SUBTASK}
        assert _ids(populated, 'file.path ~ "login"') == {TASK, SUBTASK}
        assert _ids(populated, "file.role = test") == {SUBTASK}
        assert _ids(populated, 'linked_to("src/")') == {TASK}

    def test_multi_value_functions(self, populated: SQLiteStorage):
        assert _ids(populated, "any(type, bug, epic)") == {BUG, EPIC}
        assert _ids(populated, "all(labels, backend, frontend)") == {TASK}
        assert _ids(populated, "none(status, closed)") == {EPIC, TASK, SUBTASK, BUG}
        assert _ids(populated, "is(in_progress)") == {SUBTASK}


class TestNotComplement:
    @pytest.mark.parametrize("text", [
        "status = open",
        "labels ~ end",
        f"epic = {EPIC}",
        "has_open_deps()",
        'log.message ~ "flaky"',
        "created >= -7d",
    ])
    def test_not_is_complement(self, populated: SQLiteStorage, text: str):
        evaluator = Evaluator(populated, EvalContext(now=NOW))
        positive = evaluator.evaluate(parse_and_validate(text).root)
        negative = evaluator.evaluate(parse_and_validate(f"NOT ({text})").root)
        assert negative == evaluator.universe() - positive


class TestExecuteOptions:
    def test_empty_query_matches_everything(self, populated: SQLiteStorage):
        assert len(execute(populated, "")) == 5

    def test_limit_truncates(self, populated: SQLiteStorage):
        issues = execute(populated, "sort:-created", limit=2)
        assert [i.id for i in issues] == [BUG, SUBTASK]

    def test_max_results_caps_fetch(self, populated: SQLiteStorage):
        issues = execute(populated, "status = open", max_results=2)
        assert [i.id for i in issues] == [EPIC, TASK]

    def test_sort_by_argument(self, populated: SQLiteStorage):
        issues = execute(populated, "status = open", sort_by="priority")
        assert [i.id for i in issues] == [TASK, EPIC, BUG]

    def test_validation_error_propagates(self, populated: SQLiteStorage):
        with pytest.raises(QueryValidationError):
            execute(populated, "status = done")


class TestQuickSearch:
    def test_matches_id_title_and_labels(self, populated: SQLiteStorage):
        assert {i.id for i in quick_search(populated, BUG)} == {BUG}
        assert {i.id for i in quick_search(populated, "login")} == {EPIC, TASK, SUBTASK}
        assert {i.id for i in quick_search(populated, "backend")} == {TASK}

    def test_limit(self, populated: SQLiteStorage):
        assert len(quick_search(populated, "login", limit=1)) == 1

    def test_empty_term(self, populated: SQLiteStorage):
        assert quick_search(populated, "   ") == []


class TestDateResolution:
    def test_day_range(self):
        r = resolve_date(DateValue("2024-02-29"), NOW)
        assert r == DateRange(datetime(2024, 2, 29, tzinfo=timezone.utc),
                              datetime(2024, 3, 1, tzinfo=timezone.utc))

    def test_week_and_month(self):
        this_week = resolve_date(DateValue("this_week", True), NOW)
        # 2026-01-15 is a Thursday
        assert this_week.start == datetime(2026, 1, 12, tzinfo=timezone.utc)
        last_month = resolve_date(DateValue("last_month", True), NOW)
        assert last_month.start == datetime(2025, 12, 1, tzinfo=timezone.utc)
        assert last_month.end == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_hours_are_points(self):
        r = resolve_date(DateValue("-2h", True), NOW)
        assert r.is_point
        assert r.start == NOW - timedelta(hours=2)

    def test_month_offset_clamps(self):
        march_31 = datetime(2026, 3, 31, 12, tzinfo=timezone.utc)
        r = resolve_date(DateValue("-1m", True), march_31)
        assert r.start == datetime(2026, 2, 28, tzinfo=timezone.utc)


class TestDateWordsOnTextFields:
    @pytest.fixture
    def worded(self, store: SQLiteStorage) -> SQLiteStorage:
        _make_issue(store, "td-word01", "ship it today", labels=["due-3d"],
                    created_at=NOW)
        _make_issue(store, "td-word02", "2024-01-01 retro", description="yesterday notes")
        store.add_log(Log(issue_id="td-word01", session_id="ses_me",
                          message="moved to this_week", timestamp=NOW))
        return store

    def test_date_words_match_as_text(self, worded: SQLiteStorage):
        assert _ids(worded, "title ~ today") == {"td-word01"}
        assert _ids(worded, "title = today") == set()
        assert _ids(worded, "title ~ 2024-01-01") == {"td-word02"}
        assert _ids(worded, "description ~ yesterday") == {"td-word02"}
        assert _ids(worded, "labels ~ 3d") == {"td-word01"}
        assert _ids(worded, "log.message ~ this_week") == {"td-word01"}
        assert _ids(worded, "title != today") == {"td-word01", "td-word02"}

    def test_date_fields_still_resolve(self, worded: SQLiteStorage):
        assert _ids(worded, "created = today") == {"td-word01"}

    def test_functions_take_date_words_as_text(self, worded: SQLiteStorage):
        assert _ids(worded, "any(labels, today)") == set()
        assert _ids(worded, "linked_to(today)") == set()


class TestEnumVocabulary:
    def test_every_log_type_is_queryable(self, store: SQLiteStorage):
        _make_issue(store, "td-sec001")
        store.add_log(Log(issue_id="td-sec001", session_id="ses_x", message="token leak",
                          type=LogType.SECURITY, timestamp=NOW))
        assert _ids(store, "log.type = security") == {"td-sec001"}
        assert _ids(store, "log.type = ORCHESTRATION") == set()

    @pytest.mark.parametrize("field, values", [
        ("status", Status.ALL),
        ("log.type", LogType.ALL),
        ("file.role", FileRole.ALL),
    ])
    def test_validation_accepts_model_values(self, field: str, values: tuple):
        for value in values:
            assert parse_and_validate(f"{field} = {value.upper()}").root.value == value
