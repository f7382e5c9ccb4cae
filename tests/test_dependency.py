"""Tests for the dependency graph engine."""

import os
import tempfile

import pytest

from td.dependency import DependencyGraph
from td.errors import CycleError, DependencyExists, IssueNotFound
from td.models import Issue, Status, now_utc
from td.storage.sqlite_store import SQLiteStorage


@pytest.fixture
def store():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = SQLiteStorage(path)
    yield s
    s.close()
    os.unlink(path)


@pytest.fixture
def graph(store: SQLiteStorage) -> DependencyGraph:
    return DependencyGraph(store)


def _add(store: SQLiteStorage, *ids: str, status: str = Status.OPEN) -> None:
    for id_ in ids:
        store.create_issue(Issue(id=id_, title=id_, status=status,
                                 created_at=now_utc(), updated_at=now_utc()))


def _dangling_edge(store: SQLiteStorage, issue_id: str, depends_on_id: str) -> None:
    """Insert an edge whose endpoint has no issue row."""
    store._conn.execute("PRAGMA foreign_keys=OFF")
    store.add_dependency(issue_id, depends_on_id, "depends_on")
    store._conn.execute("PRAGMA foreign_keys=ON")


class TestCycleDetection:
    def test_chain(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C")
        graph.validate_and_add("A", "B")
        graph.validate_and_add("B", "C")
        assert graph.would_create_cycle("C", "A")
        assert graph.would_create_cycle("C", "B")
        assert not graph.would_create_cycle("A", "C")

    def test_self_edge(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A")
        assert graph.would_create_cycle("A", "A")
        with pytest.raises(CycleError):
            graph.validate("A", "A")

    def test_cycle_rejected_and_not_inserted(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B")
        graph.validate_and_add("A", "B")
        with pytest.raises(CycleError) as exc:
            graph.validate_and_add("B", "A")
        assert exc.value.issue_id == "B"
        assert store.get_dependencies("B") == []


class TestValidation:
    def test_missing_issue(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A")
        with pytest.raises(IssueNotFound) as exc:
            graph.validate("A", "ghost")
        assert exc.value.issue_id == "ghost"

    def test_duplicate(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B")
        graph.validate_and_add("A", "B")
        with pytest.raises(DependencyExists):
            graph.validate_and_add("A", "B")

    def test_remove(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B")
        graph.validate_and_add("A", "B")
        graph.remove("A", "B")
        assert graph.get_dependencies("A") == []
        graph.validate_and_add("B", "A")


class TestTransitiveBlocked:
    def test_diamond(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C", "D")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "A")
        graph.validate_and_add("D", "B")
        graph.validate_and_add("D", "C")
        result = graph.transitive_blocked("A")
        assert sorted(result) == ["B", "C", "D"]
        assert len(result) == 3

    def test_preorder_follows_store_order(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C", "D")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "A")
        graph.validate_and_add("D", "B")
        assert graph.transitive_blocked("A") == ["B", "D", "C"]

    def test_closed_cut(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "B")
        store.update_issue("B", {"status": Status.CLOSED})
        assert len(graph.transitive_blocked("A")) == 2
        assert graph.transitive_blocked_open("A") == []

    def test_open_result_is_subset(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C", "D")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "A")
        graph.validate_and_add("D", "B")
        graph.validate_and_add("D", "C")
        store.update_issue("B", {"status": Status.CLOSED})
        open_ids = graph.transitive_blocked_open("A")
        # D stays reachable through the open path via C
        assert sorted(open_ids) == ["C", "D"]
        assert set(open_ids) <= set(graph.transitive_blocked("A"))

    def test_shared_visited_map(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "B")
        visited = {"B": True}
        assert graph.transitive_blocked("A", visited) == []
        assert visited["A"]

        visited = {}
        graph.transitive_blocked("A", visited)
        assert graph.transitive_blocked("A", visited) == []

    def test_missing_issue_suppressed(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B")
        graph.validate_and_add("B", "A")
        _dangling_edge(store, "ghost", "A")
        assert graph.transitive_blocked("A") == ["B"]
        assert [i.id for i in graph.get_dependents("A")] == ["B"]


class TestBlockingClosure:
    def test_forward_closure(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C", "X")
        graph.validate_and_add("A", "B")
        graph.validate_and_add("B", "C")
        assert graph.blocking_closure("A") == ["B", "C"]
        assert graph.blocking_closure("C") == []


class TestReadiness:
    def test_ready_iff_no_open_deps(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C")
        graph.validate_and_add("A", "B")
        graph.validate_and_add("A", "C")
        assert not graph.is_ready("A")
        store.update_issue("B", {"status": Status.CLOSED})
        assert not graph.is_ready("A")
        store.update_issue("C", {"status": Status.CLOSED})
        assert graph.is_ready("A")
        for id_ in ("A", "B", "C"):
            assert graph.is_ready(id_) != graph.has_open_deps(id_)

    def test_dangling_edge_does_not_block(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A")
        _dangling_edge(store, "A", "ghost")
        assert graph.is_ready("A")

    def test_blocked_report(self, store: SQLiteStorage, graph: DependencyGraph):
        _add(store, "A", "B", "C")
        graph.validate_and_add("B", "A")
        graph.validate_and_add("C", "A")
        store.update_issue("C", {"status": Status.CLOSED})
        report = graph.blocked_report()
        assert [(issue.id, [d.id for d in deps]) for issue, deps in report] == [("B", ["A"])]
