"""Dependency graph operations over the store.

Edges point from an issue to the issue it depends on. Forward neighbours of
``a`` are what ``a`` waits for; reverse neighbours are what ``a`` blocks.
"""

from __future__ import annotations

import logging
from typing import Iterator

from td.errors import CycleError, DependencyExists, IssueNotFound, StoreError
from td.models import DepType, Issue, Status
from td.storage.interface import Storage

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Graph view over the dependency edges held by a store.

    Holds no state of its own; every call reads the store.
    """

    def __init__(self, store: Storage):
        self.store = store

    # --- Validation ---

    def would_create_cycle(self, issue_id: str, depends_on_id: str) -> bool:
        """True iff a path already exists from depends_on_id to issue_id."""
        if issue_id == depends_on_id:
            return True
        visited: set[str] = set()
        stack = [depends_on_id]
        while stack:
            current = stack.pop()
            if current == issue_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(
                dep for dep in self.store.get_dependencies(current)
                if dep not in visited
            )
        return False

    def validate(self, issue_id: str, depends_on_id: str) -> None:
        """Raise if issue_id -> depends_on_id cannot be added."""
        for id_ in (issue_id, depends_on_id):
            if self.store.get_issue(id_) is None:
                raise IssueNotFound(id_)
        if self.would_create_cycle(issue_id, depends_on_id):
            raise CycleError(issue_id, depends_on_id)
        if self.store.dependency_exists(issue_id, depends_on_id):
            raise DependencyExists(issue_id, depends_on_id)

    def validate_and_add(self, issue_id: str, depends_on_id: str) -> None:
        self.validate(issue_id, depends_on_id)
        try:
            self.store.add_dependency(issue_id, depends_on_id, DepType.DEPENDS_ON)
        except StoreError as e:
            raise StoreError(f"failed to add dependency: {e}") from e
        logger.debug("added dependency %s -> %s", issue_id, depends_on_id)

    def remove(self, issue_id: str, depends_on_id: str) -> None:
        self.store.remove_dependency(issue_id, depends_on_id)

    # --- Neighbours ---

    def _existing(self, ids: list[str]) -> list[Issue]:
        issues = []
        for id_ in ids:
            issue = self.store.get_issue(id_)
            if issue is None:
                continue
            issues.append(issue)
        return issues

    def get_dependencies(self, issue_id: str) -> list[Issue]:
        """Issues that issue_id depends on. Missing targets are skipped."""
        return self._existing(self.store.get_dependencies(issue_id))

    def get_dependents(self, issue_id: str) -> list[Issue]:
        """Issues that depend on issue_id. Missing sources are skipped."""
        return self._existing(self.store.get_blocked_by(issue_id))

    # --- Transitive closures ---

    def transitive_blocked(self, issue_id: str,
                           visited: dict[str, bool] | None = None) -> list[str]:
        """Every issue reachable over reverse edges from issue_id, each once.

        ``visited`` is shared with the caller: ids already marked are neither
        emitted nor traversed, and every id reached is marked.
        """
        return self._blocked_filtered(issue_id, visited, exclude_closed=False)

    def transitive_blocked_open(self, issue_id: str,
                                visited: dict[str, bool] | None = None) -> list[str]:
        """Like transitive_blocked, but closed issues cut the traversal."""
        return self._blocked_filtered(issue_id, visited, exclude_closed=True)

    def _blocked_filtered(self, issue_id: str, visited: dict[str, bool] | None,
                          exclude_closed: bool) -> list[str]:
        if visited is None:
            visited = {}
        if visited.get(issue_id):
            return []
        visited[issue_id] = True

        result: list[str] = []
        # Depth-first, pre-order, following store order at each level
        stack: list[Iterator[str]] = [iter(self.store.get_blocked_by(issue_id))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                continue
            if visited.get(nxt):
                continue
            issue = self.store.get_issue(nxt)
            visited[nxt] = True
            if issue is None:
                continue
            if exclude_closed and issue.status == Status.CLOSED:
                continue
            result.append(nxt)
            stack.append(iter(self.store.get_blocked_by(nxt)))
        return result

    def blocking_closure(self, issue_id: str) -> list[str]:
        """Every issue issue_id waits on, directly or transitively."""
        visited = {issue_id}
        result: list[str] = []
        stack: list[Iterator[str]] = [iter(self.store.get_dependencies(issue_id))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                continue
            if nxt in visited:
                continue
            visited.add(nxt)
            if self.store.get_issue(nxt) is None:
                continue
            result.append(nxt)
            stack.append(iter(self.store.get_dependencies(nxt)))
        return result

    # --- Readiness ---

    def is_ready(self, issue_id: str) -> bool:
        """True iff every dependency of issue_id is closed.

        Dangling edges do not hold an issue back.
        """
        for dep in self.get_dependencies(issue_id):
            if dep.status != Status.CLOSED:
                return False
        return True

    def has_open_deps(self, issue_id: str) -> bool:
        return not self.is_ready(issue_id)

    def blocked_report(self) -> list[tuple[Issue, list[Issue]]]:
        """Non-closed issues with open dependencies, paired with those blockers."""
        report = []
        for issue in self.store.list_issues(ids=self.store.get_issues_with_open_deps()):
            if issue.status == Status.CLOSED:
                continue
            open_deps = [
                dep for dep in self.get_dependencies(issue.id)
                if dep.status != Status.CLOSED
            ]
            if open_deps:
                report.append((issue, open_deps))
        return report
