"""Set-valued evaluation of query trees.

Every node evaluates to a set of issue ids. AND intersects, OR unions and
NOT takes the complement against the set of all issue ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from td.dependency import DependencyGraph
from td.errors import QueryValidationError
from td.models import Issue, IssueType, Priority, now_utc, parse_timestamp
from td.query.ast import (
    OP_AND, OP_CONTAINS, OP_EQ, OP_GT, OP_GTE, OP_LT, OP_LTE, OP_NEQ,
    OP_NOT_CONTAINS, OP_OR, ORDER_OPS,
    BinaryExpr, DateValue, FieldExpr, FunctionCall, ListValue, Node,
    SpecialValue, TextSearch, UnaryExpr, field_kind,
)
from td.storage.interface import Storage

logger = logging.getLogger(__name__)

MAX_DESCENDANT_DEPTH = 100


@dataclass
class DateRange:
    """Resolved date literal: [start, end). A point in time has end == start."""
    start: datetime
    end: datetime

    @property
    def is_point(self) -> bool:
        return self.start == self.end


@dataclass
class EvalContext:
    session_id: str = ""
    now: datetime = field(default_factory=now_utc)


# --- Date resolution ---

def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month
    day = dt.day
    while True:
        try:
            return dt.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1


def _day(dt: datetime) -> DateRange:
    start = _midnight(dt)
    return DateRange(start, start + timedelta(days=1))


def resolve_date(value: DateValue, now: datetime) -> DateRange:
    """Resolve a date literal against now (UTC)."""
    raw = value.raw
    if not value.relative:
        try:
            parsed = datetime.strptime(raw, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            raise QueryValidationError(f"invalid date: {raw}") from None
        return _day(parsed)

    today = _midnight(now)
    if raw == "today":
        return _day(today)
    if raw == "yesterday":
        return _day(today - timedelta(days=1))
    if raw in ("this_week", "last_week"):
        monday = today - timedelta(days=today.weekday())
        if raw == "last_week":
            monday -= timedelta(days=7)
        return DateRange(monday, monday + timedelta(days=7))
    if raw in ("this_month", "last_month"):
        first = today.replace(day=1)
        if raw == "last_month":
            first = _add_months(first, -1)
        return DateRange(first, _add_months(first, 1))

    sign = -1 if raw.startswith("-") else 1
    digits = raw.lstrip("+-")[:-1]
    unit = raw[-1]
    try:
        n = int(digits) * sign
    except ValueError:
        raise QueryValidationError(f"invalid relative date: {raw}") from None
    if unit == "d":
        return _day(now + timedelta(days=n))
    if unit == "w":
        return _day(now + timedelta(weeks=n))
    if unit == "m":
        return _day(_add_months(now, n))
    point = now + timedelta(hours=n)
    return DateRange(point, point)


# --- Comparison ---

def _is_empty(actual: Any) -> bool:
    return actual is None or actual == "" or actual == 0 or actual == []


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _compare_dates(actual: Any, op: str, value: DateRange) -> bool:
    if isinstance(actual, str):
        try:
            actual = parse_timestamp(actual)
        except ValueError:
            actual = None
    if not isinstance(actual, datetime):
        return op == OP_NEQ
    if value.is_point:
        within = actual == value.start
        after = actual > value.start
    else:
        within = value.start <= actual < value.end
        after = actual >= value.end
    if op == OP_EQ:
        return within
    if op == OP_NEQ:
        return not within
    if op == OP_LT:
        return actual < value.start
    if op == OP_LTE:
        return actual < value.start or within
    if op == OP_GT:
        return after
    if op == OP_GTE:
        return actual >= value.start
    return False


def _compare_order(actual: Any, op: str, value: Any) -> bool:
    a, b = _as_text(actual), _as_text(value)
    if Priority.is_valid(a) and Priority.is_valid(b):
        left, right = Priority.rank(a), Priority.rank(b)
    else:
        try:
            left, right = float(a), float(b)
        except ValueError:
            left, right = a.lower(), b.lower()
    if op == OP_LT:
        return left < right
    if op == OP_GT:
        return left > right
    if op == OP_LTE:
        return left <= right
    if op == OP_GTE:
        return left >= right
    return False


def match_value(actual: Any, op: str, value: Any) -> bool:
    """Compare a field value with a resolved query value."""
    if isinstance(value, list):
        if op in (OP_NEQ, OP_NOT_CONTAINS):
            positive = OP_EQ if op == OP_NEQ else OP_CONTAINS
            return not any(match_value(actual, positive, v) for v in value)
        return any(match_value(actual, op, v) for v in value)

    if isinstance(value, SpecialValue):
        if value.type == "empty":
            matched = _is_empty(actual)
        else:
            matched = actual is None
        if op == OP_EQ:
            return matched
        if op == OP_NEQ:
            return not matched
        return False

    if isinstance(value, DateRange):
        return _compare_dates(actual, op, value)

    if isinstance(actual, datetime):
        if isinstance(value, str):
            try:
                value = _day(datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc))
            except ValueError:
                return op in (OP_NEQ, OP_NOT_CONTAINS)
            return _compare_dates(actual, op, value)

    if op == OP_EQ:
        return _as_text(actual).lower() == _as_text(value).lower()
    if op == OP_NEQ:
        return _as_text(actual).lower() != _as_text(value).lower()
    if op == OP_CONTAINS:
        return _as_text(value).lower() in _as_text(actual).lower()
    if op == OP_NOT_CONTAINS:
        return _as_text(value).lower() not in _as_text(actual).lower()
    if op in ORDER_OPS:
        return _compare_order(actual, op, value)
    return False


# --- Field access ---

ISSUE_FIELD_GETTERS: dict[str, Callable[[Issue], Any]] = {
    "id": lambda i: i.id,
    "title": lambda i: i.title,
    "description": lambda i: i.description,
    "status": lambda i: i.status,
    "type": lambda i: i.type,
    "priority": lambda i: i.priority,
    "labels": lambda i: ",".join(i.labels),
    "parent": lambda i: i.parent_id,
    "parent_id": lambda i: i.parent_id,
    "epic": lambda i: i.parent_id,
    "created": lambda i: i.created_at,
    "updated": lambda i: i.updated_at,
    "closed": lambda i: i.closed_at,
}


class Evaluator:
    """Evaluates query nodes to id sets against one store snapshot.

    Issue rows are loaded once per evaluator; cross-entity rows are fetched
    as atoms need them.
    """

    def __init__(self, store: Storage, ctx: EvalContext | None = None):
        self.store = store
        self.ctx = ctx or EvalContext()
        self.graph = DependencyGraph(store)
        self._issues: dict[str, Issue] | None = None

    @property
    def issues(self) -> dict[str, Issue]:
        if self._issues is None:
            self._issues = {issue.id: issue for issue in self.store.list_issues()}
        return self._issues

    def universe(self) -> set[str]:
        return set(self.issues)

    def evaluate(self, node: Node | None) -> set[str]:
        if node is None:
            return self.universe()
        if isinstance(node, BinaryExpr):
            left = self.evaluate(node.left)
            if node.op == OP_AND:
                if not left:
                    return left
                return left & self.evaluate(node.right)
            if node.op == OP_OR:
                return left | self.evaluate(node.right)
            raise QueryValidationError(f"unsupported operator: {node.op}")
        if isinstance(node, UnaryExpr):
            return self.universe() - self.evaluate(node.expr)
        if isinstance(node, FieldExpr):
            return self._eval_field(node)
        if isinstance(node, FunctionCall):
            return self._eval_function(node)
        if isinstance(node, TextSearch):
            return self._eval_text(node.text)
        raise QueryValidationError(f"unsupported node type: {type(node).__name__}")

    # --- Helpers ---

    def resolve_value(self, value: Any, dates: bool = True) -> Any:
        """Resolve @me and literals. With dates=False a date literal stays as its text."""
        if isinstance(value, SpecialValue) and value.type == "me":
            return self.ctx.session_id
        if isinstance(value, DateValue):
            return resolve_date(value, self.ctx.now) if dates else value.raw
        if isinstance(value, ListValue):
            return [self.resolve_value(v, dates) for v in value.values]
        return value

    def _where(self, pred: Callable[[Issue], bool]) -> set[str]:
        return {id_ for id_, issue in self.issues.items() if pred(issue)}

    def _any_row(self, rows_for: Callable[[str], Iterable[Any]],
                 pred: Callable[[Any], bool]) -> set[str]:
        return {
            id_ for id_ in self.issues
            if any(pred(row) for row in rows_for(id_))
        }

    def _ref(self, value: Any) -> str:
        """Resolve an issue reference, accepting bare or partial ids."""
        raw = _as_text(self.resolve_value(value, dates=False))
        return self.store.resolve_id(raw) or raw

    # --- Atoms ---

    def _eval_text(self, text: str) -> set[str]:
        needle = text.lower()
        return self._where(
            lambda i: needle in i.id.lower()
            or needle in i.title.lower()
            or needle in i.description.lower()
        )

    def _eval_field(self, node: FieldExpr) -> set[str]:
        op = node.operator
        # Date words compared with text fields match as plain text
        value = self.resolve_value(node.value, dates=field_kind(node.field) == "date")
        prefix, _, sub = node.field.partition(".")

        if sub:
            return self._eval_cross_entity(prefix, sub, op, value)

        if prefix == "epic" and op in (OP_EQ, OP_NEQ) and isinstance(value, (str, int)):
            descendants = self.descendants(self._ref(value))
            if op == OP_EQ:
                return descendants
            return self.universe() - descendants

        if prefix == "labels" and op in (OP_EQ, OP_NEQ) and isinstance(value, str):
            wanted = value.lower()
            has = self._where(lambda i: any(l.lower() == wanted for l in i.labels))
            return has if op == OP_EQ else self.universe() - has

        getter = ISSUE_FIELD_GETTERS.get(prefix)
        if getter is None:
            raise QueryValidationError(f"unknown field: {node.field}")
        return self._where(lambda i: match_value(getter(i), op, value))

    def _eval_cross_entity(self, prefix: str, sub: str, op: str, value: Any) -> set[str]:
        store = self.store

        if prefix == "log":
            attr = {"message": "message", "type": "type",
                    "timestamp": "timestamp", "session": "session_id"}[sub]
            return self._any_row(
                store.get_logs, lambda row: match_value(getattr(row, attr), op, value)
            )

        if prefix == "comment":
            attr = {"text": "text", "created": "created_at", "session": "session_id"}[sub]
            return self._any_row(
                store.get_comments, lambda row: match_value(getattr(row, attr), op, value)
            )

        if prefix == "handoff":
            def latest(id_: str) -> list[Any]:
                handoff = store.get_latest_handoff(id_)
                return [handoff] if handoff else []

            def handoff_field(h: Any) -> Any:
                if sub == "timestamp":
                    return h.timestamp
                return " ".join(getattr(h, sub))

            return self._any_row(latest, lambda h: match_value(handoff_field(h), op, value))

        if prefix == "file":
            attr = {"path": "file_path", "role": "role"}[sub]
            return self._any_row(
                store.get_linked_files, lambda row: match_value(getattr(row, attr), op, value)
            )

        if prefix == "dep":
            neighbours = store.get_dependencies if sub == "depends_on" else store.get_blocked_by
            return self._any_row(neighbours, lambda dep_id: match_value(dep_id, op, value))

        if prefix == "epic":
            return self._where(lambda i: self._epic_ancestor_matches(i, sub, op, value))

        raise QueryValidationError(f"unknown field: {prefix}.{sub}")

    def _epic_ancestor_matches(self, issue: Issue, sub: str, op: str, value: Any) -> bool:
        current = issue.parent_id
        seen: set[str] = set()
        depth = 0
        while current and current not in seen and depth < MAX_DESCENDANT_DEPTH:
            seen.add(current)
            depth += 1
            parent = self.issues.get(current)
            if parent is None:
                return False
            if parent.type == IssueType.EPIC:
                if sub == "labels":
                    actual = ",".join(parent.labels)
                else:
                    actual = getattr(parent, sub)
                if match_value(actual, op, value):
                    return True
            current = parent.parent_id
        return False

    def descendants(self, root_id: str) -> set[str]:
        """Children, grandchildren, ... of root_id, excluding root_id."""
        result: set[str] = set()
        frontier = [root_id]
        depth = 0
        while frontier and depth < MAX_DESCENDANT_DEPTH:
            depth += 1
            next_frontier = []
            for parent_id in frontier:
                for child in self.store.get_children(parent_id):
                    if child in result or child == root_id:
                        continue
                    result.add(child)
                    next_frontier.append(child)
            frontier = next_frontier
        if frontier:
            logger.debug("descendant walk from %s stopped at depth %d",
                         root_id, MAX_DESCENDANT_DEPTH)
        return result & self.universe()

    def _eval_function(self, node: FunctionCall) -> set[str]:
        name = node.name
        args = node.args

        if name == "rework":
            return self.store.get_rejected_in_progress_ids() & self.universe()
        if name == "has_open_deps":
            return self.store.get_issues_with_open_deps() & self.universe()
        if name == "is_ready":
            return self.universe() - self.store.get_issues_with_open_deps()

        if name == "is":
            status = _as_text(args[0]).lower()
            return self._where(lambda i: i.status.lower() == status)

        if name == "has":
            getter = ISSUE_FIELD_GETTERS.get(_as_text(args[0]))
            if getter is None:
                return set()
            return self._where(lambda i: not _is_empty(getter(i)))

        if name in ("any", "all", "none"):
            getter = ISSUE_FIELD_GETTERS.get(_as_text(args[0]))
            values = [_as_text(self.resolve_value(v, dates=False)).lower() for v in args[1:]]
            if getter is None:
                return self.universe() if name == "none" else set()

            def text(i: Issue) -> str:
                return _as_text(getter(i)).lower()

            if name == "any":
                return self._where(lambda i: text(i) in values)
            if name == "all":
                return self._where(lambda i: all(v in text(i) for v in values))
            return self._where(lambda i: not any(v in text(i) for v in values))

        if name == "child_of":
            parent_id = self._ref(args[0])
            return self._where(lambda i: i.parent_id == parent_id)
        if name == "descendant_of":
            return self.descendants(self._ref(args[0]))
        if name == "blocks":
            return set(self.graph.blocking_closure(self._ref(args[0]))) & self.universe()
        if name == "blocked_by":
            return set(self.graph.transitive_blocked(self._ref(args[0]))) & self.universe()
        if name == "linked_to":
            path = _as_text(self.resolve_value(args[0], dates=False))
            return self._any_row(
                self.store.get_linked_files, lambda f: path in f.file_path
            )

        raise QueryValidationError(f"unknown function: {name}")
