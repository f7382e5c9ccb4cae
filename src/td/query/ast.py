"""Syntax tree and vocabulary of the td query language."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from td.models import FileRole, IssueType, LogType, Priority, Status


# --- Operators ---

OP_EQ = "="
OP_NEQ = "!="
OP_LT = "<"
OP_GT = ">"
OP_LTE = "<="
OP_GTE = ">="
OP_CONTAINS = "~"
OP_NOT_CONTAINS = "!~"

OP_AND = "AND"
OP_OR = "OR"
OP_NOT = "NOT"

ORDER_OPS = (OP_LT, OP_GT, OP_LTE, OP_GTE)


# --- Values ---

@dataclass
class DateValue:
    """An absolute (2024-01-15) or relative (-7d, today) date literal."""
    raw: str
    relative: bool = False

    def __str__(self) -> str:
        return self.raw


@dataclass
class SpecialValue:
    """@me, EMPTY or NULL."""
    type: str

    def __str__(self) -> str:
        return {"me": "@me", "empty": "EMPTY", "null": "NULL"}.get(self.type, self.type)


@dataclass
class ListValue:
    values: list[Any] = field(default_factory=list)

    def __str__(self) -> str:
        return "(" + ", ".join(str(v) for v in self.values) + ")"


# --- Nodes ---

@dataclass
class BinaryExpr:
    op: str
    left: Node
    right: Node

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


@dataclass
class UnaryExpr:
    op: str
    expr: Node

    def __str__(self) -> str:
        return f"({self.op} {self.expr})"


@dataclass
class FieldExpr:
    field: str
    operator: str
    value: Any

    def __str__(self) -> str:
        return f"{self.field} {self.operator} {self.value}"


@dataclass
class FunctionCall:
    name: str
    args: list[Any] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


@dataclass
class TextSearch:
    """Bare word or quoted string; matches id, title or description."""
    text: str

    def __str__(self) -> str:
        return f'"{self.text}"'


Node = Union[BinaryExpr, UnaryExpr, FieldExpr, FunctionCall, TextSearch]


@dataclass
class SortClause:
    field: str  # store column, e.g. created_at
    descending: bool = False

    def __str__(self) -> str:
        return f"sort:{'-' if self.descending else ''}{self.field}"


@dataclass
class Query:
    root: Node | None = None
    raw: str = ""
    sort: SortClause | None = None

    def __str__(self) -> str:
        parts = []
        if self.root is not None:
            parts.append(str(self.root))
        if self.sort is not None:
            parts.append(str(self.sort))
        return " ".join(parts)

    def validate(self) -> list[str]:
        """Semantic problems with the query, normalizing enum values in place."""
        from td.query.parser import validate_node

        errors: list[str] = []
        if self.root is not None:
            validate_node(self.root, errors)
        return errors


# --- Vocabulary ---

KNOWN_FIELDS = {
    "id": "string",
    "title": "string",
    "description": "string",
    "status": "enum",
    "type": "enum",
    "priority": "ordinal",
    "labels": "string",
    "parent": "string",
    "epic": "string",
    "created": "date",
    "updated": "date",
    "closed": "date",

    # Cross-entity prefixes
    "log": "prefix",
    "comment": "prefix",
    "handoff": "prefix",
    "file": "prefix",
    "dep": "prefix",
}

CROSS_ENTITY_FIELDS = {
    "log": {
        "message": "string",
        "type": "enum",
        "timestamp": "date",
        "session": "string",
    },
    "comment": {
        "text": "string",
        "created": "date",
        "session": "string",
    },
    "handoff": {
        "done": "string",
        "remaining": "string",
        "decisions": "string",
        "uncertain": "string",
        "timestamp": "date",
    },
    "file": {
        "path": "string",
        "role": "enum",
    },
    "dep": {
        "blocks": "string",
        "depends_on": "string",
    },
    "epic": {
        "labels": "string",
        "title": "string",
        "status": "enum",
        "priority": "ordinal",
    },
}


def field_kind(name: str) -> str | None:
    """Value kind of a field ("string", "enum", "date", ...), None if unknown."""
    base, _, sub = name.partition(".")
    if sub:
        return CROSS_ENTITY_FIELDS.get(base, {}).get(sub)
    return KNOWN_FIELDS.get(base)

ENUM_VALUES = {
    "status": Status.ALL,
    "type": IssueType.ALL,
    "priority": Priority.ALL,
    "log.type": LogType.ALL,
    "file.role": FileRole.ALL,
    "epic.status": Status.ALL,
    "epic.priority": Priority.ALL,
}

# name -> (min args, max args or -1 for unbounded, help)
KNOWN_FUNCTIONS = {
    "has": (1, 1, "has(field) - field is not empty"),
    "is": (1, 1, "is(status) - shorthand for status check"),
    "any": (2, -1, "any(field, v1, v2, ...) - field matches any value"),
    "all": (2, -1, "all(field, v1, v2, ...) - field contains all values"),
    "none": (2, -1, "none(field, v1, v2, ...) - field matches none"),
    "blocks": (1, 1, "blocks(id) - issues that the given id waits on"),
    "blocked_by": (1, 1, "blocked_by(id) - issues waiting on the given id"),
    "child_of": (1, 1, "child_of(id) - direct children of issue"),
    "descendant_of": (1, 1, "descendant_of(id) - all descendants (recursive)"),
    "linked_to": (1, 1, "linked_to(path) - issues linked to file path"),
    "rework": (0, 0, "rework() - issues rejected and awaiting rework"),
    "is_ready": (0, 0, "is_ready() - no open dependencies"),
    "has_open_deps": (0, 0, "has_open_deps() - at least one open dependency"),
}

SORT_FIELD_TO_COLUMN = {
    "created": "created_at",
    "updated": "updated_at",
    "closed": "closed_at",
    "priority": "priority",
    "id": "id",
    "title": "title",
    "status": "status",
}

RELATIVE_DATE_KEYWORDS = (
    "today", "yesterday", "this_week", "last_week", "this_month", "last_month",
)
