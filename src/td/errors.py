"""Exception hierarchy shared by every td subsystem."""

from __future__ import annotations


class TdError(Exception):
    """Base class for all td errors."""


class NotInitialized(TdError):
    def __init__(self, path: str = "") -> None:
        self.path = path
        msg = "not in a td project (no .todos/ directory found)"
        if path:
            msg = f"{msg}: {path}"
        super().__init__(msg)


class IssueNotFound(TdError):
    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(f"issue not found: {issue_id}")


class CycleError(TdError):
    def __init__(self, issue_id: str, depends_on_id: str) -> None:
        self.issue_id = issue_id
        self.depends_on_id = depends_on_id
        super().__init__(
            f"adding dependency {issue_id} -> {depends_on_id} would create a cycle"
        )


class DependencyExists(TdError):
    def __init__(self, issue_id: str, depends_on_id: str) -> None:
        self.issue_id = issue_id
        self.depends_on_id = depends_on_id
        super().__init__(f"dependency already exists: {issue_id} -> {depends_on_id}")


class ParseError(TdError):
    """Malformed query text. Positions are 1-based."""

    def __init__(self, message: str, pos: int = 0, line: int = 1,
                 column: int = 1, expected: str = "", token: str = "") -> None:
        self.message = message
        self.pos = pos
        self.line = line
        self.column = column
        self.expected = expected
        self.token = token
        text = f"parse error at line {line}, column {column}: {message}"
        if expected:
            text += f" (expected {expected}, got {token or 'EOF'})"
        super().__init__(text)


class QueryValidationError(ParseError):
    """Query parsed but names an unknown field, function or enum value."""

    def __str__(self) -> str:
        return f"validation error: {self.message}"


class StoreError(TdError):
    """Wrapped failure from the storage layer."""


class TransportError(TdError):
    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        self.url = url
        self.status = status
        super().__init__(f"POST {url}: {reason}")
