"""Core data models for td issues, event streams and sessions."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


ISSUE_ID_PREFIX = "td-"
ACTION_ID_PREFIX = "al-"
SESSION_ID_PREFIX = "ses_"


# --- Status constants ---

class Status:
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    IN_REVIEW = "in_review"
    CLOSED = "closed"

    ALL = (OPEN, IN_PROGRESS, BLOCKED, IN_REVIEW, CLOSED)

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.ALL

    @classmethod
    def is_terminal(cls, s: str) -> bool:
        return s == cls.CLOSED


# --- IssueType constants ---

class IssueType:
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"

    ALL = (BUG, FEATURE, TASK, EPIC, CHORE)

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls.ALL

    @classmethod
    def normalize(cls, t: str) -> str:
        lower = t.lower()
        if lower in ("enhancement", "feat"):
            return cls.FEATURE
        return lower


# --- Priority constants ---

class Priority:
    P0 = "P0"  # critical
    P1 = "P1"  # high
    P2 = "P2"  # medium
    P3 = "P3"  # low
    P4 = "P4"  # none

    ALL = (P0, P1, P2, P3, P4)
    DEFAULT = P2

    @classmethod
    def is_valid(cls, p: str) -> bool:
        return p in cls.ALL

    @classmethod
    def normalize(cls, p: str) -> str | None:
        """Accept P0-P4 or 0-4, any case. Returns None when invalid."""
        s = p.strip().upper()
        if not s.startswith("P"):
            s = "P" + s
        return s if s in cls.ALL else None

    @classmethod
    def rank(cls, p: str) -> int:
        return cls.ALL.index(p) if p in cls.ALL else len(cls.ALL)


class LogType:
    PROGRESS = "progress"
    BLOCKER = "blocker"
    DECISION = "decision"
    HYPOTHESIS = "hypothesis"
    TRIED = "tried"
    RESULT = "result"
    SECURITY = "security"
    ORCHESTRATION = "orchestration"

    ALL = (PROGRESS, BLOCKER, DECISION, HYPOTHESIS, TRIED, RESULT,
           SECURITY, ORCHESTRATION)


class FileRole:
    IMPLEMENTATION = "implementation"
    TEST = "test"
    REFERENCE = "reference"
    CONFIG = "config"

    ALL = (IMPLEMENTATION, TEST, REFERENCE, CONFIG)


class ActionType:
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    START = "start"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    BLOCK = "block"
    UNBLOCK = "unblock"
    CLOSE = "close"
    REOPEN = "reopen"
    ADD_DEPENDENCY = "add_dependency"
    REMOVE_DEPENDENCY = "remove_dependency"
    LINK_FILE = "link_file"
    UNLINK_FILE = "unlink_file"
    HANDOFF = "handoff"


class DepType:
    DEPENDS_ON = "depends_on"


# --- Helper: RFC3339 timestamp handling ---

def parse_timestamp(s: str | None) -> datetime | None:
    """Parse an RFC3339 (or SQLite default) timestamp string."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
            try:
                dt = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"Cannot parse timestamp: {s}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    """Format datetime to RFC3339 string, UTC with Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    s = dt.astimezone(timezone.utc).isoformat()
    if s.endswith("+00:00"):
        s = s[:-6] + "Z"
    return s


def format_rfc3339_seconds(dt: datetime) -> str:
    """RFC3339 in UTC truncated to whole seconds (wire format)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def now_utc() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


# --- ID generation ---

def generate_issue_id() -> str:
    return ISSUE_ID_PREFIX + secrets.token_hex(3)


def generate_action_id() -> str:
    return ACTION_ID_PREFIX + secrets.token_hex(4)


def generate_session_id() -> str:
    return SESSION_ID_PREFIX + secrets.token_hex(3)


def normalize_issue_id(issue_id: str) -> str:
    """Accept bare hex ids like "abc123" and return "td-abc123"."""
    if not issue_id or issue_id.startswith(ISSUE_ID_PREFIX):
        return issue_id
    return ISSUE_ID_PREFIX + issue_id


# --- Dataclasses ---

@dataclass
class Issue:
    id: str = ""
    title: str = ""
    description: str = ""
    status: str = Status.OPEN
    type: str = IssueType.TASK
    priority: str = Priority.DEFAULT
    labels: list[str] = field(default_factory=list)
    parent_id: str = ""
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    closed_at: datetime | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }
        if self.description:
            d["description"] = self.description
        if self.labels:
            d["labels"] = list(self.labels)
        if self.parent_id:
            d["parent_id"] = self.parent_id
        if self.closed_at:
            d["closed_at"] = format_timestamp(self.closed_at)
        return d


@dataclass
class Dependency:
    issue_id: str
    depends_on_id: str
    type: str = DepType.DEPENDS_ON

    def to_dict(self) -> dict:
        return {
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "type": self.type,
        }


@dataclass
class Log:
    id: int = 0
    issue_id: str = ""
    session_id: str = ""
    message: str = ""
    type: str = LogType.PROGRESS
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "message": self.message,
            "type": self.type,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class Comment:
    id: int = 0
    issue_id: str = ""
    session_id: str = ""
    text: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "text": self.text,
            "created_at": format_timestamp(self.created_at),
        }


@dataclass
class Handoff:
    id: int = 0
    issue_id: str = ""
    session_id: str = ""
    done: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    uncertain: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "done": list(self.done),
            "remaining": list(self.remaining),
            "decisions": list(self.decisions),
            "uncertain": list(self.uncertain),
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class IssueFile:
    issue_id: str = ""
    file_path: str = ""
    role: str = FileRole.IMPLEMENTATION
    linked_sha: str = ""
    linked_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "issue_id": self.issue_id,
            "file_path": self.file_path,
            "role": self.role,
            "linked_sha": self.linked_sha,
            "linked_at": format_timestamp(self.linked_at),
        }


@dataclass
class ActionLog:
    id: str = ""
    session_id: str = ""
    action_type: str = ""
    entity_type: str = "issue"
    entity_id: str = ""
    previous_data: str = ""
    new_data: str = ""
    timestamp: datetime = field(default_factory=now_utc)
    undone: bool = False


@dataclass
class SessionRow:
    """A persisted session as stored in the sessions table."""
    id: str = ""
    name: str = ""
    branch: str = ""
    agent_type: str = ""
    agent_pid: int = 0
    context_id: str = ""
    previous_session_id: str = ""
    started_at: datetime = field(default_factory=now_utc)
    last_activity: datetime | None = None
