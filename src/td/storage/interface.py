"""Storage interface (abstract base) for td."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

from td.models import (
    ActionLog, Comment, Handoff, Issue, IssueFile, Log, SessionRow,
)


class Storage(ABC):
    """Abstract base class defining all storage operations.

    Each call is transactional on its own: mutating calls commit before
    returning. Implementations raise ``StoreError`` for backend failures.
    """

    @abstractmethod
    def path(self) -> str:
        """Return the database file path."""

    @abstractmethod
    def close(self) -> None:
        """Close the storage connection."""

    # --- Issues ---

    @abstractmethod
    def create_issue(self, issue: Issue) -> None:
        """Create a new issue."""

    @abstractmethod
    def get_issue(self, issue_id: str) -> Issue | None:
        """Get an issue by ID. Returns None if not found."""

    @abstractmethod
    def get_issues(self, issue_ids: list[str]) -> list[Issue]:
        """Get several issues, in store order. Missing ids are skipped."""

    @abstractmethod
    def update_issue(self, issue_id: str, updates: dict[str, Any]) -> None:
        """Update an issue with partial field updates."""

    @abstractmethod
    def list_issues(self, limit: int = 0, sort_by: str = "created_at",
                    descending: bool = False,
                    ids: Iterable[str] | None = None) -> list[Issue]:
        """List issues in store order, optionally restricted to ids.

        A limit of 0 means no limit.
        """

    @abstractmethod
    def list_issue_ids(self) -> list[str]:
        """All issue ids, in store order."""

    @abstractmethod
    def get_children(self, parent_id: str) -> list[str]:
        """Ids of direct children of an issue."""

    @abstractmethod
    def get_ready_work(self, limit: int = 0) -> list[Issue]:
        """Open or in-progress issues with no open dependency."""

    @abstractmethod
    def resolve_id(self, partial: str) -> str | None:
        """Resolve a partial or bare ID to a full ID."""

    # --- Dependencies ---

    @abstractmethod
    def add_dependency(self, issue_id: str, depends_on_id: str, kind: str) -> None:
        """Insert a dependency edge."""

    @abstractmethod
    def remove_dependency(self, issue_id: str, depends_on_id: str) -> None:
        """Delete a dependency edge. Absence is not an error."""

    @abstractmethod
    def dependency_exists(self, issue_id: str, depends_on_id: str) -> bool:
        """True if issue_id already depends on depends_on_id."""

    @abstractmethod
    def get_dependencies(self, issue_id: str) -> list[str]:
        """Forward neighbours: ids this issue depends on."""

    @abstractmethod
    def get_blocked_by(self, issue_id: str) -> list[str]:
        """Reverse neighbours: ids that depend on this issue."""

    @abstractmethod
    def get_issues_with_open_deps(self) -> set[str]:
        """Ids with at least one dependency on a non-closed issue."""

    # --- Event streams ---

    @abstractmethod
    def add_log(self, log: Log) -> int:
        """Append a log entry; returns its id."""

    @abstractmethod
    def get_logs(self, issue_id: str, limit: int = 0) -> list[Log]:
        """Logs for an issue, oldest first."""

    @abstractmethod
    def add_comment(self, comment: Comment) -> int:
        """Append a comment; returns its id."""

    @abstractmethod
    def get_comments(self, issue_id: str) -> list[Comment]:
        """Comments for an issue, oldest first."""

    @abstractmethod
    def add_handoff(self, handoff: Handoff) -> int:
        """Append a handoff; returns its id."""

    @abstractmethod
    def get_latest_handoff(self, issue_id: str) -> Handoff | None:
        """Most recent handoff for an issue."""

    @abstractmethod
    def link_file(self, link: IssueFile) -> None:
        """Link a file to an issue, replacing an existing link for the path."""

    @abstractmethod
    def get_linked_files(self, issue_id: str) -> list[IssueFile]:
        """Files linked to an issue."""

    # --- Action log ---

    @abstractmethod
    def log_action(self, action: ActionLog) -> None:
        """Append an action log row."""

    @abstractmethod
    def list_action_log(self, session_id: str | None = None,
                        entity_id: str | None = None,
                        action_type: str | None = None,
                        limit: int = 0) -> list[ActionLog]:
        """Action log rows matching the filter, oldest first."""

    @abstractmethod
    def max_action_rowid(self) -> int:
        """Highest action log sequence number, 0 when empty."""

    @abstractmethod
    def get_actions_after_rowid(self, rowid: int) -> list[ActionLog]:
        """Action log rows appended after the given sequence number."""

    @abstractmethod
    def get_rejected_in_progress_ids(self) -> set[str]:
        """In-progress issues rejected with no later review."""

    # --- Sessions ---

    @abstractmethod
    def upsert_session(self, row: SessionRow) -> None:
        """Insert or replace a session row."""

    @abstractmethod
    def insert_session_if_absent(self, row: SessionRow) -> bool:
        """Insert a session row unless its id exists. True if inserted."""

    @abstractmethod
    def get_session_by_id(self, session_id: str) -> SessionRow | None:
        """Look up a session by id."""

    @abstractmethod
    def get_session_by_fingerprint(self, branch: str, fingerprint: str,
                                   agent_pid: int) -> SessionRow | None:
        """Most recently active session for a branch and agent fingerprint."""

    @abstractmethod
    def update_session_activity(self, session_id: str, when: datetime) -> None:
        """Bump last_activity for a session."""

    @abstractmethod
    def update_session_name(self, session_id: str, name: str) -> None:
        """Set the display name of a session."""

    @abstractmethod
    def list_all_sessions(self) -> list[SessionRow]:
        """All sessions, most recently active first."""

    @abstractmethod
    def delete_stale_sessions(self, before: datetime) -> int:
        """Delete sessions inactive since before; returns count."""
