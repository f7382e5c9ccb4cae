"""SQLite storage implementation for td."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from td.errors import StoreError
from td.models import (
    ActionLog, ActionType, Comment, DepType, Handoff, Issue, IssueFile, Log,
    SessionRow, Status, normalize_issue_id, now_utc, parse_timestamp,
)
from td.storage.interface import Storage
from td.storage.schema import SCHEMA

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created": "created_at",
    "created_at": "created_at",
    "updated": "updated_at",
    "updated_at": "updated_at",
    "closed": "closed_at",
    "closed_at": "closed_at",
    "priority": "priority",
    "status": "status",
    "title": "title",
    "id": "id",
}

ISSUE_UPDATE_FIELDS = (
    "title", "description", "status", "type", "priority", "labels",
    "parent_id", "closed_at",
)


def db_timestamp(dt: datetime | None) -> str | None:
    """Fixed-width UTC timestamp so stored values sort lexically."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _join_labels(labels: Iterable[str]) -> str:
    return ",".join(l.strip() for l in labels if l.strip())


def _split_labels(raw: str | None) -> list[str]:
    return [l for l in (raw or "").split(",") if l]


class SQLiteStorage(Storage):
    """SQLite-based storage backend.

    A single connection is shared across threads; every statement runs under
    an internal lock.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._init_schema()
        except sqlite3.Error as e:
            raise StoreError(f"open database {db_path}: {e}") from e

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.debug("schema ready at %s", self._db_path)

    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Helpers ---

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(str(e)) from e
            except Exception:
                self._conn.rollback()
                raise

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        return Issue(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            status=row["status"] or Status.OPEN,
            type=row["type"] or "task",
            priority=row["priority"] or "P2",
            labels=_split_labels(row["labels"]),
            parent_id=row["parent_id"] or "",
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
            updated_at=parse_timestamp(row["updated_at"]) or now_utc(),
            closed_at=parse_timestamp(row["closed_at"]),
        )

    def _row_to_session(self, row: sqlite3.Row) -> SessionRow:
        started = parse_timestamp(row["started_at"]) or now_utc()
        return SessionRow(
            id=row["id"],
            name=row["name"] or "",
            branch=row["branch"] or "",
            agent_type=row["agent_type"] or "",
            agent_pid=row["agent_pid"] or 0,
            context_id=row["context_id"] or "",
            previous_session_id=row["previous_session_id"] or "",
            started_at=started,
            last_activity=parse_timestamp(row["last_activity"]) or started,
        )

    def _row_to_action(self, row: sqlite3.Row) -> ActionLog:
        return ActionLog(
            id=row["id"],
            session_id=row["session_id"],
            action_type=row["action_type"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            previous_data=row["previous_data"] or "",
            new_data=row["new_data"] or "",
            timestamp=parse_timestamp(row["timestamp"]) or now_utc(),
            undone=bool(row["undone"]),
        )

    # --- Issues ---

    def create_issue(self, issue: Issue) -> None:
        now = now_utc()
        if not issue.created_at:
            issue.created_at = now
        if not issue.updated_at:
            issue.updated_at = now
        if issue.status == Status.CLOSED and issue.closed_at is None:
            issue.closed_at = now

        with self._write() as conn:
            conn.execute(
                """INSERT INTO issues (
                    id, title, description, status, type, priority, labels,
                    parent_id, created_at, updated_at, closed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    issue.id, issue.title, issue.description, issue.status,
                    issue.type, issue.priority, _join_labels(issue.labels),
                    issue.parent_id, db_timestamp(issue.created_at),
                    db_timestamp(issue.updated_at), db_timestamp(issue.closed_at),
                )
            )

    def get_issue(self, issue_id: str) -> Issue | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM issues WHERE id = ?", (issue_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_issue(row)

    def get_issues(self, issue_ids: list[str]) -> list[Issue]:
        return self.list_issues(ids=issue_ids)

    def update_issue(self, issue_id: str, updates: dict[str, Any]) -> None:
        current = self.get_issue(issue_id)
        if current is None:
            raise StoreError(f"issue not found: {issue_id}")

        set_clauses = []
        params: list[Any] = []
        for key, value in updates.items():
            if key not in ISSUE_UPDATE_FIELDS:
                raise StoreError(f"cannot update field: {key}")
            if key == "labels":
                value = _join_labels(value)
            elif key == "closed_at":
                value = db_timestamp(value)
            set_clauses.append(f"{key} = ?")
            params.append(value)

        # Keep closed_at consistent with status transitions
        new_status = updates.get("status")
        if new_status and "closed_at" not in updates:
            if new_status == Status.CLOSED and current.status != Status.CLOSED:
                set_clauses.append("closed_at = ?")
                params.append(db_timestamp(now_utc()))
            elif new_status != Status.CLOSED and current.status == Status.CLOSED:
                set_clauses.append("closed_at = NULL")

        set_clauses.append("updated_at = ?")
        params.append(db_timestamp(now_utc()))
        params.append(issue_id)

        with self._write() as conn:
            conn.execute(
                f"UPDATE issues SET {', '.join(set_clauses)} WHERE id = ?", params
            )

    def list_issues(self, limit: int = 0, sort_by: str = "created_at",
                    descending: bool = False,
                    ids: Iterable[str] | None = None) -> list[Issue]:
        """List issues in store order.

        When ids is given only those issues are returned; the id list travels
        as a single JSON parameter so there is no bound on its length.
        """
        order_col = SORT_COLUMNS.get(sort_by, "created_at")
        order_dir = "DESC" if descending else "ASC"
        sql = "SELECT * FROM issues"
        params: list[Any] = []
        if ids is not None:
            sql += " WHERE id IN (SELECT value FROM json_each(?))"
            params.append(json.dumps(list(ids)))
        sql += f" ORDER BY {order_col} {order_dir}, rowid {order_dir}"
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_issue(row) for row in rows]

    def list_issue_ids(self) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT id FROM issues ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [row["id"] for row in rows]

    def get_children(self, parent_id: str) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT id FROM issues WHERE parent_id = ? ORDER BY created_at ASC, rowid ASC",
                (parent_id,)
            ).fetchall()
        return [row["id"] for row in rows]

    def get_ready_work(self, limit: int = 0) -> list[Issue]:
        """Open or in-progress issues with no open dependency."""
        sql = """
            SELECT i.* FROM issues i
            WHERE i.status IN ('open', 'in_progress')
              AND NOT EXISTS (
                SELECT 1 FROM issue_dependencies d
                JOIN issues blocker ON d.depends_on_id = blocker.id
                WHERE d.issue_id = i.id
                  AND d.relation_type = 'depends_on'
                  AND blocker.status != 'closed'
              )
            ORDER BY i.priority ASC, i.created_at ASC
        """
        params: list[Any] = []
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_issue(row) for row in rows]

    def resolve_id(self, partial: str) -> str | None:
        """Resolve a partial ID to a full ID."""
        candidates = [partial]
        normalized = normalize_issue_id(partial)
        if normalized != partial:
            candidates.append(normalized)
        with self._read() as conn:
            for candidate in candidates:
                row = conn.execute(
                    "SELECT id FROM issues WHERE id = ?", (candidate,)
                ).fetchone()
                if row:
                    return row["id"]

            # Unique prefix match
            rows = conn.execute(
                "SELECT id FROM issues WHERE id LIKE ?", (f"{normalized}%",)
            ).fetchall()
        if len(rows) == 1:
            return rows[0]["id"]
        return None

    # --- Dependencies ---

    def add_dependency(self, issue_id: str, depends_on_id: str,
                       kind: str = DepType.DEPENDS_ON) -> None:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO issue_dependencies (issue_id, depends_on_id, relation_type) "
                "VALUES (?, ?, ?)",
                (issue_id, depends_on_id, kind)
            )

    def remove_dependency(self, issue_id: str, depends_on_id: str) -> None:
        with self._write() as conn:
            conn.execute(
                "DELETE FROM issue_dependencies WHERE issue_id = ? AND depends_on_id = ?",
                (issue_id, depends_on_id)
            )

    def dependency_exists(self, issue_id: str, depends_on_id: str) -> bool:
        with self._read() as conn:
            row = conn.execute(
                "SELECT 1 FROM issue_dependencies WHERE issue_id = ? AND depends_on_id = ? "
                "AND relation_type = ?",
                (issue_id, depends_on_id, DepType.DEPENDS_ON)
            ).fetchone()
        return row is not None

    def get_dependencies(self, issue_id: str) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT depends_on_id FROM issue_dependencies "
                "WHERE issue_id = ? AND relation_type = ? ORDER BY rowid",
                (issue_id, DepType.DEPENDS_ON)
            ).fetchall()
        return [row["depends_on_id"] for row in rows]

    def get_blocked_by(self, issue_id: str) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT issue_id FROM issue_dependencies "
                "WHERE depends_on_id = ? AND relation_type = ? ORDER BY rowid",
                (issue_id, DepType.DEPENDS_ON)
            ).fetchall()
        return [row["issue_id"] for row in rows]

    def get_issues_with_open_deps(self) -> set[str]:
        with self._read() as conn:
            rows = conn.execute("""
                SELECT DISTINCT d.issue_id
                FROM issue_dependencies d
                JOIN issues i ON d.depends_on_id = i.id
                WHERE d.relation_type = 'depends_on'
                  AND i.status != 'closed'
            """).fetchall()
        return {row["issue_id"] for row in rows}

    # --- Logs ---

    def add_log(self, log: Log) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "INSERT INTO logs (issue_id, session_id, message, type, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (log.issue_id, log.session_id, log.message, log.type,
                 db_timestamp(log.timestamp))
            )
        log.id = cur.lastrowid or 0
        return log.id

    def get_logs(self, issue_id: str, limit: int = 0) -> list[Log]:
        sql = "SELECT * FROM logs WHERE issue_id = ? ORDER BY timestamp ASC, id ASC"
        params: list[Any] = [issue_id]
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            Log(
                id=row["id"],
                issue_id=row["issue_id"],
                session_id=row["session_id"],
                message=row["message"],
                type=row["type"],
                timestamp=parse_timestamp(row["timestamp"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Comments ---

    def add_comment(self, comment: Comment) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "INSERT INTO comments (issue_id, session_id, text, created_at) "
                "VALUES (?, ?, ?, ?)",
                (comment.issue_id, comment.session_id, comment.text,
                 db_timestamp(comment.created_at))
            )
        comment.id = cur.lastrowid or 0
        return comment.id

    def get_comments(self, issue_id: str) -> list[Comment]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM comments WHERE issue_id = ? ORDER BY created_at ASC, id ASC",
                (issue_id,)
            ).fetchall()
        return [
            Comment(
                id=row["id"],
                issue_id=row["issue_id"],
                session_id=row["session_id"],
                text=row["text"],
                created_at=parse_timestamp(row["created_at"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Handoffs ---

    def add_handoff(self, handoff: Handoff) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "INSERT INTO handoffs (issue_id, session_id, done, remaining, "
                "decisions, uncertain, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (handoff.issue_id, handoff.session_id,
                 json.dumps(handoff.done), json.dumps(handoff.remaining),
                 json.dumps(handoff.decisions), json.dumps(handoff.uncertain),
                 db_timestamp(handoff.timestamp))
            )
        handoff.id = cur.lastrowid or 0
        return handoff.id

    def get_latest_handoff(self, issue_id: str) -> Handoff | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM handoffs WHERE issue_id = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT 1",
                (issue_id,)
            ).fetchone()
        if row is None:
            return None
        return Handoff(
            id=row["id"],
            issue_id=row["issue_id"],
            session_id=row["session_id"],
            done=json.loads(row["done"] or "[]"),
            remaining=json.loads(row["remaining"] or "[]"),
            decisions=json.loads(row["decisions"] or "[]"),
            uncertain=json.loads(row["uncertain"] or "[]"),
            timestamp=parse_timestamp(row["timestamp"]) or now_utc(),
        )

    # --- Files ---

    def link_file(self, link: IssueFile) -> None:
        with self._write() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO issue_files (issue_id, file_path, role, "
                "linked_sha, linked_at) VALUES (?, ?, ?, ?, ?)",
                (link.issue_id, link.file_path, link.role, link.linked_sha,
                 db_timestamp(link.linked_at))
            )

    def get_linked_files(self, issue_id: str) -> list[IssueFile]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM issue_files WHERE issue_id = ? ORDER BY role, file_path",
                (issue_id,)
            ).fetchall()
        return [
            IssueFile(
                issue_id=row["issue_id"],
                file_path=row["file_path"],
                role=row["role"],
                linked_sha=row["linked_sha"] or "",
                linked_at=parse_timestamp(row["linked_at"]) or now_utc(),
            )
            for row in rows
        ]

    # --- Action log ---

    def log_action(self, action: ActionLog) -> None:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO action_log (id, session_id, action_type, entity_type, "
                "entity_id, previous_data, new_data, timestamp, undone) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (action.id, action.session_id, action.action_type,
                 action.entity_type, action.entity_id, action.previous_data,
                 action.new_data, db_timestamp(action.timestamp),
                 int(action.undone))
            )

    def list_action_log(self, session_id: str | None = None,
                        entity_id: str | None = None,
                        action_type: str | None = None,
                        limit: int = 0) -> list[ActionLog]:
        sql = "SELECT * FROM action_log WHERE 1=1"
        params: list[Any] = []
        if session_id:
            sql += " AND session_id = ?"
            params.append(session_id)
        if entity_id:
            sql += " AND entity_id = ?"
            params.append(entity_id)
        if action_type:
            sql += " AND action_type = ?"
            params.append(action_type)
        sql += " ORDER BY seq ASC"
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_action(row) for row in rows]

    def max_action_rowid(self) -> int:
        with self._read() as conn:
            row = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM action_log").fetchone()
        return int(row[0])

    def get_actions_after_rowid(self, rowid: int) -> list[ActionLog]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM action_log WHERE seq > ? ORDER BY seq ASC", (rowid,)
            ).fetchall()
        return [self._row_to_action(row) for row in rows]

    def get_rejected_in_progress_ids(self) -> set[str]:
        with self._read() as conn:
            rows = conn.execute("""
                SELECT DISTINCT i.id FROM issues i
                WHERE i.status = ?
                  AND EXISTS (
                    SELECT 1 FROM action_log al
                    WHERE al.entity_id = i.id AND al.action_type = ? AND al.undone = 0
                      AND NOT EXISTS (
                        SELECT 1 FROM action_log al2
                        WHERE al2.entity_id = i.id AND al2.action_type = ?
                          AND (al2.timestamp > al.timestamp
                               OR (al2.timestamp = al.timestamp AND al2.seq > al.seq))
                      )
                  )
            """, (Status.IN_PROGRESS, ActionType.REJECT, ActionType.REVIEW)).fetchall()
        return {row["id"] for row in rows}

    # --- Sessions ---

    _SESSION_INSERT = (
        "INTO sessions (id, name, branch, agent_type, agent_pid, context_id, "
        "previous_session_id, started_at, last_activity) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
    )

    def _session_params(self, row: SessionRow) -> tuple:
        return (
            row.id, row.name, row.branch, row.agent_type, row.agent_pid,
            row.context_id, row.previous_session_id,
            db_timestamp(row.started_at),
            db_timestamp(row.last_activity or row.started_at),
        )

    def upsert_session(self, row: SessionRow) -> None:
        with self._write() as conn:
            conn.execute("INSERT OR REPLACE " + self._SESSION_INSERT,
                         self._session_params(row))

    def insert_session_if_absent(self, row: SessionRow) -> bool:
        with self._write() as conn:
            cur = conn.execute("INSERT OR IGNORE " + self._SESSION_INSERT,
                               self._session_params(row))
        return cur.rowcount > 0

    def get_session_by_id(self, session_id: str) -> SessionRow | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def get_session_by_fingerprint(self, branch: str, fingerprint: str,
                                   agent_pid: int) -> SessionRow | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE branch = ? AND agent_type = ? AND agent_pid = ? "
                "ORDER BY COALESCE(last_activity, started_at) DESC, rowid DESC LIMIT 1",
                (branch, fingerprint, agent_pid)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def update_session_activity(self, session_id: str, when: datetime) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE sessions SET last_activity = ? WHERE id = ?",
                (db_timestamp(when), session_id)
            )

    def update_session_name(self, session_id: str, name: str) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE sessions SET name = ? WHERE id = ?", (name, session_id)
            )

    def list_all_sessions(self) -> list[SessionRow]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions "
                "ORDER BY COALESCE(last_activity, started_at) DESC, rowid DESC"
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def delete_stale_sessions(self, before: datetime) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "DELETE FROM sessions WHERE COALESCE(last_activity, started_at) < ?",
                (db_timestamp(before),)
            )
        return cur.rowcount


def open_storage(db_path: str) -> SQLiteStorage:
    """Open or create a SQLite storage at the given path."""
    return SQLiteStorage(db_path)
