"""Work sessions scoped by git branch and agent fingerprint.

The same agent on the same branch keeps getting the same session until it
asks for a new one.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from td.config import TODOS_DIR
from td.errors import NotInitialized
from td.models import (
    SessionRow, format_timestamp, generate_session_id, now_utc,
)
from td.session.fingerprint import AgentFingerprint, TERMINAL_ENV_VARS, get_agent_fingerprint
from td.session.migration import migrate_filesystem_sessions
from td.storage.interface import Storage

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "default"

AI_SESSION_ENV_VARS = (
    "CLAUDE_CODE_SSE_PORT",
    "CLAUDE_SESSION_ID",
    "ANTHROPIC_SESSION_ID",
    "AI_SESSION_ID",
    "CURSOR_SESSION_ID",
    "COPILOT_SESSION_ID",
)

# Serializes lookup-then-create so parallel callers converge on one row
_session_lock = threading.RLock()


@dataclass
class Session:
    id: str
    name: str = ""
    branch: str = ""
    agent_type: str = ""
    agent_pid: int = 0
    context_id: str = ""
    previous_session_id: str = ""
    started_at: datetime = field(default_factory=now_utc)
    last_activity: datetime | None = None
    is_new: bool = False

    @classmethod
    def from_row(cls, row: SessionRow, is_new: bool = False) -> Session:
        return cls(
            id=row.id,
            name=row.name,
            branch=row.branch,
            agent_type=row.agent_type,
            agent_pid=row.agent_pid,
            context_id=row.context_id,
            previous_session_id=row.previous_session_id,
            started_at=row.started_at,
            last_activity=row.last_activity,
            is_new=is_new,
        )

    def display(self) -> str:
        """"ses_abc123 (name)" or just "ses_abc123"."""
        if self.name:
            return f"{self.id} ({self.name})"
        return self.id

    def display_with_agent(self) -> str:
        base = self.display()
        if self.agent_type:
            return f"{base} [{self.agent_type}]"
        return base

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "branch": self.branch,
            "agent_type": self.agent_type,
            "started_at": format_timestamp(self.started_at),
            "is_new": self.is_new,
        }
        if self.name:
            d["name"] = self.name
        if self.agent_pid:
            d["agent_pid"] = self.agent_pid
        if self.context_id:
            d["context_id"] = self.context_id
        if self.previous_session_id:
            d["previous_session_id"] = self.previous_session_id
        if self.last_activity:
            d["last_activity"] = format_timestamp(self.last_activity)
        return d


# --- Environment ---

def _git(args: list[str], cwd: str | None) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args], cwd=cwd, capture_output=True, text=True, timeout=5
        )
    except (FileNotFoundError, NotADirectoryError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def get_current_branch(cwd: str | None = None) -> str:
    """Current git branch, "detached-<sha8>" on a detached HEAD, else "default"."""
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    if not branch:
        return DEFAULT_BRANCH
    if branch == "HEAD":
        sha = _git(["rev-parse", "HEAD"], cwd) or ""
        if len(sha) >= 8:
            return "detached-" + sha[:8]
        return DEFAULT_BRANCH
    return branch


def get_head_sha(cwd: str | None = None) -> str:
    """Full sha of HEAD, or "" outside a git checkout."""
    return _git(["rev-parse", "HEAD"], cwd) or ""


def get_context_id() -> str:
    """Describe the execution context. Recorded for audit, never matched on."""
    explicit = os.environ.get("TD_SESSION_ID")
    if explicit:
        return "explicit:" + explicit

    for name in AI_SESSION_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return "ai:" + value

    for name in TERMINAL_ENV_VARS + ("SSH_TTY",):
        value = os.environ.get(name)
        if value:
            return f"term:{name}={value}"

    ppid = os.getppid()
    try:
        tty = os.ttyname(0)
    except OSError:
        tty = ""
    if tty:
        return f"proc:ppid={ppid} tty={tty}"
    shlvl = os.environ.get("SHLVL")
    if shlvl:
        return f"proc:ppid={ppid} shlvl={shlvl}"
    return f"proc:ppid={ppid}"


# --- Operations ---

def _require_initialized(base_dir: str) -> None:
    if not os.path.isdir(os.path.join(base_dir, TODOS_DIR)):
        raise NotInitialized(base_dir)


def _migrate(store: Storage, base_dir: str) -> None:
    migrate_filesystem_sessions(store, base_dir)
    cwd = os.getcwd()
    if os.path.abspath(cwd) != os.path.abspath(base_dir):
        migrate_filesystem_sessions(store, cwd)


def _create(store: Storage, branch: str, fp: AgentFingerprint,
            previous_id: str = "") -> Session:
    now = now_utc()
    row = SessionRow(
        id=generate_session_id(),
        branch=branch,
        agent_type=str(fp),
        agent_pid=fp.pid,
        context_id=get_context_id(),
        previous_session_id=previous_id,
        started_at=now,
        last_activity=now,
    )
    # Retry on the rare short-id collision rather than replace another session
    while not store.insert_session_if_absent(row):
        row.id = generate_session_id()
    logger.debug("created session %s for %s on %s", row.id, row.agent_type, branch)
    return Session.from_row(row, is_new=True)


def get_or_create(store: Storage, base_dir: str) -> Session:
    """The session for the current branch and agent, creating one if needed.

    Raises NotInitialized when base_dir has no .todos/ directory.
    """
    _require_initialized(base_dir)
    with _session_lock:
        _migrate(store, base_dir)

        branch = get_current_branch(base_dir)
        fp = get_agent_fingerprint()
        row = store.get_session_by_fingerprint(branch, str(fp), fp.pid)
        if row is not None:
            now = now_utc()
            store.update_session_activity(row.id, now)
            sess = Session.from_row(row)
            sess.last_activity = now
            return sess

        return _create(store, branch, fp)


def get_session(store: Storage, base_dir: str) -> Session | None:
    """The current session without creating one."""
    _require_initialized(base_dir)
    fp = get_agent_fingerprint()
    row = store.get_session_by_fingerprint(get_current_branch(base_dir), str(fp), fp.pid)
    return Session.from_row(row) if row else None


def force_new_session(store: Storage, base_dir: str) -> Session:
    """Start a new session that records the one it replaces."""
    _require_initialized(base_dir)
    with _session_lock:
        _migrate(store, base_dir)
        branch = get_current_branch(base_dir)
        fp = get_agent_fingerprint()
        current = store.get_session_by_fingerprint(branch, str(fp), fp.pid)
        return _create(store, branch, fp, current.id if current else "")


def set_name(store: Storage, base_dir: str, name: str) -> Session:
    sess = get_or_create(store, base_dir)
    store.update_session_name(sess.id, name)
    sess.name = name
    return sess


def list_sessions(store: Storage) -> list[Session]:
    return [Session.from_row(row) for row in store.list_all_sessions()]


def cleanup_stale_sessions(store: Storage, max_age: timedelta) -> int:
    """Delete sessions idle for longer than max_age; returns the count."""
    return store.delete_stale_sessions(now_utc() - max_age)


def format_session_id(store: Storage, session_id: str) -> str:
    """"ses_abc123 (name)" when the session has a name."""
    row = store.get_session_by_id(session_id)
    if row is not None and row.name:
        return f"{session_id} ({row.name})"
    return session_id
