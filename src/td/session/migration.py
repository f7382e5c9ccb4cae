"""One-shot import of filesystem session files into the sessions table.

Older releases kept sessions on disk under ``.todos/``:

* ``session``: one JSON object, or the line format
  ``id / started_at / context_id / name / previous_session_id``
* ``sessions/<branch>/<fingerprint>.json``: one JSON object per agent
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from datetime import datetime

from td.config import TODOS_DIR
from td.models import SessionRow, now_utc, parse_timestamp
from td.storage.interface import Storage

logger = logging.getLogger(__name__)

SESSIONS_DIR = "sessions"
LEGACY_SESSION_FILE = "session"

_migration_lock = threading.Lock()


def _ts(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _row_from_json(data: object, branch: str = "", agent_type: str = "") -> SessionRow | None:
    if not isinstance(data, dict) or not data.get("id"):
        return None
    started = _ts(data.get("started_at")) or now_utc()
    try:
        agent_pid = int(data.get("agent_pid") or 0)
    except (TypeError, ValueError):
        agent_pid = 0
    return SessionRow(
        id=str(data["id"]),
        name=data.get("name") or "",
        branch=data.get("branch") or branch,
        agent_type=data.get("agent_type") or agent_type,
        agent_pid=agent_pid,
        context_id=data.get("context_id") or "",
        previous_session_id=data.get("previous_session_id") or "",
        started_at=started,
        last_activity=_ts(data.get("last_activity")) or started,
    )


def parse_legacy_session(text: str) -> SessionRow | None:
    """Parse the line-oriented session format. Needs at least id and started_at."""
    lines = [line.strip() for line in text.strip().split("\n")]
    if len(lines) < 2 or not lines[0]:
        return None
    started = _ts(lines[1]) or now_utc()
    return SessionRow(
        id=lines[0],
        context_id=lines[2] if len(lines) >= 3 else "",
        name=lines[3] if len(lines) >= 4 else "",
        previous_session_id=lines[4] if len(lines) >= 5 else "",
        started_at=started,
        last_activity=started,
    )


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("skipping unreadable session file %s: %s", path, e)
        return None


def _scan_sessions_dir(sessions_path: str) -> list[SessionRow]:
    rows = []
    for dirpath, _dirnames, filenames in os.walk(sessions_path):
        branch = os.path.relpath(dirpath, sessions_path)
        if branch == ".":
            branch = ""
        for filename in sorted(filenames):
            if not filename.endswith(".json"):
                continue
            path = os.path.join(dirpath, filename)
            text = _read_text(path)
            if text is None:
                continue
            try:
                data = json.loads(text)
            except ValueError:
                logger.debug("skipping malformed session file %s", path)
                continue
            row = _row_from_json(data, branch=branch, agent_type=filename[:-len(".json")])
            if row is None:
                logger.debug("skipping session file without id: %s", path)
                continue
            rows.append(row)
    return rows


def _scan_legacy_file(legacy_path: str) -> SessionRow | None:
    text = _read_text(legacy_path)
    if text is None:
        return None
    try:
        row = _row_from_json(json.loads(text))
    except ValueError:
        row = None
    if row is None:
        row = parse_legacy_session(text)
    return row


def migrate_filesystem_sessions(store: Storage, base_dir: str) -> int:
    """Import legacy session files under base_dir/.todos, then delete them.

    Returns the number of rows inserted. A no-op when no legacy paths exist.
    Rows are inserted with INSERT OR IGNORE before anything is removed, so an
    interrupted run is safe to repeat.
    """
    todos = os.path.join(base_dir, TODOS_DIR)
    sessions_path = os.path.join(todos, SESSIONS_DIR)
    legacy_path = os.path.join(todos, LEGACY_SESSION_FILE)

    if not os.path.isdir(sessions_path) and not os.path.isfile(legacy_path):
        return 0

    with _migration_lock:
        has_dir = os.path.isdir(sessions_path)
        has_file = os.path.isfile(legacy_path)
        if not has_dir and not has_file:
            return 0

        rows = _scan_sessions_dir(sessions_path) if has_dir else []
        if has_file:
            legacy = _scan_legacy_file(legacy_path)
            if legacy is not None:
                rows.append(legacy)

        inserted = 0
        for row in rows:
            if store.insert_session_if_absent(row):
                inserted += 1

        if has_dir:
            try:
                shutil.rmtree(sessions_path)
            except OSError as e:
                logger.warning("could not remove %s: %s", sessions_path, e)
        if has_file:
            try:
                os.remove(legacy_path)
            except OSError as e:
                logger.warning("could not remove %s: %s", legacy_path, e)

    logger.debug("migrated %d of %d filesystem sessions from %s",
                 inserted, len(rows), todos)
    return inserted


def migration_complete(base_dir: str) -> bool:
    """True when no legacy session paths remain under base_dir/.todos."""
    todos = os.path.join(base_dir, TODOS_DIR)
    return not (os.path.exists(os.path.join(todos, SESSIONS_DIR))
                or os.path.exists(os.path.join(todos, LEGACY_SESSION_FILE)))
