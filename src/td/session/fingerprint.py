"""Agent fingerprinting from environment and process ancestry."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_ANCESTRY_DEPTH = 15


class AgentType:
    CLAUDE_CODE = "claude-code"
    CURSOR = "cursor"
    CODEX = "codex"
    WINDSURF = "windsurf"
    ZED = "zed"
    AIDER = "aider"
    COPILOT = "copilot"
    GEMINI = "gemini"
    EXPLICIT = "explicit"
    TERMINAL = "terminal"
    UNKNOWN = "unknown"


# Process name substring -> agent type, checked in order
AGENT_PATTERNS = (
    ("claude", AgentType.CLAUDE_CODE),
    ("cursor", AgentType.CURSOR),
    ("codex", AgentType.CODEX),
    ("windsurf", AgentType.WINDSURF),
    ("zed", AgentType.ZED),
    ("aider", AgentType.AIDER),
    ("copilot", AgentType.COPILOT),
    ("gemini", AgentType.GEMINI),
)

TERMINAL_ENV_VARS = (
    "TERM_SESSION_ID",
    "TMUX_PANE",
    "STY",
    "WINDOWID",
    "KONSOLE_DBUS_SESSION",
    "GNOME_TERMINAL_SCREEN",
)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_for_filename(s: str) -> str:
    """Keep [A-Za-z0-9_-], replace anything else with '_', cap at 32 chars."""
    return _UNSAFE_CHARS.sub("_", s)[:32]


@dataclass(frozen=True)
class AgentFingerprint:
    type: str
    pid: int = 0
    explicit_id: str = ""

    def __str__(self) -> str:
        if self.explicit_id:
            return f"explicit_{sanitize_for_filename(self.explicit_id)}"
        if self.pid > 0:
            return f"{self.type}_{self.pid}"
        return self.type


UNKNOWN = AgentFingerprint(AgentType.UNKNOWN)


# --- Process ancestry ---

def _proc_info(pid: int) -> tuple[str, int] | None:
    try:
        with open(f"/proc/{pid}/stat") as f:
            stat = f.read()
    except OSError:
        return None
    # Format: pid (comm) state ppid ...; comm may itself contain ')'
    head, sep, tail = stat.rpartition(")")
    if not sep:
        return None
    name = head.partition("(")[2]
    fields = tail.split()
    if len(fields) < 2:
        return None
    try:
        return name, int(fields[1])
    except ValueError:
        return None


def _ps_info(pid: int) -> tuple[str, int] | None:
    try:
        result = subprocess.run(
            ["ps", "-o", "ppid=,comm=", "-p", str(pid)],
            capture_output=True, text=True, timeout=5
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    line = result.stdout.strip()
    if result.returncode != 0 or not line:
        return None
    parts = line.split()
    if len(parts) < 2:
        return None
    try:
        return " ".join(parts[1:]), int(parts[0])
    except ValueError:
        return None


def get_process_info(pid: int) -> tuple[str, int] | None:
    """(name, parent pid) for a process, or None if it cannot be read."""
    return _proc_info(pid) or _ps_info(pid)


def detect_agent_ancestor() -> AgentFingerprint:
    """Walk up to MAX_ANCESTRY_DEPTH ancestors looking for a known agent."""
    pid = os.getppid()
    for _ in range(MAX_ANCESTRY_DEPTH):
        info = get_process_info(pid)
        if info is None:
            break
        name, ppid = info
        lower = name.lower()
        for pattern, agent_type in AGENT_PATTERNS:
            if pattern in lower:
                logger.debug("agent ancestor %s (%s) at pid %d", agent_type, name, pid)
                return AgentFingerprint(agent_type, pid)
        if ppid <= 1:
            break
        pid = ppid
    return UNKNOWN


_ancestor_lock = threading.Lock()
_cached_ancestor: AgentFingerprint | None = None


def cached_agent_ancestor() -> AgentFingerprint:
    """detect_agent_ancestor(), computed once per process."""
    global _cached_ancestor
    with _ancestor_lock:
        if _cached_ancestor is None:
            _cached_ancestor = detect_agent_ancestor()
        return _cached_ancestor


def reset_ancestor_cache(value: AgentFingerprint | None = None) -> None:
    """Forget (or preset) the memoized ancestry result."""
    global _cached_ancestor
    with _ancestor_lock:
        _cached_ancestor = value


def get_terminal_session_id() -> str:
    for name in TERMINAL_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return ""


def get_agent_fingerprint() -> AgentFingerprint:
    """Identify the calling agent.

    Environment checks are re-evaluated on every call; only the process
    ancestry walk is memoized.
    """
    explicit = os.environ.get("TD_SESSION_ID")
    if explicit:
        return AgentFingerprint(AgentType.EXPLICIT, 0, explicit)

    if os.environ.get("CURSOR_AGENT"):
        return AgentFingerprint(AgentType.CURSOR, os.getppid())

    ancestor = cached_agent_ancestor()
    if ancestor.type != AgentType.UNKNOWN:
        return ancestor

    if get_terminal_session_id():
        return AgentFingerprint(AgentType.TERMINAL)

    return UNKNOWN
