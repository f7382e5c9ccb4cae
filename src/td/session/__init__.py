"""Agent session identity and legacy session migration."""

from td.session.fingerprint import AgentFingerprint, AgentType, get_agent_fingerprint
from td.session.migration import migrate_filesystem_sessions
from td.session.session import (
    Session, cleanup_stale_sessions, force_new_session, format_session_id,
    get_current_branch, get_or_create, get_session, list_sessions, set_name,
)

__all__ = [
    "AgentFingerprint",
    "AgentType",
    "Session",
    "cleanup_stale_sessions",
    "force_new_session",
    "format_session_id",
    "get_agent_fingerprint",
    "get_current_branch",
    "get_or_create",
    "get_session",
    "list_sessions",
    "migrate_filesystem_sessions",
    "set_name",
]
