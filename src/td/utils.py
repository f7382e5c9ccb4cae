"""Utility functions for td CLI output."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from td.models import Issue, Status


def status_symbol(status: str) -> str:
    """Return a symbol for status display."""
    symbols = {
        Status.OPEN: " ",
        Status.IN_PROGRESS: ">",
        Status.BLOCKED: "!",
        Status.IN_REVIEW: "?",
        Status.CLOSED: "x",
    }
    return symbols.get(status, "?")


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as a relative time string."""
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    months = days // 30
    if months < 12:
        return f"{months}mo ago"
    return f"{days // 365}y ago"


_DURATION_RE = re.compile(r"(\d+)([wdhm])")
_DURATION_UNITS = {"w": 604800, "d": 86400, "h": 3600, "m": 60}


def parse_duration(s: str) -> timedelta | None:
    """Parse a duration like '7d', '2w', '1d12h' or '30m'. None if invalid."""
    remaining = (s or "").strip()
    if not remaining:
        return None
    total = 0
    while remaining:
        m = _DURATION_RE.match(remaining)
        if not m:
            return None
        total += int(m.group(1)) * _DURATION_UNITS[m.group(2)]
        remaining = remaining[m.end():]
    return timedelta(seconds=total)


def truncate(s: str, max_len: int = 60) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def format_issue_row(issue: Issue, long_format: bool = False) -> str:
    """Format an issue as a single-line row for list display."""
    sym = status_symbol(issue.status)
    age = format_time_ago(issue.created_at)
    title = truncate(issue.title, 50)

    if long_format:
        return f"[{sym}] {issue.id:<10} {issue.priority} {issue.type:<8} {title}  ({age})"
    return f"[{sym}] {issue.id:<10} {issue.priority} {title}  ({age})"
