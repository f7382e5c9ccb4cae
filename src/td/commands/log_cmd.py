"""td log - record progress on an issue."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.models import Log, LogType, now_utc


@click.command("log")
@click.argument("issue_id")
@click.argument("message")
@click.option("--type", "log_type", default=LogType.PROGRESS,
              type=click.Choice(LogType.ALL), help="Log entry type")
@pass_ctx
def log_cmd(ctx: TdContext, issue_id: str, message: str, log_type: str) -> None:
    """Append a log entry to an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    entry = Log(
        issue_id=full_id,
        session_id=ctx.session.id,
        message=message,
        type=log_type,
        timestamp=now_utc(),
    )
    entry.id = ctx.store.add_log(entry)

    if ctx.json_output:
        ctx.output(entry.to_dict())
    else:
        click.echo(f"Logged {log_type} on {full_id}")
