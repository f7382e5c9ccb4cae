"""td session - show, rename, list and prune sessions."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.errors import TdError
from td.session import (
    cleanup_stale_sessions, force_new_session, get_or_create, list_sessions, set_name,
)
from td.utils import format_time_ago, parse_duration


@click.group("session", invoke_without_command=True)
@click.option("--new", "new_session", is_flag=True, help="Start a fresh session")
@click.option("--name", default=None, help="Name the current session")
@click.pass_context
def session_cmd(click_ctx: click.Context, new_session: bool, name: str | None) -> None:
    """Show the current session."""
    if click_ctx.invoked_subcommand is not None:
        return

    ctx = click_ctx.ensure_object(TdContext)
    ctx.ensure_initialized()
    assert ctx.store is not None

    try:
        if new_session:
            sess = force_new_session(ctx.store, ctx.project_root)
        else:
            sess = get_or_create(ctx.store, ctx.project_root)
        if name is not None:
            sess = set_name(ctx.store, ctx.project_root, name)
    except TdError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(sess.to_dict())
        return

    label = "New session" if sess.is_new else "Session"
    click.echo(f"{label}: {sess.display_with_agent()}")
    click.echo(f"  Branch:  {sess.branch}")
    click.echo(f"  Started: {format_time_ago(sess.started_at)}")
    if sess.previous_session_id:
        click.echo(f"  Previous: {sess.previous_session_id}")


@session_cmd.command("list")
@pass_ctx
def session_list(ctx: TdContext) -> None:
    """List all sessions, most recently active first."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    sessions = list_sessions(ctx.store)

    if ctx.json_output:
        ctx.output([s.to_dict() for s in sessions])
        return

    if not sessions:
        click.echo("No sessions.")
        return

    for s in sessions:
        seen = format_time_ago(s.last_activity or s.started_at)
        click.echo(f"  {s.display_with_agent():<40} {s.branch:<20} {seen}")


@session_cmd.command("cleanup")
@click.option("--older-than", default="7d", help="Idle time before a session is removed (e.g. 7d, 12h)")
@pass_ctx
def session_cleanup(ctx: TdContext, older_than: str) -> None:
    """Delete sessions idle for longer than --older-than."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    max_age = parse_duration(older_than)
    if max_age is None:
        ctx.fail(f"invalid duration: {older_than}")

    removed = cleanup_stale_sessions(ctx.store, max_age)

    if ctx.json_output:
        ctx.output({"removed": removed})
    else:
        click.echo(f"Removed {removed} stale session(s)")
