"""td comments / td comment - manage comments."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.models import Comment, now_utc
from td.session import format_session_id
from td.utils import format_time_ago


@click.command("comments")
@click.argument("issue_id")
@pass_ctx
def comments(ctx: TdContext, issue_id: str) -> None:
    """List comments for an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    comment_list = ctx.store.get_comments(full_id)

    if ctx.json_output:
        ctx.output([c.to_dict() for c in comment_list])
        return

    if not comment_list:
        click.echo(f"No comments on {full_id}")
        return

    for c in comment_list:
        author = format_session_id(ctx.store, c.session_id)
        click.echo(f"  [{format_time_ago(c.created_at)}] {author}: {c.text}")


@click.command("comment")
@click.argument("issue_id")
@click.argument("text")
@pass_ctx
def comment_add(ctx: TdContext, issue_id: str, text: str) -> None:
    """Add a comment to an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    comment = Comment(
        issue_id=full_id,
        session_id=ctx.session.id,
        text=text,
        created_at=now_utc(),
    )
    comment_id = ctx.store.add_comment(comment)

    if ctx.json_output:
        ctx.output({"id": comment_id, "issue_id": full_id})
    else:
        click.echo(f"Added comment to {full_id}")
