"""td ready - show issues ready to work on."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.utils import format_issue_row


@click.command("ready")
@click.option("--limit", default=0, type=int, help="Max issues")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format")
@pass_ctx
def ready(ctx: TdContext, limit: int, long_format: bool) -> None:
    """Show issues that are ready to work on (open, unblocked)."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    issues = ctx.store.get_ready_work(limit)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo("No ready issues.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))
    click.echo(f"\n{len(issues)} ready issue(s)")
