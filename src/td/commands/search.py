"""td search - quick search by id, title or label."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.query import quick_search
from td.utils import format_issue_row


@click.command("search")
@click.argument("term")
@click.option("--limit", default=20, type=int, help="Max results")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format")
@pass_ctx
def search(ctx: TdContext, term: str, limit: int, long_format: bool) -> None:
    """Search issues by id, title substring or label substring."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    issues = quick_search(ctx.store, term, limit=limit)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo(f"No issues matching '{term}'")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))

    click.echo(f"\n{len(issues)} result(s)")
