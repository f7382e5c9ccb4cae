"""td query - filter issues with the query language."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.errors import TdError
from td.query import DEFAULT_MAX_RESULTS, execute
from td.utils import format_issue_row


@click.command("query")
@click.argument("expression")
@click.option("--limit", default=0, type=int, help="Max issues to show")
@click.option("--max-results", default=DEFAULT_MAX_RESULTS, type=int,
              help="Max issues fetched from the store")
@click.option("--sort", "sort_by", default=None, help="Sort field (created, updated, priority, ...)")
@click.option("--desc", "descending", is_flag=True, help="Sort descending")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format")
@pass_ctx
def query_cmd(ctx: TdContext, expression: str, limit: int, max_results: int,
              sort_by: str | None, descending: bool, long_format: bool) -> None:
    """Run a query expression, e.g. 'status = open AND priority <= P1'."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    try:
        issues = execute(ctx.store, expression, session_id=ctx.session.id,
                         limit=limit, max_results=max_results,
                         sort_by=sort_by, descending=descending)
    except TdError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo("No matching issues.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))
    click.echo(f"\n{len(issues)} result(s)")
