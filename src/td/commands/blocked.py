"""td blocked - show blocked issues."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.dependency import DependencyGraph
from td.utils import truncate


@click.command("blocked")
@pass_ctx
def blocked(ctx: TdContext) -> None:
    """Show issues that wait on open dependencies."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    report = DependencyGraph(ctx.store).blocked_report()

    if ctx.json_output:
        data = []
        for issue, blockers in report:
            d = issue.to_dict()
            d["blocked_by"] = [b.id for b in blockers]
            data.append(d)
        ctx.output(data)
        return

    if not report:
        click.echo("No blocked issues.")
        return

    for issue, blockers in report:
        title = truncate(issue.title, 45)
        click.echo(f"  {issue.id:<10} {issue.priority} {title}")
        click.echo(f"    blocked by: {', '.join(b.id for b in blockers)}")

    click.echo(f"\n{len(report)} blocked issue(s)")
