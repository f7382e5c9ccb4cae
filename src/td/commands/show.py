"""td show - display issue details."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.dependency import DependencyGraph
from td.utils import format_time_ago


@click.command("show")
@click.argument("issue_id")
@pass_ctx
def show(ctx: TdContext, issue_id: str) -> None:
    """Show detailed view of an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    issue = ctx.get_issue(issue_id)
    graph = DependencyGraph(ctx.store)
    deps = graph.get_dependencies(issue.id)
    dependents = graph.get_dependents(issue.id)
    logs = ctx.store.get_logs(issue.id)
    comments = ctx.store.get_comments(issue.id)
    handoff = ctx.store.get_latest_handoff(issue.id)
    files = ctx.store.get_linked_files(issue.id)

    if ctx.json_output:
        data = issue.to_dict()
        data["_dependencies"] = [d.to_dict() for d in deps]
        data["_dependents"] = [d.to_dict() for d in dependents]
        data["_logs"] = [entry.to_dict() for entry in logs]
        data["_comments"] = [c.to_dict() for c in comments]
        data["_handoff"] = handoff.to_dict() if handoff else None
        data["_files"] = [f.to_dict() for f in files]
        ctx.output(data)
        return

    click.echo(f"{'─' * 60}")
    click.echo(f"  {issue.id}")
    click.echo(f"{'─' * 60}")
    click.echo(f"  Title:    {issue.title}")
    click.echo(f"  Status:   {issue.status}")
    click.echo(f"  Priority: {issue.priority}")
    click.echo(f"  Type:     {issue.type}")
    if issue.parent_id:
        click.echo(f"  Parent:   {issue.parent_id}")
    if issue.labels:
        click.echo(f"  Labels:   {', '.join(issue.labels)}")
    click.echo(f"  Created:  {format_time_ago(issue.created_at)}")
    click.echo(f"  Updated:  {format_time_ago(issue.updated_at)}")
    if issue.closed_at:
        click.echo(f"  Closed:   {format_time_ago(issue.closed_at)}")

    if issue.description:
        click.echo(f"\n  Description:")
        for line in issue.description.split("\n"):
            click.echo(f"    {line}")

    if deps:
        click.echo(f"\n  Depends on:")
        for dep in deps:
            click.echo(f"    → {dep.id} ({dep.status}) {dep.title}")

    if dependents:
        click.echo(f"\n  Blocks:")
        for dep in dependents:
            click.echo(f"    ← {dep.id} ({dep.status}) {dep.title}")

    if files:
        click.echo(f"\n  Files:")
        for f in files:
            click.echo(f"    {f.file_path} [{f.role}]")

    if handoff:
        click.echo(f"\n  Latest handoff ({format_time_ago(handoff.timestamp)}):")
        for label, items in (("Done", handoff.done), ("Remaining", handoff.remaining),
                             ("Decisions", handoff.decisions),
                             ("Uncertain", handoff.uncertain)):
            for item in items:
                click.echo(f"    {label}: {item}")

    if logs:
        click.echo(f"\n  Log ({len(logs)}):")
        for entry in logs:
            click.echo(f"    [{format_time_ago(entry.timestamp)}] {entry.type}: {entry.message}")

    if comments:
        click.echo(f"\n  Comments ({len(comments)}):")
        for c in comments:
            click.echo(f"    [{format_time_ago(c.created_at)}] {c.session_id}: {c.text}")

    click.echo()
