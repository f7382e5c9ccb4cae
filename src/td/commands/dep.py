"""td dep - manage dependencies."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.dependency import DependencyGraph
from td.errors import TdError
from td.models import ActionType
from td.utils import truncate


@click.group("dep")
def dep() -> None:
    """Manage issue dependencies."""


@dep.command("add")
@click.argument("issue_id")
@click.argument("depends_on_id")
@pass_ctx
def dep_add(ctx: TdContext, issue_id: str, depends_on_id: str) -> None:
    """Add a dependency: ISSUE_ID depends on DEPENDS_ON_ID."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    try:
        DependencyGraph(ctx.store).validate_and_add(full_issue, full_depends)
    except TdError as e:
        ctx.fail(e)

    ctx.log_action(ActionType.ADD_DEPENDENCY, full_issue,
                   new={"issue_id": full_issue, "depends_on_id": full_depends},
                   entity_type="dependency")
    ctx.notify_webhook()

    click.echo(f"Added dependency: {full_issue} depends on {full_depends}")


@dep.command("rm")
@click.argument("issue_id")
@click.argument("depends_on_id")
@pass_ctx
def dep_remove(ctx: TdContext, issue_id: str, depends_on_id: str) -> None:
    """Remove a dependency."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    DependencyGraph(ctx.store).remove(full_issue, full_depends)
    ctx.log_action(ActionType.REMOVE_DEPENDENCY, full_issue,
                   previous={"issue_id": full_issue, "depends_on_id": full_depends},
                   entity_type="dependency")
    ctx.notify_webhook()

    click.echo(f"Removed dependency: {full_issue} → {full_depends}")


@dep.command("list")
@click.argument("issue_id")
@pass_ctx
def dep_list(ctx: TdContext, issue_id: str) -> None:
    """List dependencies for an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    graph = DependencyGraph(ctx.store)
    deps = graph.get_dependencies(full_id)
    dependents = graph.get_dependents(full_id)

    if ctx.json_output:
        ctx.output({
            "dependencies": [d.to_dict() for d in deps],
            "dependents": [d.to_dict() for d in dependents],
        })
        return

    if deps:
        click.echo(f"Dependencies of {full_id}:")
        for d in deps:
            click.echo(f"  → {d.id} ({d.status}) {truncate(d.title)}")
    else:
        click.echo(f"No dependencies for {full_id}")

    if dependents:
        click.echo(f"\nDepended on by:")
        for d in dependents:
            click.echo(f"  ← {d.id} ({d.status}) {truncate(d.title)}")


@dep.command("blocked")
@click.argument("issue_id")
@click.option("--open", "open_only", is_flag=True, help="Skip closed issues and what lies behind them")
@pass_ctx
def dep_blocked(ctx: TdContext, issue_id: str, open_only: bool) -> None:
    """List every issue transitively blocked by ISSUE_ID."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    graph = DependencyGraph(ctx.store)
    if open_only:
        ids = graph.transitive_blocked_open(full_id)
    else:
        ids = graph.transitive_blocked(full_id)

    if ctx.json_output:
        ctx.output(ids)
        return

    if not ids:
        click.echo(f"Nothing is blocked by {full_id}")
        return

    for id_ in ids:
        issue = ctx.store.get_issue(id_)
        if issue is not None:
            click.echo(f"  {issue.id:<10} ({issue.status}) {truncate(issue.title)}")
    click.echo(f"\n{len(ids)} issue(s) blocked by {full_id}")
