"""td create - create a new issue."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.dependency import DependencyGraph
from td.errors import TdError
from td.models import (
    ActionType, Issue, IssueType, Priority, Status, generate_issue_id, now_utc,
)


@click.command("create")
@click.argument("title")
@click.option("--type", "issue_type", default=IssueType.TASK,
              type=click.Choice(IssueType.ALL), help="Issue type")
@click.option("--priority", "-p", default=Priority.DEFAULT,
              help="Priority (P0=critical, P2=medium, P4=none)")
@click.option("--description", "-d", default="", help="Issue description")
@click.option("--label", "-l", "labels", multiple=True, help="Label (repeatable)")
@click.option("--parent", default="", help="Parent issue ID")
@click.option("--depends-on", multiple=True, help="Issue IDs this one depends on")
@click.option("--silent", is_flag=True, help="Only output the issue ID")
@pass_ctx
def create(ctx: TdContext, title: str, issue_type: str, priority: str,
           description: str, labels: tuple[str, ...], parent: str,
           depends_on: tuple[str, ...], silent: bool) -> None:
    """Create a new issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    normalized = Priority.normalize(priority)
    if normalized is None:
        ctx.fail(f"invalid priority: {priority} (expected P0-P4)")

    parent_id = ctx.resolve_issue_id(parent) if parent else ""

    # Retry on the rare short-id collision
    issue_id = generate_issue_id()
    while ctx.store.get_issue(issue_id) is not None:
        issue_id = generate_issue_id()

    now = now_utc()
    issue = Issue(
        id=issue_id,
        title=title,
        description=description,
        status=Status.OPEN,
        type=issue_type,
        priority=normalized,
        labels=list(labels),
        parent_id=parent_id,
        created_at=now,
        updated_at=now,
    )
    ctx.store.create_issue(issue)
    ctx.log_action(ActionType.CREATE, issue_id, new=issue.to_dict())

    graph = DependencyGraph(ctx.store)
    for dep_id in depends_on:
        resolved = ctx.resolve_issue_id(dep_id)
        try:
            graph.validate_and_add(issue_id, resolved)
        except TdError as e:
            click.echo(f"Warning: could not add dependency on {dep_id}: {e}", err=True)
            continue
        ctx.log_action(ActionType.ADD_DEPENDENCY, issue_id,
                       new={"issue_id": issue_id, "depends_on_id": resolved},
                       entity_type="dependency")

    ctx.notify_webhook()

    if ctx.json_output:
        ctx.output({"id": issue_id})
    elif silent:
        click.echo(issue_id)
    else:
        click.echo(f"Created {issue_type} {issue_id}: {title}")
