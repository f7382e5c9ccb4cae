"""td update - update an issue."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.models import ActionType, Priority, Status


def status_action(old: str, new: str) -> str:
    """Action type recorded for a status transition."""
    if new == Status.CLOSED:
        return ActionType.CLOSE
    if old == Status.CLOSED:
        return ActionType.REOPEN
    if new == Status.IN_PROGRESS:
        return ActionType.START
    if new == Status.BLOCKED:
        return ActionType.BLOCK
    if old == Status.BLOCKED:
        return ActionType.UNBLOCK
    return ActionType.UPDATE


@click.command("update")
@click.argument("issue_id")
@click.option("--status", "-s", default=None, type=click.Choice(Status.ALL), help="New status")
@click.option("--priority", "-p", default=None, help="New priority (P0-P4)")
@click.option("--title", "-t", default=None, help="New title")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--parent", default=None, help="New parent issue ID (empty to clear)")
@click.option("--add-label", multiple=True, help="Add label")
@click.option("--remove-label", multiple=True, help="Remove label")
@pass_ctx
def update(ctx: TdContext, issue_id: str, status: str | None,
           priority: str | None, title: str | None, description: str | None,
           parent: str | None, add_label: tuple[str, ...],
           remove_label: tuple[str, ...]) -> None:
    """Update an existing issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    issue = ctx.get_issue(issue_id)
    updates: dict = {}

    if status is not None and status != issue.status:
        updates["status"] = status
    if priority is not None:
        normalized = Priority.normalize(priority)
        if normalized is None:
            ctx.fail(f"invalid priority: {priority} (expected P0-P4)")
        updates["priority"] = normalized
    if title is not None:
        updates["title"] = title
    if description is not None:
        updates["description"] = description
    if parent is not None:
        parent_id = ctx.resolve_issue_id(parent) if parent else ""
        if parent_id == issue.id:
            ctx.fail("an issue cannot be its own parent")
        updates["parent_id"] = parent_id

    if add_label or remove_label:
        removed = {l.lower() for l in remove_label}
        labels = [l for l in issue.labels if l.lower() not in removed]
        for label in add_label:
            if label.lower() not in {l.lower() for l in labels}:
                labels.append(label)
        updates["labels"] = labels

    if not updates:
        click.echo("No changes.")
        return

    previous = issue.to_dict()
    ctx.store.update_issue(issue.id, updates)
    updated = ctx.store.get_issue(issue.id)
    assert updated is not None

    action = ActionType.UPDATE
    if "status" in updates:
        action = status_action(issue.status, updates["status"])
    ctx.log_action(action, issue.id, previous=previous, new=updated.to_dict())
    ctx.notify_webhook()

    if ctx.json_output:
        ctx.output(updated.to_dict())
    else:
        click.echo(f"Updated {issue.id}")
