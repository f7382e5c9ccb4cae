"""td review / approve / reject - the review workflow."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.models import ActionType, Status


def _transition(ctx: TdContext, issue_id: str, action: str, new_status: str,
                allowed_from: tuple[str, ...], reason: str = "") -> None:
    ctx.ensure_initialized()
    assert ctx.store is not None

    issue = ctx.get_issue(issue_id)
    if issue.status not in allowed_from:
        ctx.fail(f"cannot {action} {issue.id}: status is {issue.status}")

    previous = issue.to_dict()
    ctx.store.update_issue(issue.id, {"status": new_status})
    new = {"status": new_status}
    if reason:
        new["reason"] = reason
    ctx.log_action(action, issue.id, previous=previous, new=new)
    ctx.notify_webhook()

    if ctx.json_output:
        ctx.output({"id": issue.id, "action": action, "status": new_status})
    else:
        click.echo(f"{action.capitalize()}: {issue.id} -> {new_status}")


@click.command("review")
@click.argument("issue_id")
@pass_ctx
def review(ctx: TdContext, issue_id: str) -> None:
    """Submit an issue for review."""
    _transition(ctx, issue_id, ActionType.REVIEW, Status.IN_REVIEW,
                (Status.OPEN, Status.IN_PROGRESS, Status.BLOCKED))


@click.command("approve")
@click.argument("issue_id")
@pass_ctx
def approve(ctx: TdContext, issue_id: str) -> None:
    """Approve a reviewed issue and close it."""
    _transition(ctx, issue_id, ActionType.APPROVE, Status.CLOSED, (Status.IN_REVIEW,))


@click.command("reject")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Why the work was sent back")
@pass_ctx
def reject(ctx: TdContext, issue_id: str, reason: str) -> None:
    """Send a reviewed issue back to in_progress for rework."""
    _transition(ctx, issue_id, ActionType.REJECT, Status.IN_PROGRESS,
                (Status.IN_REVIEW,), reason)
