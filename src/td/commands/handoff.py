"""td handoff - record where work stands for the next session."""

from __future__ import annotations

import click

from td.cli import TdContext, pass_ctx
from td.models import ActionType, Handoff, now_utc


@click.command("handoff")
@click.argument("issue_id")
@click.option("--done", multiple=True, help="Completed item (repeatable)")
@click.option("--remaining", multiple=True, help="Remaining item (repeatable)")
@click.option("--decision", multiple=True, help="Decision made (repeatable)")
@click.option("--uncertain", multiple=True, help="Open question (repeatable)")
@pass_ctx
def handoff(ctx: TdContext, issue_id: str, done: tuple[str, ...],
            remaining: tuple[str, ...], decision: tuple[str, ...],
            uncertain: tuple[str, ...]) -> None:
    """Record a handoff for an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    if not (done or remaining or decision or uncertain):
        ctx.fail("handoff needs at least one of --done, --remaining, --decision, --uncertain")

    full_id = ctx.resolve_issue_id(issue_id)
    record = Handoff(
        issue_id=full_id,
        session_id=ctx.session.id,
        done=list(done),
        remaining=list(remaining),
        decisions=list(decision),
        uncertain=list(uncertain),
        timestamp=now_utc(),
    )
    record.id = ctx.store.add_handoff(record)
    ctx.log_action(ActionType.HANDOFF, full_id, new=record.to_dict(),
                   entity_type="handoff")
    ctx.notify_webhook()

    if ctx.json_output:
        ctx.output(record.to_dict())
    else:
        click.echo(f"Recorded handoff for {full_id}")
