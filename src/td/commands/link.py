"""td link - associate files with an issue."""

from __future__ import annotations

import os

import click

from td.cli import TdContext, pass_ctx
from td.models import ActionType, FileRole, IssueFile, now_utc
from td.session.session import get_head_sha


@click.command("link")
@click.argument("issue_id")
@click.argument("path")
@click.option("--role", default=FileRole.IMPLEMENTATION,
              type=click.Choice(FileRole.ALL), help="What the file is to the issue")
@pass_ctx
def link(ctx: TdContext, issue_id: str, path: str, role: str) -> None:
    """Link a file to an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)

    # Paths inside the project are stored relative to its root
    abs_path = os.path.abspath(path)
    root = ctx.project_root
    if abs_path == root or abs_path.startswith(root + os.sep):
        file_path = os.path.relpath(abs_path, root)
    else:
        file_path = abs_path

    record = IssueFile(
        issue_id=full_id,
        file_path=file_path,
        role=role,
        linked_sha=get_head_sha(root),
        linked_at=now_utc(),
    )
    ctx.store.link_file(record)
    ctx.log_action(ActionType.LINK_FILE, full_id, new=record.to_dict(),
                   entity_type="file")
    ctx.notify_webhook()

    if ctx.json_output:
        ctx.output(record.to_dict())
    else:
        click.echo(f"Linked {file_path} to {full_id} ({role})")
