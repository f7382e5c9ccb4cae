"""td webhook - inspect webhook configuration and deliver spooled payloads."""

from __future__ import annotations

import sys

import click

from td import webhook
from td.cli import TdContext, pass_ctx


@click.group("webhook")
def webhook_cmd() -> None:
    """Webhook notifications."""


@webhook_cmd.command("status")
@pass_ctx
def webhook_status(ctx: TdContext) -> None:
    """Show whether a webhook is configured."""
    ctx.ensure_initialized()
    assert ctx.todos_dir is not None

    url = webhook.get_url(ctx.todos_dir)
    has_secret = bool(webhook.get_secret(ctx.todos_dir))

    if ctx.json_output:
        ctx.output({"enabled": bool(url), "url": url, "signed": has_secret})
        return

    if not url:
        click.echo("Webhook: disabled")
        return
    click.echo(f"Webhook: {url}")
    click.echo(f"  Signed: {'yes' if has_secret else 'no'}")


@click.command(webhook.SEND_COMMAND, hidden=True)
@click.argument("path")
def webhook_send(path: str) -> None:
    """Deliver one spool file (run detached by mutating commands)."""
    if not webhook.send_spool(path):
        sys.exit(1)
