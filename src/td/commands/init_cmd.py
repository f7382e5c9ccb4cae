"""td init - initialize a new .todos/ directory."""

from __future__ import annotations

import os

import click

from td.cli import TdContext, pass_ctx
from td.config import CONFIG_YAML, DEFAULT_DB_NAME, TODOS_DIR, TdConfig, get_db_path
from td.errors import StoreError
from td.storage.sqlite_store import open_storage


@click.command("init")
@click.option("--webhook-url", default=None, help="Webhook endpoint to notify on changes")
@click.option("--webhook-secret", default=None, help="Shared secret for webhook signatures")
@pass_ctx
def init_cmd(ctx: TdContext, webhook_url: str | None, webhook_secret: str | None) -> None:
    """Initialize a new td project in the current directory."""
    todos_dir = os.path.join(os.getcwd(), TODOS_DIR)

    if os.path.exists(todos_dir):
        click.echo(f"td already initialized at {todos_dir}")
        return

    os.makedirs(todos_dir, exist_ok=True)

    config = TdConfig(
        webhook_url=webhook_url or "",
        webhook_secret=webhook_secret or "",
    )
    config.save(todos_dir)

    # Database files stay local
    gitignore_path = os.path.join(todos_dir, ".gitignore")
    with open(gitignore_path, "w") as f:
        f.write("# td local files (not shared via git)\n")
        f.write("*.db\n")
        f.write("*.db-wal\n")
        f.write("*.db-shm\n")

    try:
        store = open_storage(get_db_path(todos_dir))
    except StoreError as e:
        ctx.fail(e)
    store.close()

    click.echo(f"Initialized td in {todos_dir}")
    click.echo(f"  Config:   {CONFIG_YAML}")
    click.echo(f"  Database: {DEFAULT_DB_NAME}")
