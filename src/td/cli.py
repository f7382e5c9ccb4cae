"""Click CLI root and global flags for td."""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, NoReturn

import click

from td import __version__, webhook
from td.config import TdConfig, find_todos_dir, get_db_path, project_root
from td.errors import TdError
from td.models import ActionLog, Issue, generate_action_id
from td.session import Session, get_or_create
from td.storage.sqlite_store import SQLiteStorage, open_storage


class TdContext:
    """Shared context for all commands."""

    def __init__(self) -> None:
        self.todos_dir: str | None = None
        self.store: SQLiteStorage | None = None
        self.config: TdConfig | None = None
        self.json_output: bool = False
        self.verbose: bool = False
        self._session: Session | None = None
        self._since_rowid: int | None = None

    def ensure_initialized(self) -> None:
        """Ensure the .todos directory and storage are available."""
        if self.store is not None:
            return
        self.todos_dir = find_todos_dir()
        if self.todos_dir is None:
            click.echo("Error: not in a td project (no .todos/ directory found)", err=True)
            click.echo("Run 'td init' to create one", err=True)
            sys.exit(1)
        self.config = TdConfig.load(self.todos_dir)
        if not self.json_output:
            self.json_output = self.config.json_output
        try:
            self.store = open_storage(get_db_path(self.todos_dir))
        except TdError as e:
            self.fail(e)

        # Remember where the action log stood so the webhook only sees this run
        if self.config.webhook_url:
            self._since_rowid = webhook.capture_state(self.store)

    @property
    def project_root(self) -> str:
        assert self.todos_dir is not None
        return project_root(self.todos_dir)

    def fail(self, error: Exception | str) -> NoReturn:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    @property
    def session(self) -> Session:
        """Current session, created on first use."""
        assert self.store is not None
        if self._session is None:
            try:
                self._session = get_or_create(self.store, self.project_root)
            except TdError as e:
                self.fail(e)
        return self._session

    def resolve_issue_id(self, partial: str) -> str:
        """Resolve a partial issue ID or exit with error."""
        assert self.store is not None
        full_id = self.store.resolve_id(partial)
        if full_id is None:
            click.echo(f"Error: issue not found or ambiguous: {partial}", err=True)
            sys.exit(1)
        return full_id

    def get_issue(self, partial: str) -> Issue:
        assert self.store is not None
        full_id = self.resolve_issue_id(partial)
        issue = self.store.get_issue(full_id)
        if issue is None:
            self.fail(f"issue not found: {partial}")
        return issue

    def log_action(self, action_type: str, entity_id: str,
                   previous: Any = None, new: Any = None,
                   entity_type: str = "issue") -> None:
        """Append an action log row for the current session."""
        assert self.store is not None
        self.store.log_action(ActionLog(
            id=generate_action_id(),
            session_id=self.session.id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_data=_encode(previous),
            new_data=_encode(new),
        ))

    def notify_webhook(self) -> None:
        """Ship actions logged during this command to the webhook, if any."""
        if self._since_rowid is None or self.todos_dir is None or self.store is None:
            return
        since, self._since_rowid = self._since_rowid, None
        webhook.dispatch_async(self.todos_dir, self.store, since)

    def output(self, data: dict | list) -> None:
        """Output data as JSON."""
        click.echo(json.dumps(data, indent=2, default=str))


def _encode(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return json.dumps(data, default=str)


pass_ctx = click.make_pass_decorator(TdContext, ensure=True)


@click.group(invoke_without_command=True)
@click.option("--db", envvar="TD_DB", help="Path to database file")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(__version__, prog_name="td")
@click.pass_context
def cli(ctx: click.Context, db: str | None, json_output: bool, verbose: bool) -> None:
    """td - local issue tracker for agents and humans"""
    tctx = ctx.ensure_object(TdContext)
    tctx.verbose = verbose
    if json_output:
        tctx.json_output = True
    if db:
        os.environ["TD_DB"] = db

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# --- Register all command groups ---

from td.commands.init_cmd import init_cmd
from td.commands.create import create
from td.commands.show import show
from td.commands.update import update
from td.commands.review import approve, reject, review
from td.commands.dep import dep
from td.commands.ready import ready
from td.commands.blocked import blocked
from td.commands.query_cmd import query_cmd
from td.commands.search import search
from td.commands.log_cmd import log_cmd
from td.commands.comments import comment_add, comments
from td.commands.handoff import handoff
from td.commands.link import link
from td.commands.session_cmd import session_cmd
from td.commands.webhook_cmd import webhook_cmd, webhook_send

cli.add_command(init_cmd, "init")
cli.add_command(create, "create")
cli.add_command(create, "new")  # Alias
cli.add_command(show, "show")
cli.add_command(update, "update")
cli.add_command(review, "review")
cli.add_command(approve, "approve")
cli.add_command(reject, "reject")
cli.add_command(dep, "dep")
cli.add_command(ready, "ready")
cli.add_command(blocked, "blocked")
cli.add_command(query_cmd, "query")
cli.add_command(search, "search")
cli.add_command(log_cmd, "log")
cli.add_command(comments, "comments")
cli.add_command(comment_add, "comment")
cli.add_command(handoff, "handoff")
cli.add_command(link, "link")
cli.add_command(session_cmd, "session")
cli.add_command(webhook_cmd, "webhook")
cli.add_command(webhook_send, webhook.SEND_COMMAND)


def main() -> None:
    cli(auto_envvar_prefix="TD")
