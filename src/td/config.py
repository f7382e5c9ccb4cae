"""Configuration management for td.

Handles:
- .todos/config.yaml parsing (user-facing config)
- Environment variable overrides
- .todos/ directory discovery
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import yaml


CONFIG_YAML = "config.yaml"
TODOS_DIR = ".todos"
DEFAULT_DB_NAME = "issues.db"

ENV_WEBHOOK_URL = "TD_WEBHOOK_URL"
ENV_WEBHOOK_SECRET = "TD_WEBHOOK_SECRET"


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass
class TdConfig:
    """User-facing config from config.yaml."""
    webhook_url: str = ""
    webhook_secret: str = ""
    json_output: bool = False

    @classmethod
    def load(cls, todos_dir: str) -> TdConfig:
        """Load config.yaml from the .todos directory."""
        config_path = os.path.join(todos_dir, CONFIG_YAML)
        cfg = cls()
        if os.path.exists(config_path):
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            webhook = data.get("webhook") or {}
            cfg.webhook_url = webhook.get("url", "") or ""
            cfg.webhook_secret = webhook.get("secret", "") or ""
            cfg.json_output = bool(data.get("json", False))

        # Environment variable overrides
        if os.environ.get(ENV_WEBHOOK_URL):
            cfg.webhook_url = os.environ[ENV_WEBHOOK_URL]
        if os.environ.get(ENV_WEBHOOK_SECRET):
            cfg.webhook_secret = os.environ[ENV_WEBHOOK_SECRET]
        if os.environ.get("TD_JSON"):
            cfg.json_output = _truthy(os.environ["TD_JSON"])

        return cfg

    def save(self, todos_dir: str) -> None:
        """Save config to config.yaml."""
        config_path = os.path.join(todos_dir, CONFIG_YAML)
        data: dict[str, Any] = {}
        webhook: dict[str, str] = {}
        if self.webhook_url:
            webhook["url"] = self.webhook_url
        if self.webhook_secret:
            webhook["secret"] = self.webhook_secret
        if webhook:
            data["webhook"] = webhook
        if self.json_output:
            data["json"] = self.json_output

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def find_todos_dir(start: str | None = None) -> str | None:
    """Walk up from start directory to find .todos/ directory.

    Returns absolute path to .todos/ directory, or None if not found.
    """
    if start is None:
        start = os.getcwd()
    current = os.path.abspath(start)
    while True:
        candidate = os.path.join(current, TODOS_DIR)
        if os.path.isdir(candidate):
            return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def get_db_path(todos_dir: str) -> str:
    """Get the full path to the SQLite database."""
    env_db = os.environ.get("TD_DB")
    if env_db:
        return env_db
    return os.path.join(todos_dir, DEFAULT_DB_NAME)


def project_root(todos_dir: str) -> str:
    """The directory that contains .todos/."""
    return os.path.dirname(os.path.abspath(todos_dir))
