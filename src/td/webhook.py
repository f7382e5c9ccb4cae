"""Webhook payloads, spool files and signed delivery.

Commands record what changed in the action log. After a mutating command
the new action rows are packed into a payload, written to a spool file in
the temp directory and handed to a detached ``td _webhook-send`` process,
so the command itself never waits on the network.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from td.config import TdConfig, project_root
from td.errors import TransportError
from td.models import ActionLog, format_rfc3339_seconds, now_utc
from td.storage.interface import Storage

logger = logging.getLogger(__name__)

USER_AGENT = "td-webhook/1"
TIMEOUT_SECONDS = 10.0
SPOOL_PREFIX = "td-webhook-"
SEND_COMMAND = "_webhook-send"


# --- Configuration ---

def get_url(todos_dir: str) -> str:
    """TD_WEBHOOK_URL, else webhook.url from config.yaml."""
    return TdConfig.load(todos_dir).webhook_url


def get_secret(todos_dir: str) -> str:
    """TD_WEBHOOK_SECRET, else webhook.secret from config.yaml."""
    return TdConfig.load(todos_dir).webhook_secret


def is_enabled(todos_dir: str) -> bool:
    return bool(get_url(todos_dir))


# --- Payload ---

def action_to_dict(action: ActionLog) -> dict[str, str]:
    return {
        "id": action.id,
        "session_id": action.session_id,
        "action_type": str(action.action_type).lower(),
        "entity_type": str(action.entity_type).lower(),
        "entity_id": action.entity_id,
        "previous_data": action.previous_data,
        "new_data": action.new_data,
        "timestamp": format_rfc3339_seconds(action.timestamp),
    }


def build_payload(project_dir: str, actions: list[ActionLog]) -> dict[str, Any]:
    """Webhook body for a batch of action log rows, one entry per row."""
    return {
        "project_dir": project_dir,
        "timestamp": format_rfc3339_seconds(now_utc()),
        "actions": [action_to_dict(a) for a in actions],
    }


# --- Spool files ---

@dataclass
class SpoolFile:
    """Everything the out-of-process sender needs."""
    url: str
    secret: str = ""
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"url": self.url}
        if self.secret:
            d["secret"] = self.secret
        d["payload"] = self.payload
        return d


def write_spool(spool: SpoolFile) -> str:
    """Write spool to a new td-webhook-*.json temp file; returns its path."""
    data = json.dumps(spool.to_dict())
    fd, path = tempfile.mkstemp(prefix=SPOOL_PREFIX, suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
    except BaseException:
        os.remove(path)
        raise
    return path


def read_spool(path: str) -> SpoolFile:
    """Parse a spool file. Read and JSON errors propagate."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return SpoolFile(
        url=data["url"],
        secret=data.get("secret", ""),
        payload=data.get("payload", {}),
    )


# --- Delivery ---

def sign(secret: str, timestamp: str, body: bytes) -> str:
    """sha256=<hex> HMAC over timestamp + "." + body."""
    mac = hmac.new(secret.encode("utf-8"), digestmod=hashlib.sha256)
    mac.update(timestamp.encode("utf-8"))
    mac.update(b".")
    mac.update(body)
    return "sha256=" + mac.hexdigest()


def dispatch(url: str, secret: str, payload: dict[str, Any],
             client: httpx.Client | None = None) -> None:
    """POST payload once. Raises TransportError on network failure or non-2xx."""
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    unix_ts = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-TD-Timestamp": unix_ts,
    }
    if secret:
        headers["X-TD-Signature"] = sign(secret, unix_ts, body)

    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=httpx.Timeout(TIMEOUT_SECONDS))
    try:
        response = client.post(url, content=body, headers=headers)
    except httpx.RequestError as exc:
        raise TransportError(url, str(exc) or type(exc).__name__) from exc
    finally:
        if own_client:
            client.close()

    if not response.is_success:
        raise TransportError(url, f"status {response.status_code}", response.status_code)
    logger.debug("webhook delivered to %s (%d)", url, response.status_code)


def send_spool(path: str, client: httpx.Client | None = None) -> bool:
    """Deliver a spool file and delete it. Returns True on delivery.

    The spool is removed whether or not delivery succeeds; failures are
    logged rather than raised.
    """
    try:
        spool = read_spool(path)
    except (OSError, ValueError, KeyError) as e:
        logger.warning("webhook: cannot read spool %s: %s", path, e)
        _remove_quietly(path)
        return False

    try:
        dispatch(spool.url, spool.secret, spool.payload, client=client)
    except TransportError as e:
        logger.warning("webhook: %s", e)
        return False
    finally:
        _remove_quietly(path)
    return True


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


# --- Command hooks ---

def capture_state(store: Storage) -> int:
    """Action log position before a command runs."""
    return store.max_action_rowid()


def dispatch_async(todos_dir: str, store: Storage, since_rowid: int) -> str | None:
    """Spool the actions logged after since_rowid and spawn a detached sender.

    Returns the spool path, or None when there is nothing to send.
    """
    url = get_url(todos_dir)
    if not url:
        return None
    actions = store.get_actions_after_rowid(since_rowid)
    if not actions:
        return None

    spool = SpoolFile(
        url=url,
        secret=get_secret(todos_dir),
        payload=build_payload(project_root(todos_dir), actions),
    )
    path = write_spool(spool)
    try:
        proc = subprocess.Popen(
            [sys.executable, "-m", "td", SEND_COMMAND, path],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.debug("webhook: spawn sender: %s", e)
        _remove_quietly(path)
        return None
    logger.debug("webhook: dispatched %d actions via pid %d", len(actions), proc.pid)
    return path
