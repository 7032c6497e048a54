"""Shared utilities for all CLI command modules.

Provides the Rich console instance, password and vault helpers, and the
error handler that turns ClawBoxError into a red message and exit 1.
"""

from __future__ import annotations

import functools
import json
import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console

from ..config import PASSWORD_ENV, ClawBoxConfig, load_config
from ..errors import ClawBoxError, VaultNotFound
from ..models import AccessLevel, CLISource
from ..sync import SyncManager, create_backend
from ..vault import Vault

console = Console()
logger = logging.getLogger("clawbox.cli")

ACCESS_STYLES = {
    AccessLevel.PUBLIC: "[dim]public[/]",
    AccessLevel.NORMAL: "[green]normal[/]",
    AccessLevel.SENSITIVE: "[yellow]sensitive[/]",
    AccessLevel.CRITICAL: "[bold red]critical[/]",
}


def access_badge(level: AccessLevel) -> str:
    """Rich markup for an access level."""
    return ACCESS_STYLES.get(level, "[dim]unknown[/]")


def fmt_time(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def print_json(data) -> None:
    """Write JSON to stdout without Rich markup processing."""
    click.echo(json.dumps(data, indent=2, default=str))


def get_password(prompt: str = "Master password", confirm: bool = False) -> str:
    """Resolve the master password.

    Order: $CLAWBOX_PASSWORD, then an interactive hidden prompt, then a
    single line from stdin when stdin is not a terminal.
    """
    env_password = os.environ.get(PASSWORD_ENV)
    if env_password is not None:
        return env_password
    if sys.stdin.isatty():
        return click.prompt(prompt, hide_input=True, confirmation_prompt=confirm)
    return click.get_text_stream("stdin").readline().rstrip("\r\n")


_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_duration(text: str) -> timedelta:
    """Parse ``30m``, ``1h``, ``7d`` (and ``s``/``w``) into a timedelta.

    Raises:
        click.BadParameter: If the text is not a number followed by a unit.
    """
    text = text.strip().lower()
    unit = _DURATION_UNITS.get(text[-1:]) if text else None
    try:
        amount = int(text[:-1])
    except ValueError:
        amount = -1
    if unit is None or amount < 0:
        raise click.BadParameter(f"Invalid duration '{text}' (use e.g. 30m, 1h, 7d)")
    return timedelta(**{unit: amount})


def vault_home(obj: dict) -> Path:
    return Path(obj["home"]).expanduser()


def cli_config(obj: dict) -> ClawBoxConfig:
    return load_config(vault_home(obj))


def open_vault(obj: dict, config: Optional[ClawBoxConfig] = None) -> Vault:
    """Open the vault selected by --vault with the configured actor."""
    config = config or cli_config(obj)
    return Vault.open(
        vault_home(obj),
        actor=config.actor(),
        source=CLISource(),
        auto_lock_seconds=config.auto_lock_seconds,
    )


@contextmanager
def unlocked_vault(obj: dict, config: Optional[ClawBoxConfig] = None) -> Iterator[Vault]:
    """Open and unlock the vault; lock and close it on exit.

    Raises:
        VaultNotFound: If the vault has not been initialized.
        InvalidPassword: If the password is wrong.
    """
    vault = open_vault(obj, config)
    try:
        if not vault.is_initialized():
            raise VaultNotFound(str(vault.path))
        vault.unlock(get_password())
        yield vault
    finally:
        vault.close()


def mark_changed(obj: dict, config: ClawBoxConfig) -> None:
    """Flag local edits for the next sync when sync is enabled."""
    if not config.sync.enabled:
        return
    home = vault_home(obj)
    manager = SyncManager(home, create_backend(config.sync, home))
    version = manager.record_local_change()
    logger.debug("Local sync version now %d", version)


def handle_errors(fn):
    """Report ClawBoxError (and bad input) as a red message with exit code 1."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ClawBoxError as exc:
            logger.debug("Command failed", exc_info=True)
            console.print(f"[bold red]Error:[/] {exc}")
            if isinstance(exc, VaultNotFound):
                console.print("  Run [cyan]clawbox init[/] first.")
            sys.exit(1)
        except ValueError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

    return wrapper
