"""Sync commands: sync, push, pull, status, setup."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.panel import Panel

from ..config import ClawBoxConfig, save_config
from ..sync import SyncBackendType, SyncManager, SyncResult, create_backend
from ._common import (
    cli_config,
    console,
    handle_errors,
    logger,
    print_json,
    unlocked_vault,
    vault_home,
)

_DIRECTION_LABELS = {
    "pull": "[cyan]Remote has a newer version[/]",
    "push": "[cyan]Local has a newer version[/]",
    "up_to_date": "[green]Up to date[/]",
    "unavailable": "[red]Sync location not available[/]",
}


def _require_enabled(config: ClawBoxConfig) -> None:
    if not config.sync.enabled:
        console.print("[bold red]Sync is not configured.[/] Run [cyan]clawbox sync setup[/] first.")
        sys.exit(1)


def _keyed_manager(obj: dict, config: ClawBoxConfig) -> SyncManager:
    """SyncManager holding the vault key; the vault itself is closed again."""
    home = vault_home(obj)
    backend = create_backend(config.sync, home)
    with unlocked_vault(obj, config) as vault:
        return SyncManager.for_vault(vault, backend)


def _report(obj: dict, result: SyncResult, manager: SyncManager) -> None:
    if obj["json"]:
        print_json({"result": result.value, "local_version": manager.local_version()})
        return
    style = "red" if result == SyncResult.UNAVAILABLE else "green"
    console.print(f"  [{style}]{result.describe()}[/] (version {manager.local_version()})")


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group(invoke_without_command=True)
    @click.pass_context
    @handle_errors
    def sync(ctx):
        """Encrypted whole-vault sync.

        Without a subcommand, pulls if the remote is newer and pushes if
        the local vault is newer. Last writer wins for the whole vault.
        """
        if ctx.invoked_subcommand is not None:
            return
        obj = ctx.obj
        config = cli_config(obj)
        _require_enabled(config)
        with _keyed_manager(obj, config) as manager:
            result = manager.sync()
            _report(obj, result, manager)
        if result == SyncResult.UNAVAILABLE:
            sys.exit(1)

    @sync.command("push")
    @click.pass_obj
    @handle_errors
    def sync_push(obj):
        """Force-push the local vault to the sync location."""
        config = cli_config(obj)
        _require_enabled(config)
        with _keyed_manager(obj, config) as manager:
            meta = manager.push()
        if obj["json"]:
            print_json(meta.model_dump())
        else:
            console.print(f"  [green]Pushed[/] version {meta.version} via {manager.backend.name}")

    @sync.command("pull")
    @click.pass_obj
    @handle_errors
    def sync_pull(obj):
        """Force-pull the remote vault, backing up the local one first."""
        config = cli_config(obj)
        _require_enabled(config)
        with _keyed_manager(obj, config) as manager:
            meta = manager.pull()
        if obj["json"]:
            print_json(meta.model_dump())
        else:
            console.print(
                f"  [green]Pulled[/] version {meta.version} from {meta.device_id or 'unknown device'}"
            )
            console.print("  [dim]Previous vault saved as vault.db.backup[/]")

    @sync.command("status")
    @click.pass_obj
    @handle_errors
    def sync_status(obj):
        """Show local and remote versions."""
        home = vault_home(obj)
        config = cli_config(obj)
        manager = SyncManager(home, create_backend(config.sync, home))
        status = manager.status()
        status["enabled"] = config.sync.enabled

        if obj["json"]:
            print_json(status)
            return

        state = status["state"]
        remote = status["remote_version"]
        console.print()
        console.print(
            Panel(
                f"Backend: [cyan]{status['backend']}[/]"
                f"{'' if config.sync.enabled else ' [yellow](disabled)[/]'}\n"
                f"Local version: [bold]{status['local_version']}[/]\n"
                f"Remote version: [bold]{remote if remote is not None else '-'}[/]\n"
                f"{_DIRECTION_LABELS[status['direction']]}\n"
                f"Last sync: {state['last_sync'] or '[dim]never[/]'}\n"
                f"Pushes: {state['push_count']}  Pulls: {state['pull_count']}"
                + (f"\n[red]Last error: {state['last_error']}[/]" if state["last_error"] else ""),
                title="ClawBox Sync",
                border_style="magenta",
            )
        )
        console.print()

    @sync.command("setup")
    @click.option("--backend", "-b", type=click.Choice([b.value for b in SyncBackendType]),
                  default=SyncBackendType.LOCAL.value, show_default=True)
    @click.option("--path", "local_path", type=click.Path(file_okay=False), default=None,
                  help="Target directory for the local backend.")
    @click.option("--disable", is_flag=True, help="Turn sync off.")
    @click.pass_obj
    @handle_errors
    def sync_setup(obj, backend, local_path, disable):
        """Choose a sync backend and enable sync."""
        home = vault_home(obj)
        config = cli_config(obj)
        config.sync.backend = SyncBackendType(backend)
        config.sync.local_path = Path(local_path).expanduser() if local_path else None
        config.sync.enabled = not disable
        path = save_config(home, config)
        logger.info("Sync config written to %s", path)

        target = create_backend(config.sync, home)
        if obj["json"]:
            print_json(config.sync.model_dump(mode="json"))
            return
        state = "[green]enabled[/]" if config.sync.enabled else "[yellow]disabled[/]"
        console.print(f"  Sync {state} via [cyan]{target.name}[/]")
        if not target.available():
            console.print("  [yellow]Sync location is not available yet.[/]")
