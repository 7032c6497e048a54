"""Secret commands: init, set, get, list, delete, unlock, lock, purge."""

from __future__ import annotations

import sys

import click
from rich.table import Table
from rich.tree import Tree

from ..config import CONFIG_FILE, save_config
from ..errors import SecretNotFound
from ..models import AccessLevel, Action, SetOptions
from ..policy import TieredAccessPolicy, enforce
from ._common import (
    access_badge,
    cli_config,
    console,
    fmt_time,
    get_password,
    handle_errors,
    mark_changed,
    open_vault,
    parse_duration,
    print_json,
    unlocked_vault,
    vault_home,
)

ACCESS_CHOICES = click.Choice([level.label for level in AccessLevel], case_sensitive=False)


def _secret_tree(infos) -> Tree:
    root = Tree("[bold]vault[/]")
    nodes: dict[str, Tree] = {}
    for info in infos:
        parent, prefix = root, ""
        *folders, leaf = info.path.split("/")
        for folder in folders:
            prefix = f"{prefix}/{folder}" if prefix else folder
            if prefix not in nodes:
                nodes[prefix] = parent.add(f"[cyan]{folder}/[/]")
            parent = nodes[prefix]
        parent.add(f"{leaf}  {access_badge(info.access)}")
    return root


def register_secrets_commands(main: click.Group) -> None:
    """Register the secret lifecycle commands."""

    @main.command()
    @click.option("--force", is_flag=True,
                  help="Re-initialize; existing secrets become unreadable.")
    @click.pass_obj
    @handle_errors
    def init(obj, force):
        """Initialize a new vault."""
        home = vault_home(obj)
        config = cli_config(obj)
        vault = open_vault(obj, config)
        try:
            vault.init(get_password("New master password", confirm=True), force=force)
        finally:
            vault.close()
        if not (home / CONFIG_FILE).exists():
            save_config(home, config)
        console.print(f"\n  [green]Vault created[/] at [cyan]{home}[/]\n")

    @main.command("set")
    @click.argument("path")
    @click.argument("value")
    @click.option("--access", "-a", type=ACCESS_CHOICES, default="normal",
                  show_default=True, help="Access level.")
    @click.option("--tags", "-t", default=None, help="Comma-separated tags.")
    @click.option("--note", "-n", default=None, help="Free-form note.")
    @click.option("--ttl", default=None, help="Expire after e.g. 30m, 12h, 7d.")
    @click.pass_obj
    @handle_errors
    def set_secret(obj, path, value, access, tags, note, ttl):
        """Set a secret (e.g. clawbox set github/token ghp_xxx)."""
        options = SetOptions(
            access=AccessLevel.parse(access),
            tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else [],
            note=note,
            ttl=parse_duration(ttl) if ttl else None,
        )
        config = cli_config(obj)
        with unlocked_vault(obj, config) as vault:
            vault.set(path, value, options)
        mark_changed(obj, config)
        if obj["json"]:
            print_json({"path": path, "status": "set"})
        else:
            console.print(f"[green]Secret set:[/] {path}")

    @main.command("get")
    @click.argument("path")
    @click.option("--approve", is_flag=True,
                  help="Confirm human approval for sensitive secrets.")
    @click.pass_obj
    @handle_errors
    def get_secret(obj, path, approve):
        """Print a secret's value."""
        config = cli_config(obj)
        with unlocked_vault(obj, config) as vault:
            info = next((i for i in vault.list(path) if i.path == path), None)
            if info is not None:
                decision = TieredAccessPolicy().decide(config.actor(), info, Action.READ)
                enforce(decision, path, approved=approve)
            value = vault.get(path)
        if value is None:
            raise SecretNotFound(path)
        if obj["json"]:
            print_json({"path": path, "value": value})
        else:
            click.echo(value)

    @main.command("list")
    @click.argument("pattern", required=False)
    @click.option("--tree", is_flag=True, help="Display as a tree.")
    @click.pass_obj
    @handle_errors
    def list_secrets(obj, pattern, tree):
        """List secrets, optionally filtered (e.g. 'github/*')."""
        with unlocked_vault(obj) as vault:
            infos = vault.list(pattern)

        if obj["json"]:
            print_json([info.model_dump(mode="json") for info in infos])
            return
        if not infos:
            console.print("[dim]No secrets found.[/]")
            return
        if tree:
            console.print(_secret_tree(infos))
            return

        table = Table(title="Secrets", show_lines=False)
        table.add_column("Path", style="cyan")
        table.add_column("Access")
        table.add_column("Tags", style="dim")
        table.add_column("Updated")
        table.add_column("Expires", style="dim")
        for info in infos:
            table.add_row(
                info.path,
                access_badge(info.access),
                ", ".join(info.tags),
                fmt_time(info.updated_at),
                fmt_time(info.expires_at),
            )
        console.print(table)

    @main.command()
    @click.argument("path")
    @click.option("--force", "-f", is_flag=True, help="Skip confirmation.")
    @click.pass_obj
    @handle_errors
    def delete(obj, path, force):
        """Delete a secret."""
        if not force and not click.confirm(f"Delete '{path}'?", default=False):
            console.print("Cancelled")
            return
        config = cli_config(obj)
        with unlocked_vault(obj, config) as vault:
            existed = vault.delete(path)
        if not existed:
            console.print(f"[yellow]Secret not found:[/] {path}")
            sys.exit(1)
        mark_changed(obj, config)
        console.print(f"[green]Deleted:[/] {path}")

    @main.command()
    @click.pass_obj
    @handle_errors
    def unlock(obj):
        """Check the master password against the vault."""
        with unlocked_vault(obj):
            pass
        console.print("[green]Vault unlocked[/]")

    @main.command()
    @click.pass_obj
    @handle_errors
    def lock(obj):
        """Lock the vault."""
        open_vault(obj).close()
        console.print("[green]Vault locked[/]")

    @main.command()
    @click.pass_obj
    @handle_errors
    def purge(obj):
        """Delete every secret whose TTL has passed."""
        config = cli_config(obj)
        with unlocked_vault(obj, config) as vault:
            removed = vault.purge_expired()
        if removed:
            mark_changed(obj, config)
        console.print(f"Purged [bold]{removed}[/] expired secret(s)")
