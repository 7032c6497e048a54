"""Audit command: browse and verify the hash-chained access log."""

from __future__ import annotations

import sys

import click
from rich.table import Table

from ..models import Action, AuditFilter, utcnow
from ._common import (
    cli_config,
    console,
    fmt_time,
    handle_errors,
    parse_duration,
    print_json,
    unlocked_vault,
)


def register_audit_commands(main: click.Group) -> None:
    """Register the audit command."""

    @main.command()
    @click.option("--key", "-k", default=None, help="Filter by key path substring.")
    @click.option("--since", "-s", default=None, help="Only entries newer than e.g. 1h, 7d.")
    @click.option("--actor", default=None, type=click.Choice(["human", "ai", "app"]),
                  help="Filter by actor type.")
    @click.option("--action", default=None,
                  type=click.Choice([a.value for a in Action]), help="Filter by action.")
    @click.option("--limit", "-n", type=int, default=None, help="Max entries.")
    @click.option("--verify", is_flag=True, help="Verify the hash chain.")
    @click.pass_obj
    @handle_errors
    def audit(obj, key, since, actor, action, limit, verify):
        """View the audit log, newest first."""
        config = cli_config(obj)
        since_dt = utcnow() - parse_duration(since) if since else None
        flt = AuditFilter(
            key_path=key,
            since=since_dt,
            actor_type=actor,
            action=Action(action) if action else None,
            limit=limit or config.audit_limit,
        )

        with unlocked_vault(obj, config) as vault:
            if verify:
                broken = vault.ledger.first_broken_entry()
                count = vault.ledger.count()
            entries = vault.audit(flt)

        if verify:
            if obj["json"]:
                print_json({"valid": broken is None, "entries": count,
                            "first_broken": broken})
            elif broken is None:
                console.print(f"[green]Audit chain intact[/] ({count} entries)")
            else:
                console.print(f"[bold red]Audit chain broken[/] at entry {broken}")
            if broken is not None:
                sys.exit(1)
            return

        if obj["json"]:
            print_json([e.model_dump(mode="json") for e in entries])
            return
        if not entries:
            console.print("[dim]No audit entries found.[/]")
            return

        table = Table(title="Audit Log")
        table.add_column("Time")
        table.add_column("Actor", style="cyan")
        table.add_column("Action")
        table.add_column("Key", style="bold")
        table.add_column("Result")
        for e in entries:
            result = "[green]ok[/]" if e.success else f"[red]{e.error_message or 'failed'}[/]"
            table.add_row(
                fmt_time(e.timestamp),
                f"{e.actor.actor_type}:{e.actor.identifier}",
                e.action.value,
                e.key_path,
                result,
            )
        console.print(table)
        console.print(f"\n  Total: {len(entries)} entries")
