"""Transfer commands: export and import secrets as JSON, YAML, or dotenv."""

from __future__ import annotations

import os
from pathlib import Path

import click

from ..transfer import FORMATS, dump_secrets, import_secrets, load_secrets
from ._common import (
    cli_config,
    console,
    handle_errors,
    mark_changed,
    print_json,
    unlocked_vault,
)


def register_transfer_commands(main: click.Group) -> None:
    """Register the export and import commands."""

    @main.command("export")
    @click.argument("output", type=click.Path(dir_okay=False))
    @click.option("--format", "-f", "fmt", type=click.Choice(FORMATS),
                  default="json", show_default=True)
    @click.option("--pattern", "-p", default=None, help="Only paths matching e.g. 'github/*'.")
    @click.pass_obj
    @handle_errors
    def export_cmd(obj, output, fmt, pattern):
        """Export decrypted secrets to a file (written with mode 0600)."""
        with unlocked_vault(obj) as vault:
            secrets = vault.export(pattern)
        text = dump_secrets(secrets, fmt)

        out_path = Path(output).expanduser()
        fd = os.open(out_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)

        if obj["json"]:
            print_json({"exported": len(secrets), "path": str(out_path)})
        else:
            console.print(f"[green]Exported {len(secrets)} secrets[/] to [cyan]{out_path}[/]")
            console.print("  [yellow]The file contains plaintext values.[/]")

    @main.command("import")
    @click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--format", "-f", "fmt", type=click.Choice(FORMATS),
                  default="json", show_default=True)
    @click.option("--skip-existing", is_flag=True, help="Leave existing paths untouched.")
    @click.pass_obj
    @handle_errors
    def import_cmd(obj, input_file, fmt, skip_existing):
        """Import secrets from a file."""
        records = load_secrets(Path(input_file).read_text(encoding="utf-8"), fmt)
        config = cli_config(obj)
        with unlocked_vault(obj, config) as vault:
            imported, skipped = import_secrets(vault, records, skip_existing=skip_existing)
        if imported:
            mark_changed(obj, config)

        if obj["json"]:
            print_json({"imported": imported, "skipped": skipped})
        else:
            console.print(f"[green]Imported {imported} secrets[/] ({skipped} skipped)")
