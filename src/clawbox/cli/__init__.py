"""
ClawBox CLI — the vault from the command line.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is defined
here and all subcommands are registered via register functions.

Entry point: clawbox.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import CLAWBOX_HOME, __version__


@click.group()
@click.version_option(version=__version__, prog_name="clawbox")
@click.option(
    "--vault", "home", default=CLAWBOX_HOME, envvar="CLAWBOX_HOME",
    type=click.Path(), help="Vault directory.",
)
@click.option("--json", "as_json", is_flag=True, help="Output in JSON format.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, home, as_json, verbose):
    """ClawBox — encrypted secrets for humans, apps, and AI agents.

    Every read and write is audited. The vault syncs as one encrypted file.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["home"] = home
    ctx.obj["json"] = as_json


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .secrets import register_secrets_commands  # noqa: E402
from .audit_cmd import register_audit_commands  # noqa: E402
from .transfer_cmd import register_transfer_commands  # noqa: E402
from .sync_cmd import register_sync_commands  # noqa: E402

register_secrets_commands(main)
register_audit_commands(main)
register_transfer_commands(main)
register_sync_commands(main)
