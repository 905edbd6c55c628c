"""
fileforce/cli/__init__.py

FileForce CLI — root Click command group.

This file is the sole entry point for the `fileforce` terminal command.
It is registered in pyproject.toml as:

    [project.scripts]
    fileforce = "fileforce.cli:cli"

Adding a new command:
    1. Create fileforce/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import logging
from typing import Optional

import click

from fileforce.cli._common import EXIT_USAGE, CliContext, _Color
from fileforce.cli.events import (
    harvest_command,
    providers_command,
    pull_command,
    watch_command,
)
from fileforce.cli.tags import (
    add_command,
    cat_command,
    decrypt_command,
    delegate_command,
    new_account_command,
    signature_command,
    tag_command,
)
from fileforce.config import Settings
from fileforce.core.exceptions import ConfigError


@click.group()
@click.version_option(package_name="fileforce")
@click.option("--config", "config_file", type=click.Path(dir_okay=False), default=None,
              envvar="FILEFORCE_CONFIG", help="Path to config.yaml.")
@click.option("-v", "--verbose", count=True, help="Log progress (-vv for debug).")
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], verbose: int, no_color: bool) -> None:
    """
    FileForce — encrypted file sharing over a content store and event ledger.

    \b
    Commands:
      new-account  Create a keystore identity.
      add          Encrypt a file and register its access tag.
      cat          Print a stored blob.
      tag          Print an access tag.
      signature    Verify an access tag's signature.
      decrypt      Decrypt the file behind a tag.
      delegate     Re-share a tag with another public key.
      watch        Follow ledger events.
      harvest      Pull everything announced on the ledger.
      pull         Fetch one identifier from providers.
      providers    List peers holding an identifier.

    \b
    Quick start:
      fileforce new-account
      fileforce add report.pdf
      fileforce decrypt <tag> -o report.pdf
      fileforce harvest --kind tag --from-block 0 --to-block 100
    """
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    _Color.configure(not no_color)

    try:
        settings = Settings.load(config_file)
    except ConfigError as exc:
        click.echo(_Color.red(f"{exc.kind}: {exc}"), err=True)
        ctx.exit(EXIT_USAGE)

    ctx.obj = CliContext(settings=settings)


cli.add_command(new_account_command)
cli.add_command(add_command)
cli.add_command(cat_command)
cli.add_command(tag_command)
cli.add_command(signature_command)
cli.add_command(decrypt_command)
cli.add_command(delegate_command)
cli.add_command(watch_command)
cli.add_command(harvest_command)
cli.add_command(pull_command)
cli.add_command(providers_command)
