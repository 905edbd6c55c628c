"""
fileforce/cli/events.py

Ledger and retrieval commands.

Usage:
    fileforce watch   [--kind file|tag|delegation] [--from-block N] [--to-block N]
    fileforce harvest [--kind ...] [--from-block N] [--to-block N] [--fail-fast]
    fileforce pull <identifier>
    fileforce providers <identifier>

Without --from-block, watching starts event_offset blocks before the
latest block. Without --to-block, watch and harvest run until Ctrl-C.
"""

import json
import sys
from typing import Optional

import click

from fileforce.cli._common import (
    ARROW,
    EXIT_FAILURE,
    CliContext,
    _Color,
    pass_context,
    run,
)
from fileforce.ledger.events import EventKind
from fileforce.ledger.harvester import HarvestError

KINDS = {
    "file":       EventKind.FILE_APPEARED,
    "tag":        EventKind.TAG_REGISTERED,
    "delegation": EventKind.TAG_DELEGATED,
}


def _range_options(func):
    func = click.option("--to-block", type=click.IntRange(min=0), default=None,
                        help="Last block (inclusive). Omit to keep listening.")(func)
    func = click.option("--from-block", type=click.IntRange(min=0), default=None,
                        help="First block. Defaults to latest minus event offset.")(func)
    func = click.option("--kind", type=click.Choice(sorted(KINDS)), default="file",
                        show_default=True, help="Event kind to follow.")(func)
    return func


def _check_range(from_block: Optional[int], to_block: Optional[int]) -> None:
    if from_block is not None and to_block is not None and to_block < from_block:
        raise click.BadParameter("--to-block must be >= --from-block")


async def _start_block(ctx: CliContext, from_block: Optional[int], to_block: Optional[int]) -> int:
    """Resolve the first block and check it against --to-block."""
    start = await ctx.service.start_block(from_block)
    if to_block is not None and to_block < start:
        raise click.BadParameter(
            f"--to-block {to_block} is below the start block {start} "
            "(latest block minus event offset); pass --from-block"
        )
    return start


def _report_error(error: HarvestError) -> None:
    where = f"block {error.block_height}" if error.block_height is not None else "delivery"
    target = f" {error.identifier}" if error.identifier else ""
    click.echo(_Color.red(f"{error.kind} at {where}{target}: {error.message}"), err=True)


@click.command(name="watch")
@_range_options
@pass_context
def watch_command(
    ctx:        CliContext,
    kind:       str,
    from_block: Optional[int],
    to_block:   Optional[int],
) -> None:
    """Print content identifiers announced by ledger events."""
    _check_range(from_block, to_block)

    async def _print(identifier: str) -> None:
        click.echo(identifier)

    async def _watch():
        start = await _start_block(ctx, from_block, to_block)
        click.echo(_Color.blue(
            f"Watching block range {start} {ARROW} {to_block if to_block is not None else 'latest'}"
        ), err=True)
        return await ctx.service.watch(
            KINDS[kind], _print,
            from_block= start,
            to_block=   to_block,
            on_error=   _report_error,
        )

    try:
        run(_watch)
    except KeyboardInterrupt:
        pass


@click.command(name="harvest")
@_range_options
@click.option("--fail-fast", is_flag=True, default=False,
              help="Stop at the first error (overrides config).")
@click.option("--format", "fmt", type=click.Choice(["human", "json"]), default="human",
              show_default=True)
@pass_context
def harvest_command(
    ctx:        CliContext,
    kind:       str,
    from_block: Optional[int],
    to_block:   Optional[int],
    fail_fast:  bool,
    fmt:        str,
) -> None:
    """Pull every content identifier announced by ledger events."""
    _check_range(from_block, to_block)
    service = ctx.service
    if fail_fast:
        service.fail_fast = True

    async def _harvest():
        return await service.harvest(
            KINDS[kind],
            from_block= await _start_block(ctx, from_block, to_block),
            to_block=   to_block,
            on_error=   _report_error,
        )

    try:
        report = run(_harvest)
    except KeyboardInterrupt:
        return

    if fmt == "json":
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(
            f"{report.events} event(s), {report.completed}/{report.dispatched} pulled, "
            f"{len(report.errors)} error(s)"
        )
    sys.exit(0 if report.ok else EXIT_FAILURE)


@click.command(name="pull")
@click.argument("identifier")
@pass_context
def pull_command(ctx: CliContext, identifier: str) -> None:
    """Fetch IDENTIFIER from providers unless already local."""
    status = run(ctx.service.pull, identifier)
    if status.fetched:
        click.echo(_Color.green(f"Pulled {identifier} from {status.provider}"))
    else:
        click.echo(f"{identifier} already local")


@click.command(name="providers")
@click.argument("identifier")
@pass_context
def providers_command(ctx: CliContext, identifier: str) -> None:
    """List peers holding IDENTIFIER."""
    peers = run(ctx.service.providers, identifier)
    for peer in sorted(peers):
        click.echo(f"{peer.peer_id}\t{peer.address}")
