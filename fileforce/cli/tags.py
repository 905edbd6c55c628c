"""
fileforce/cli/tags.py

File and access tag commands.

Usage:
    fileforce new-account                     Create a keystore account
    fileforce add <file> [--to PUBKEY]        Seal a file, store its tag
    fileforce cat <identifier>                Raw stored bytes to stdout
    fileforce tag <tag-id>                    Print a stored tag as JSON
    fileforce signature <tag-id>              Verify a tag's signature
    fileforce decrypt <tag-id> [-o FILE]      Plaintext to stdout / FILE
    fileforce delegate <tag-id> <pubkey>      Re-share with another key
"""

import json
import sys
from typing import Optional

import anyio
import click

from fileforce.cli._common import (
    ARROW,
    EXIT_FAILURE,
    CliContext,
    _Color,
    default_account,
    fail,
    parse_public_key,
    pass_context,
    passphrase_option,
    resolve_passphrase,
    run,
    unlock,
)
from fileforce.core import codec
from fileforce.core.exceptions import FileForceError


def _print_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2, sort_keys=True))


# ── new-account ──────────────────────────────────────────────

@click.command(name="new-account")
@click.option("--kdf", type=click.Choice(["scrypt", "pbkdf2"]), default="scrypt", show_default=True)
@click.option("--work", type=int, default=None, hidden=True,
              help="Override scrypt n / pbkdf2 iterations.")
@passphrase_option
@pass_context
def new_account_command(ctx: CliContext, kdf: str, work: Optional[int], passphrase: Optional[str]) -> None:
    """Generate an identity and store it in the keystore."""
    if passphrase is None:
        passphrase = click.prompt(
            "New passphrase", hide_input=True, confirmation_prompt=True, err=True
        )
    try:
        identity = ctx.keystore.new_account(passphrase, kdf=kdf, work=work)
    except FileForceError as exc:
        fail(exc)
    click.echo(identity.address)
    click.echo(f"public key {identity.public_key_hex}")


# ── add ──────────────────────────────────────────────────────

@click.command(name="add")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--account", envvar="FILEFORCE_ACCOUNT", default=None,
              help="Owner account (default: the only keystore account).")
@click.option("--to", "dest", default=None, metavar="PUBKEY",
              help="Recipient public key, hex. Defaults to the owner.")
@passphrase_option
@pass_context
def add_command(
    ctx:        CliContext,
    path:       str,
    account:    Optional[str],
    dest:       Optional[str],
    passphrase: Optional[str],
) -> None:
    """Encrypt PATH, store ciphertext and tag, announce both."""

    async def _add():
        owner   = unlock(ctx, default_account(ctx, account), passphrase)
        dest_pk = parse_public_key(dest) if dest else None

        async with await anyio.open_file(path, "rb") as f:
            async def chunks():
                while True:
                    data = await f.read(64 * 1024)
                    if not data:
                        return
                    yield data

            return await ctx.service.add(chunks(), owner, dest_pk)

    result = run(_add)
    click.echo(_Color.bold(f"File {ARROW} {result.content_identifier}"))
    click.echo(_Color.bold(f"Tag  {ARROW} {result.tag_identifier}"))


# ── cat / tag ────────────────────────────────────────────────

@click.command(name="cat")
@click.argument("identifier")
@pass_context
def cat_command(ctx: CliContext, identifier: str) -> None:
    """Write the stored (still encrypted) blob IDENTIFIER to stdout."""
    out = click.get_binary_stream("stdout")

    async def _cat():
        await ctx.service.pull(identifier)
        await ctx.service.store.get(identifier, out)

    run(_cat)
    out.flush()


@click.command(name="tag")
@click.argument("tag_identifier")
@pass_context
def tag_command(ctx: CliContext, tag_identifier: str) -> None:
    """Print the access tag stored under TAG_IDENTIFIER."""
    tag = run(ctx.service.tag_by_identifier, tag_identifier)
    wire = codec.to_wire(tag)
    wire["ownerAddress"] = tag.owner_address
    wire["destAddress"]  = tag.dest_address
    _print_json(wire)


# ── signature ────────────────────────────────────────────────

@click.command(name="signature")
@click.argument("tag_identifier")
@pass_context
def signature_command(ctx: CliContext, tag_identifier: str) -> None:
    """Verify the owner signature of a stored tag."""

    async def _verify():
        tag = await ctx.service.tag_by_identifier(tag_identifier)
        return tag, ctx.service.engine.verify_tag(tag)

    tag, result = run(_verify)

    click.echo(f"Owner public key: {tag.owner_public_key.hex()}")
    click.echo(f"Owner address:    {tag.owner_address}")
    click.echo(f"Signer address:   {result.signer_address or '-'}")
    click.echo("Signature:")
    click.echo(f"\tr: 0x{tag.signature.r:064x}")
    click.echo(f"\ts: 0x{tag.signature.s:064x}")
    click.echo(f"\trecoveryId: {tag.signature.recovery_id}")
    click.echo(f"Digest: {codec.tag_digest(tag).hex()}")

    if result:
        click.echo(_Color.green(_Color.bold("SIGNATURE VALID")))
        return
    click.echo(_Color.red(_Color.bold(f"SIGNATURE INVALID ({result.reason})")))
    sys.exit(EXIT_FAILURE)


# ── decrypt ──────────────────────────────────────────────────

@click.command(name="decrypt")
@click.argument("tag_identifier")
@click.option("-o", "--output", type=click.Path(dir_okay=False, writable=True), default=None,
              help="Write plaintext to a file instead of stdout.")
@passphrase_option
@pass_context
def decrypt_command(
    ctx:            CliContext,
    tag_identifier: str,
    output:         Optional[str],
    passphrase:     Optional[str],
) -> None:
    """Decrypt the file behind TAG_IDENTIFIER with the recipient's key."""

    async def _decrypt():
        tag    = await ctx.service.tag_by_identifier(tag_identifier)
        reader = unlock(ctx, tag.dest_address, passphrase)
        if output is None:
            out = click.get_binary_stream("stdout")
            await ctx.service.decrypt(tag_identifier, reader, out)
            out.flush()
            return
        async with await anyio.open_file(output, "wb") as f:
            await ctx.service.decrypt(tag_identifier, reader, f)

    run(_decrypt)


# ── delegate ─────────────────────────────────────────────────

@click.command(name="delegate")
@click.argument("tag_identifier")
@click.argument("public_key")
@passphrase_option
@pass_context
def delegate_command(
    ctx:            CliContext,
    tag_identifier: str,
    public_key:     str,
    passphrase:     Optional[str],
) -> None:
    """Re-share TAG_IDENTIFIER with the holder of PUBLIC_KEY."""

    async def _delegate():
        new_dest = parse_public_key(public_key)
        tag      = await ctx.service.tag_by_identifier(tag_identifier)
        click.echo(f"Party account {tag.dest_address}.", err=True)
        reader   = ctx.keystore.unlock(
            tag.dest_address, resolve_passphrase(passphrase, tag.dest_address)
        )
        return await ctx.service.delegate(tag_identifier, reader, new_dest)

    delegation = run(_delegate)
    record     = delegation.record
    click.echo(_Color.blue(
        f"Origin tag {record.origin_tag_identifier} delegated to "
        f"{delegation.tag.dest_address} with new tag {record.new_tag_identifier}"
    ))
    click.echo(_Color.blue(
        f"Transfer {delegation.tag.owner_address} {ARROW} {delegation.tag.dest_address} complete."
    ))
