"""
fileforce/cli/_common.py

Shared plumbing for fileforce commands: colors, context, passphrase
handling and the error → exit code mapping.

Exit codes:
    0  success
    1  protocol failure (invalid signature, unauthorized, unavailable,
       wrong passphrase, corrupt tag)
    2  usage or configuration error
"""

import sys
from dataclasses import dataclass
from typing import Any, Callable, NoReturn, Optional

import anyio
import click

from fileforce.config import Settings
from fileforce.core.exceptions import (
    AccountNotFound,
    ConfigError,
    FileForceError,
    InvalidKey,
)
from fileforce.core.identity import Identity
from fileforce.core.keystore import Keystore
from fileforce.service import FileForce

EXIT_OK      = 0
EXIT_FAILURE = 1
EXIT_USAGE   = 2

ARROW = "→"

_USAGE_ERRORS = (ConfigError, AccountNotFound, InvalidKey)


class _Color:
    """
    Minimal ANSI color wrapper.
    Auto-disables when not a TTY.
    """
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def green(cls, s: str) -> str:
        return f"\033[32m{s}\033[0m" if cls._on else s

    @classmethod
    def red(cls, s: str) -> str:
        return f"\033[31m{s}\033[0m" if cls._on else s

    @classmethod
    def blue(cls, s: str) -> str:
        return f"\033[34m{s}\033[0m" if cls._on else s

    @classmethod
    def bold(cls, s: str) -> str:
        return f"\033[1m{s}\033[0m" if cls._on else s


@dataclass
class CliContext:
    settings: Settings
    _service: Optional[FileForce] = None

    @property
    def service(self) -> FileForce:
        if self._service is None:
            self._service = FileForce.from_settings(self.settings)
        return self._service

    @property
    def keystore(self) -> Keystore:
        return Keystore(self.settings.keystore_dir)


pass_context = click.make_pass_decorator(CliContext)


def passphrase_option(func: Callable) -> Callable:
    return click.option(
        "--passphrase",
        envvar="FILEFORCE_PASSPHRASE",
        default=None,
        help="Keystore passphrase (prompted when omitted).",
    )(func)


def resolve_passphrase(passphrase: Optional[str], account: str) -> str:
    if passphrase is not None:
        return passphrase
    return click.prompt(f"Passphrase for {account}", hide_input=True, err=True)


def unlock(ctx: CliContext, account: str, passphrase: Optional[str]) -> Identity:
    return ctx.keystore.unlock(account, resolve_passphrase(passphrase, account))


def default_account(ctx: CliContext, account: Optional[str]) -> str:
    """The given account, or the only one in the keystore."""
    if account:
        return account
    accounts = ctx.keystore.accounts()
    if len(accounts) == 1:
        return accounts[0]
    if not accounts:
        raise AccountNotFound(
            "keystore is empty, create one with `fileforce new-account`",
            {"keystore": str(ctx.settings.keystore_dir)},
        )
    raise ConfigError("several accounts in keystore, pass --account")


def parse_public_key(value: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidKey("public key is not valid hex") from exc


def fail(exc: BaseException) -> NoReturn:
    """Report exc on stderr and exit with the matching code."""
    code = EXIT_USAGE if isinstance(exc, _USAGE_ERRORS) else EXIT_FAILURE
    kind = getattr(exc, "kind", type(exc).__name__)
    click.echo(_Color.red(f"{kind}: {exc}"), err=True)
    sys.exit(code)


def run(func: Callable[..., Any], *args: Any) -> Any:
    """anyio.run() with FileForceError mapped to an exit code."""
    try:
        return anyio.run(func, *args)
    except FileForceError as exc:
        fail(exc)
