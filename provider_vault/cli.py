"""Operator CLI for provider credentials.

Works on JSON exports of the ``providers`` column, shaped as
``{"<accountId>": [<provider document>, ...]}``. Decrypted keys are masked
unless ``--verbose`` is given and are only ever echoed to stdout.
"""
import asyncio
import logging
import sys
from pathlib import Path

import click
import orjson

from .exceptions import VaultError
from .vault.config import DERIVATIONS, VaultConfig, generate_key, load_key_material
from .vault.crypto import encrypt as encrypt_envelope
from .vault.key_rotation import RotationCoordinator
from .vault.probe import probe_accounts
from .vault.store import MemoryProviderStore


def _load_config() -> VaultConfig:
    try:
        return VaultConfig.from_env()
    except VaultError as err:
        raise click.ClickException(str(err)) from err


def _load_export(path: str) -> MemoryProviderStore:
    try:
        return MemoryProviderStore.from_export(Path(path).read_bytes())
    except VaultError as err:
        raise click.ClickException(str(err)) from err


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging level (log lines never include key values).",
)
def main(log_level: str) -> None:
    """Inspect and rotate encrypted provider API keys."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command("generate-key")
def generate_key_cmd() -> None:
    """Print a new random 64-character hex encryption key."""
    click.echo(generate_key())


@main.command()
@click.option(
    "--api-key",
    prompt="API key",
    hide_input=True,
    help="API key to encrypt (prompted when omitted).",
)
def encrypt(api_key: str) -> None:
    """Encrypt an API key with VAULT_ENCRYPTION_KEY and print its envelope."""
    config = _load_config()
    click.echo(encrypt_envelope(config.encryption_key, api_key.strip().encode("utf-8")))


@main.command()
@click.argument("dump", type=click.Path(exists=True, dir_okay=False))
@click.argument("account_ids", nargs=-1)
@click.option("--verbose", "-v", is_flag=True, help="Reveal decrypted keys.")
def check(dump: str, account_ids: tuple[str, ...], verbose: bool) -> None:
    """Report whether each provider key in DUMP decrypts.

    Checks every account in DUMP when no ACCOUNT_IDS are given.
    """
    config = _load_config()
    store = _load_export(dump)
    accounts = list(account_ids) or store.accounts()
    results = asyncio.run(
        probe_accounts(store, config.encryption_key, accounts, reveal=verbose)
    )
    failed = 0
    for result in results:
        if result.ok:
            click.echo(f"{result.account_id}\t{result.provider}\tok\t{result.preview}")
        else:
            failed += 1
            click.echo(
                f"{result.account_id}\t{result.provider or '-'}\tFAILED\t{result.message}"
            )
    click.echo(f"{len(results) - failed} readable, {failed} unreadable", err=True)
    if failed:
        sys.exit(1)


@main.command()
@click.argument("dump", type=click.Path(exists=True, dir_okay=False))
@click.argument("account_ids", nargs=-1)
@click.option(
    "--new-key",
    envvar="VAULT_NEW_ENCRYPTION_KEY",
    required=True,
    help="New encryption key (or VAULT_NEW_ENCRYPTION_KEY).",
)
@click.option(
    "--new-derivation",
    type=click.Choice(DERIVATIONS),
    default="direct",
    show_default=True,
    help="Derivation applied to the new key.",
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, writable=True),
    required=True,
    help="Where to write the rotated export.",
)
@click.option("--concurrency", type=click.IntRange(1, 64), default=None)
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
def rotate(
    dump: str,
    account_ids: tuple[str, ...],
    new_key: str,
    new_derivation: str,
    output: str,
    concurrency: int,
    timeout: float,
) -> None:
    """Re-encrypt provider keys in DUMP under a new key.

    Rotates every account in DUMP when no ACCOUNT_IDS are given. Accounts
    that fail keep their original envelopes in the output.
    """
    config = _load_config()
    try:
        target = load_key_material(new_key, new_derivation)
    except VaultError as err:
        raise click.ClickException(str(err)) from err
    store = _load_export(dump)
    accounts = list(account_ids) or store.accounts()
    coordinator = RotationCoordinator(
        store,
        concurrency=concurrency or config.rotation_concurrency,
        timeout=timeout or config.rotation_timeout,
    )
    report = asyncio.run(
        coordinator.rotate(config.encryption_key, target, accounts)
    )
    Path(output).write_bytes(store.to_export())
    click.echo(orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2).decode())
    if not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
