"""tabrules CLI -- manage stored rules and preview them against tab snapshots.

This module is NEVER imported from tabrules/__init__.py.
It is only loaded via the ``tabrules`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click

from tabrules.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from tabrules.storage.store import RuleStore


@click.group()
@click.option(
    "--db",
    default=".tabrules.db",
    envvar="TABRULES_DB",
    help="Path to the rule database.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, verbose: bool) -> None:
    """tabrules: automation rules for browser tabs."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    if verbose:
        _configure_logging()


def _configure_logging() -> None:
    """Route tabrules log records through Rich on stderr."""
    from rich.console import Console
    from rich.logging import RichHandler

    handler = RichHandler(console=Console(stderr=True), show_path=False)
    package_logger = logging.getLogger("tabrules")
    package_logger.setLevel(logging.DEBUG)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(handler)


def _get_store(ctx: click.Context) -> RuleStore:
    """Open the rule store named by --db, creating the database if needed."""
    from tabrules.storage.store import RuleStore

    return RuleStore.open(ctx.obj["db_path"])


@contextmanager
def _store_session(ctx: click.Context) -> Iterator[tuple[RuleStore, Console]]:
    """Context manager that opens the store, yields (store, console), and closes it.

    Exceptions raised inside the ``with`` block are printed as CLI errors and
    turned into exit status 1.
    """
    console = get_console()
    try:
        store = _get_store(ctx)
        try:
            yield store, console
        finally:
            store.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from tabrules.cli.commands.rules import rules  # noqa: E402
from tabrules.cli.commands.run import run  # noqa: E402

cli.add_command(rules)
cli.add_command(run)
