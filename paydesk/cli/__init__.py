"""
PAYDESK CLI — Package init.

Re-exports the main CLI group and shared utilities.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from paydesk import __version__, config
from paydesk.models import Record, get_collection, store_field
from paydesk.storage import DocumentStore, StorageMode, create_store, get_storage_mode
from paydesk.storage.sqlite import SqliteDocumentStore

console = Console()

STORAGE_CHOICES = [m.value for m in StorageMode]


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def resolve_mode(storage: str | None) -> StorageMode:
    return StorageMode(storage) if storage else get_storage_mode()


def warn_if_ephemeral(storage: str | None) -> None:
    """Writes to the in-process store vanish when the command exits."""
    if resolve_mode(storage) == StorageMode.MEMORY:
        console.print(
            "[yellow]⚠ Using the in-memory store: changes are lost when this command exits. "
            "Pass --storage sqlite or set PAYDESK_STORAGE.[/]"
        )


def get_store(storage: str | None, db: str | None) -> DocumentStore:
    """Build the store selected on the command line (or by config)."""
    mode = resolve_mode(storage)
    if mode == StorageMode.SQLITE and db:
        return SqliteDocumentStore(db, max_connections=config.CONNECTION_POOL_SIZE)
    return create_store(mode)


def run_async(coro):
    """Helper to run async coroutines from sync CLI."""
    return asyncio.run(coro)


def parse_value(raw: str) -> Any:
    """Interpret a command-line value: true/false, null, numbers, else text."""
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none"):
        return None
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            pass
    return raw


def parse_pairs(pairs: tuple[str, ...]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"Expected FIELD=VALUE, got {pair!r}")
        result[name.strip()] = parse_value(value.strip())
    return result


def records_table(collection: str, records: list[Record], title: str | None = None) -> Table:
    coll = get_collection(collection)
    names = coll.record_type.field_names()
    table = Table(title=title or f"{collection} ({len(records)})", border_style="cyan")
    table.add_column("ID", style="bold")
    for name in names:
        table.add_column(store_field(name))
    for record in records:
        table.add_row(record.id, *("" if getattr(record, n) is None else str(getattr(record, n)) for n in names))
    return table


# ─── Main Group ──────────────────────────────────────────────────

@click.group()
@click.version_option(__version__, prog_name="paydesk")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """PAYDESK — Payroll back-office data access."""
    setup_logging(verbose)


# ─── Register all sub-modules ───────────────────────────────────
from paydesk.cli import core  # noqa: E402, F401
from paydesk.cli import checks_cmds  # noqa: E402, F401


if __name__ == "__main__":
    cli()
