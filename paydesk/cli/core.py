"""CLI commands: seed, list, watch, update."""

from __future__ import annotations

import asyncio

import click

from paydesk.cli import (
    STORAGE_CHOICES,
    cli,
    console,
    get_store,
    parse_pairs,
    records_table,
    run_async,
    warn_if_ephemeral,
)
from paydesk.exceptions import PaydeskError
from paydesk.live import DataAccess, QueryOptions
from paydesk.models import COLLECTIONS

SEED_DATA = {
    "companies": {
        "acme": {"name": "Acme Staffing", "active": True},
        "globex": {"name": "Globex Services", "active": True},
    },
    "clients": {
        "cl-north": {"name": "North Warehouse", "companyId": "acme", "active": True},
        "cl-south": {"name": "South Depot", "companyId": "acme", "active": True},
        "cl-misc": {"name": "Miscellaneous", "companyId": "globex", "active": True, "miscellaneous": True},
    },
    "employees": {
        "e-ana": {"name": "Ana Ruiz", "clientId": "cl-north", "companyId": "acme",
                  "payRate": 21.5, "payType": "hourly", "startDate": "2024-03-04", "active": True},
        "e-ben": {"name": "Ben Okafor", "clientId": "cl-south", "companyId": "acme",
                  "payRate": 180.0, "payType": "per_diem", "startDate": "2023-11-13", "active": True},
        "e-cho": {"name": "Cho Park", "clientId": "cl-misc", "companyId": "globex",
                  "payRate": 19.0, "payType": "hourly", "startDate": "2025-01-06", "active": True},
    },
    "users": {
        "u-admin": {"email": "admin@paydesk.local", "role": "admin", "active": True},
        "u-clerk": {"email": "clerk@paydesk.local", "role": "standard", "active": True},
    },
    "banks": {
        "b-acme": {"bankName": "First Harbor Bank", "routingNumber": "011000015",
                   "accountNumber": "000123456789", "startingCheckNumber": "1001",
                   "companyId": "acme"},
    },
}

storage_option = click.option(
    "--storage", type=click.Choice(STORAGE_CHOICES), default=None,
    help="Document store backend (default: PAYDESK_STORAGE)",
)
db_option = click.option("--db", default=None, help="SQLite database path")
collection_argument = click.argument("collection", type=click.Choice(sorted(COLLECTIONS)))


@cli.command()
@storage_option
@db_option
def seed(storage, db) -> None:
    """Load demo companies, clients, employees, users and banks."""
    warn_if_ephemeral(storage)

    async def _seed() -> int:
        store = get_store(storage, db)
        try:
            async with store.transaction() as tx:
                for collection, docs in SEED_DATA.items():
                    for doc_id, data in docs.items():
                        tx.set(collection, doc_id, data)
                return len(tx.writes)
        finally:
            await store.close()

    try:
        count = run_async(_seed())
    except PaydeskError as e:
        console.print(f"[red]✗ Seed failed:[/] {e}")
        raise SystemExit(1)
    console.print(f"[green]✓[/] Seeded [bold]{count}[/] documents")


@cli.command("list")
@collection_argument
@click.option("--filter", "-f", "filters", multiple=True, help="Equality filter FIELD=VALUE")
@storage_option
@db_option
def list_records(collection, filters, storage, db) -> None:
    """List the records of a collection."""
    predicates = parse_pairs(filters)

    async def _list():
        store = get_store(storage, db)
        try:
            async with DataAccess(store) as access:
                query = await access.open(
                    collection, predicates, QueryOptions(background_update=False)
                )
                return query.data, query.error
        finally:
            await store.close()

    records, error = run_async(_list())
    if error:
        console.print(f"[red]✗ Error fetching {collection}:[/] {error}")
        raise SystemExit(1)
    if not records:
        console.print(f"[dim]No {collection} found.[/]")
        return
    console.print(records_table(collection, records))


@cli.command()
@collection_argument
@click.option("--filter", "-f", "filters", multiple=True, help="Equality filter FIELD=VALUE")
@click.option("--duration", type=float, default=None, help="Stop after N seconds")
@storage_option
@db_option
def watch(collection, filters, duration, storage, db) -> None:
    """Print a collection every time it changes."""
    predicates = parse_pairs(filters)

    async def _watch() -> None:
        store = get_store(storage, db)
        try:
            async with DataAccess(store) as access:
                query = access.query(collection, predicates)

                def show(q) -> None:
                    if not q.loading and not q.error:
                        console.print(records_table(collection, q.data, f"{collection} v{q.version}"))

                query.on_change(show)
                await query.start()
                if query.error:
                    console.print(f"[red]✗ {query.error}[/]")
                    return
                if duration is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(duration)
        finally:
            await store.close()

    try:
        run_async(_watch())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/]")


@cli.command()
@collection_argument
@click.argument("record_id")
@click.argument("fields", nargs=-1, required=True)
@storage_option
@db_option
def update(collection, record_id, fields, storage, db) -> None:
    """Update fields of one record (FIELD=VALUE, attribute names)."""
    updates = parse_pairs(fields)
    warn_if_ephemeral(storage)

    async def _update() -> bool:
        store = get_store(storage, db)
        try:
            async with DataAccess(store) as access:
                query = await access.open(
                    collection, None, QueryOptions(background_update=False)
                )
                return await query.optimistic_update(record_id, updates)
        finally:
            await store.close()

    try:
        ok = run_async(_update())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="FIELDS")
    if ok:
        console.print(f"[green]✓[/] Updated [bold]{collection}/{record_id}[/]")
    else:
        console.print(f"[red]✗ Could not update {collection}/{record_id}[/]")
        raise SystemExit(1)
