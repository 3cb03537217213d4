"""CLI commands: create-checks, weeks."""

from __future__ import annotations

import click
from rich.table import Table

from paydesk.checks import CheckDraft, create_checks, group_by_week
from paydesk.cli import cli, console, get_store, run_async, warn_if_ephemeral
from paydesk.cli.core import db_option, storage_option
from paydesk.exceptions import PaydeskError
from paydesk.live import DataAccess, QueryOptions
from paydesk.models import CHECKS, USERS, CheckFilter


def _parse_line(raw: str) -> CheckDraft:
    employee_id, sep, amount = raw.partition(":")
    if not sep:
        raise click.BadParameter(f"Expected EMPLOYEE_ID:AMOUNT, got {raw!r}")
    try:
        return CheckDraft(employee_id=employee_id.strip(), amount=float(amount))
    except ValueError:
        raise click.BadParameter(f"Invalid amount in {raw!r}") from None


@cli.command("create-checks")
@click.argument("company_id")
@click.option("--line", "-l", "lines", multiple=True, required=True, help="EMPLOYEE_ID:AMOUNT")
@click.option("--memo", default="", help="Memo printed on every check")
@click.option("--user", "user_id", default=None, help="Id of the user creating the batch")
@storage_option
@db_option
def create_checks_cmd(company_id, lines, memo, user_id, storage, db) -> None:
    """Create a batch of pending checks for a company."""
    drafts = [_parse_line(raw) for raw in lines]
    if memo:
        drafts = [CheckDraft(d.employee_id, d.amount, memo=memo) for d in drafts]
    warn_if_ephemeral(storage)

    async def _create():
        store = get_store(storage, db)
        try:
            creator = None
            if user_id:
                doc = await store.get(USERS.name, user_id)
                creator = USERS.decode(doc) if doc else None
            return await create_checks(store, company_id, drafts, created_by=creator)
        finally:
            await store.close()

    try:
        checks = run_async(_create())
    except PaydeskError as e:
        console.print(f"[red]✗ Batch failed:[/] {e}")
        raise SystemExit(1)

    table = Table(title=f"Checks created ({len(checks)})", border_style="green")
    table.add_column("Number", style="bold")
    table.add_column("Employee", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Reviewed")
    for check in checks:
        table.add_row(str(check.check_number), check.employee_name, f"{check.amount:.2f}",
                      "yes" if check.reviewed else "no")
    console.print(table)


@cli.command()
@click.argument("company_id")
@storage_option
@db_option
def weeks(company_id, storage, db) -> None:
    """Show a company's checks grouped by pay week."""

    async def _load():
        store = get_store(storage, db)
        try:
            async with DataAccess(store) as access:
                query = await access.open(
                    CHECKS, CheckFilter(company_id=company_id), QueryOptions(background_update=False)
                )
                return query.data, query.error
        finally:
            await store.close()

    checks, error = run_async(_load())
    if error:
        console.print(f"[red]✗ Error fetching checks:[/] {error}")
        raise SystemExit(1)
    grouped = group_by_week(checks)
    if not grouped:
        console.print("[dim]No checks found.[/]")
        return
    for week, items in grouped.items():
        table = Table(title=f"Week of {week}", border_style="cyan")
        table.add_column("Number", style="bold")
        table.add_column("Employee", style="cyan")
        table.add_column("Amount", justify="right")
        table.add_column("Status")
        for check in items:
            table.add_row(str(check.check_number or ""), check.employee_name,
                          f"{check.amount:.2f}", check.status)
        console.print(table)
        console.print(f"[dim]Total: {sum(c.amount for c in items):.2f}[/]")
