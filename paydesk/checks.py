"""PAYDESK — Paycheck batches.

Creates checks for a batch of employees, allocating each check number
inside a store transaction so concurrent batches never reuse a number,
and groups checks into pay weeks for review.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from paydesk.models import BANKS, CHECKS, COMPANIES, EMPLOYEES, Bank, Check, Employee, User
from paydesk.storage import DocumentStore, Transaction

logger = logging.getLogger("paydesk.checks")

DEFAULT_STARTING_CHECK_NUMBER = 1
_LEADING_DIGITS = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class CheckDraft:
    """One employee's line in a batch. ``amount`` is computed by the caller."""

    employee_id: str
    amount: float
    memo: str = ""
    hours: float = 0.0
    ot_hours: float = 0.0
    holiday_hours: float = 0.0


def starting_check_number(bank: Optional[Bank]) -> int:
    """First check number configured on the company's bank account."""
    if bank is None:
        return DEFAULT_STARTING_CHECK_NUMBER
    # Leading digits only, so "1001A" starts at 1001
    match = _LEADING_DIGITS.match(str(bank.starting_check_number))
    if match is None:
        return DEFAULT_STARTING_CHECK_NUMBER
    number = int(match.group(1))
    return number if number > 0 else DEFAULT_STARTING_CHECK_NUMBER


async def company_bank(store: DocumentStore, company_id: str) -> Optional[Bank]:
    docs = await store.query(BANKS.name, {"companyId": company_id})
    return BANKS.decode(docs[0]) if docs else None


async def allocate_check_number(tx: Transaction, company_id: str, starting: int) -> int:
    """Reserve the company's next check number within ``tx``.

    The company's ``nextCheckNumber`` holds the next unused number; it
    never drops below the bank's starting number.
    """
    doc = await tx.get(COMPANIES.name, company_id)
    current = doc.data.get("nextCheckNumber") if doc else None
    number = max(int(current or 0), starting)
    tx.set(COMPANIES.name, company_id, {"nextCheckNumber": number + 1}, merge=True)
    return number


async def create_checks(
    store: DocumentStore,
    company_id: str,
    drafts: Iterable[CheckDraft],
    *,
    created_by: Optional[User] = None,
    now: Optional[datetime] = None,
) -> list[Check]:
    """Create one pending check per draft.

    Each check is written in its own transaction together with the
    company's check counter. Drafts for unknown employees are skipped.
    Checks made by an admin are created already reviewed.
    """
    starting = starting_check_number(await company_bank(store, company_id))
    logger.info("Bank starting check number for %s: %d", company_id, starting)
    issued_at = (now or datetime.now(timezone.utc)).isoformat()

    created: list[Check] = []
    for draft in drafts:
        emp_doc = await store.get(EMPLOYEES.name, draft.employee_id)
        if emp_doc is None:
            logger.warning("Skipping check for unknown employee %s", draft.employee_id)
            continue
        employee: Employee = EMPLOYEES.decode(emp_doc)

        async with store.transaction() as tx:
            number = await allocate_check_number(tx, company_id, starting)
            check = Check(
                id="",
                employee_id=employee.id,
                company_id=company_id,
                client_id=employee.client_id or None,
                employee_name=employee.name,
                amount=round(float(draft.amount), 2),
                memo=draft.memo,
                hours=draft.hours,
                ot_hours=draft.ot_hours,
                holiday_hours=draft.holiday_hours,
                pay_rate=employee.pay_rate,
                pay_type=employee.pay_type,
                date=issued_at,
                status="pending",
                created_by=created_by.id if created_by else None,
                made_by_name=created_by.email if created_by else "Unknown",
                check_number=number,
                reviewed=bool(created_by and created_by.is_admin),
            )
            check_id = tx.add(CHECKS.name, check.to_document())
        created.append(check.model_copy(update={"id": check_id}))

    logger.info("Created %d checks for company %s", len(created), company_id)
    return created


# ─── Pay weeks ───────────────────────────────────────────────────


def _parse_date(value: str) -> date:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).date()


def week_key(day: date | datetime | str) -> str:
    """ISO date of the Sunday that starts the week containing ``day``."""
    if isinstance(day, str):
        day = _parse_date(day)
    elif isinstance(day, datetime):
        day = day.date()
    # Monday=0 ... Sunday=6
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start.isoformat()


def group_by_week(checks: Iterable[Check]) -> dict[str, list[Check]]:
    """Group checks by pay week, newest week first.

    Within a week checks are ordered by descending check number.
    """
    grouped: dict[str, list[Check]] = defaultdict(list)
    for check in checks:
        if not check.date:
            continue
        grouped[week_key(check.date)].append(check)
    return {
        week: sorted(grouped[week], key=lambda c: c.check_number or 0, reverse=True)
        for week in sorted(grouped, reverse=True)
    }
