"""Tests for check batches and pay-week grouping."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from paydesk.checks import (
    CheckDraft,
    create_checks,
    group_by_week,
    starting_check_number,
    week_key,
)
from paydesk.models import Bank, Check, User
from paydesk.storage.memory import MemoryDocumentStore

NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)
ADMIN = User(id="u-admin", email="admin@paydesk.local", role="admin")
CLERK = User(id="u-clerk", email="clerk@paydesk.local", role="standard")


def make_store(company=None, bank=True):
    seed = {
        "companies": {"A": company or {"name": "Acme Staffing"}},
        "employees": {
            "e1": {"name": "Al", "companyId": "A", "clientId": "c1", "payRate": 20.0, "payType": "hourly"},
            "e2": {"name": "Bea", "companyId": "A", "clientId": "c2", "payRate": 150.0, "payType": "per_diem"},
        },
    }
    if bank:
        seed["banks"] = {"b1": {"bankName": "First Harbor", "companyId": "A", "startingCheckNumber": "1001"}}
    return MemoryDocumentStore(seed)


class TestCreateChecks:
    async def test_numbers_follow_bank_start(self):
        store = make_store()
        checks = await create_checks(
            store, "A", [CheckDraft("e1", 800.0), CheckDraft("e2", 450.0)], now=NOW
        )
        assert [c.check_number for c in checks] == [1001, 1002]
        company = await store.get("companies", "A")
        assert company.data["nextCheckNumber"] == 1003
        assert company.data["name"] == "Acme Staffing"

    async def test_checks_are_stored_pending(self):
        store = make_store()
        [check] = await create_checks(
            store, "A", [CheckDraft("e1", 812.346, memo="Week 42", hours=40)],
            created_by=CLERK, now=NOW,
        )
        stored = await store.get("checks", check.id)
        assert stored.data["status"] == "pending"
        assert stored.data["amount"] == 812.35
        assert stored.data["employeeName"] == "Al"
        assert stored.data["clientId"] == "c1"
        assert stored.data["payRate"] == 20.0
        assert stored.data["memo"] == "Week 42"
        assert stored.data["date"] == NOW.isoformat()
        assert stored.data["createdBy"] == "u-clerk"
        assert stored.data["madeByName"] == "clerk@paydesk.local"
        assert stored.data["reviewed"] is False

    async def test_counter_ahead_of_bank_start(self):
        store = make_store(company={"name": "Acme", "nextCheckNumber": 2500})
        checks = await create_checks(store, "A", [CheckDraft("e1", 1.0)], now=NOW)
        assert checks[0].check_number == 2500
        assert (await store.get("companies", "A")).data["nextCheckNumber"] == 2501

    async def test_no_bank_starts_at_one(self):
        store = make_store(bank=False)
        checks = await create_checks(store, "A", [CheckDraft("e1", 1.0)], now=NOW)
        assert checks[0].check_number == 1

    async def test_admin_checks_are_reviewed(self):
        store = make_store()
        [check] = await create_checks(store, "A", [CheckDraft("e1", 1.0)], created_by=ADMIN, now=NOW)
        assert check.reviewed is True
        assert check.made_by_name == "admin@paydesk.local"

    async def test_anonymous_creator(self):
        store = make_store()
        [check] = await create_checks(store, "A", [CheckDraft("e1", 1.0)], now=NOW)
        assert check.made_by_name == "Unknown"
        assert check.created_by is None

    async def test_unknown_employee_skipped(self):
        store = make_store()
        checks = await create_checks(
            store, "A", [CheckDraft("ghost", 5.0), CheckDraft("e2", 5.0)], now=NOW
        )
        assert [c.employee_id for c in checks] == ["e2"]
        assert checks[0].check_number == 1001

    async def test_concurrent_batches_never_share_numbers(self):
        store = make_store()
        batches = await asyncio.gather(*(
            create_checks(store, "A", [CheckDraft("e1", 1.0), CheckDraft("e2", 2.0)], now=NOW)
            for _ in range(4)
        ))
        numbers = [c.check_number for batch in batches for c in batch]
        assert sorted(numbers) == list(range(1001, 1009))
        assert (await store.get("companies", "A")).data["nextCheckNumber"] == 1009

    async def test_sqlite_allocation(self, tmp_path):
        from paydesk.storage.sqlite import SqliteDocumentStore

        store = SqliteDocumentStore(str(tmp_path / "checks.db"))
        try:
            async with store.transaction() as tx:
                tx.set("companies", "A", {"name": "Acme"})
                tx.set("employees", "e1", {"name": "Al", "companyId": "A"})
                tx.set("banks", "b1", {"companyId": "A", "startingCheckNumber": "500"})
            checks = await create_checks(store, "A", [CheckDraft("e1", 1.0), CheckDraft("e1", 2.0)], now=NOW)
            assert [c.check_number for c in checks] == [500, 501]
            assert (await store.get("companies", "A")).data["nextCheckNumber"] == 502
        finally:
            await store.close()


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1001", 1001),
        (" 42 ", 42),
        ("", 1),
        ("abc", 1),
        ("0", 1),
        ("-5", 1),
        ("1001A", 1001),
    ],
)
def test_starting_check_number(raw, expected):
    assert starting_check_number(Bank(id="b", starting_check_number=raw)) == expected


def test_starting_check_number_without_bank():
    assert starting_check_number(None) == 1


class TestWeeks:
    @pytest.mark.parametrize(
        "day,expected",
        [
            ("2026-10-19", "2026-10-18"),
            ("2026-10-18", "2026-10-18"),
            ("2026-10-24", "2026-10-18"),
            ("2026-10-25T09:00:00Z", "2026-10-25"),
            (date(2026, 1, 1), "2025-12-28"),
            (NOW, "2026-10-18"),
        ],
    )
    def test_week_key_starts_on_sunday(self, day, expected):
        assert week_key(day) == expected

    def test_group_by_week(self):
        def check(number, day):
            return Check(id=f"c{number}", check_number=number, date=day)

        grouped = group_by_week([
            check(1001, "2026-10-12T10:00:00+00:00"),
            check(1003, "2026-10-19T10:00:00+00:00"),
            check(1002, "2026-10-13T10:00:00+00:00"),
            check(1004, "2026-10-20T10:00:00+00:00"),
            Check(id="undated"),
        ])
        assert list(grouped) == ["2026-10-18", "2026-10-11"]
        assert [c.check_number for c in grouped["2026-10-18"]] == [1004, 1003]
        assert [c.check_number for c in grouped["2026-10-11"]] == [1002, 1001]

    def test_group_by_week_empty(self):
        assert group_by_week([]) == {}
