"""Tests for src.data.db — HouseholdDB (SQLite storage)."""

import pytest

from src.data.db import HouseholdDB, StoreError
from src.data.models import Household, Member


class TestLoadSchedules:
    def test_empty_db(self, household_db):
        assert household_db.load_schedules() == []

    def test_returns_every_household(self, household_db, make_household):
        make_household(telegram_id=1, crontab="0 9 * * *")
        make_household(telegram_id=2, crontab="30 18 * * 5")
        assert household_db.load_schedules() == [(1, "0 9 * * *"), (2, "30 18 * * 5")]

    def test_skips_empty_schedules(self, household_db, make_household):
        make_household(telegram_id=1, crontab="")
        make_household(telegram_id=2, crontab="0 9 * * *")
        assert household_db.load_schedules() == [(2, "0 9 * * *")]

    def test_unreadable_db_raises_store_error(self, tmp_path):
        db = HouseholdDB(db_path=str(tmp_path / "h.db"))
        db._db_path = str(tmp_path / "missing-dir" / "h.db")
        with pytest.raises(StoreError):
            db.load_schedules()


class TestGetHousehold:
    def test_not_found(self, household_db):
        assert household_db.get_household(404) is None

    def test_members_round_trip_in_order(self, household_db, make_household):
        make_household(
            telegram_id=7,
            members=[(30, "Carol"), (10, "Alice"), (20, "Bob")],
            current_member=2,
        )
        h = household_db.get_household(7)
        assert [m.name for m in h.members] == ["Carol", "Alice", "Bob"]
        assert [m.order for m in h.members] == [0, 1, 2]
        assert h.current_member == 2
        assert h.crontab == "0 9 * * 6"
        assert h.created_at != ""


class TestTransaction:
    @pytest.mark.asyncio
    async def test_commit_persists(self, household_db, make_household):
        make_household(telegram_id=1, members=[(1, "Alice")])

        async with household_db.transaction() as repo:
            h = repo.get_household(1)
            h.add_member(Member(telegram_id=2, name="Bob"))
            h.current_member = 1
            repo.save_household(h)

        stored = household_db.get_household(1)
        assert [m.name for m in stored.members] == ["Alice", "Bob"]
        assert stored.current_member == 1

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, household_db, make_household):
        make_household(telegram_id=1, members=[(1, "Alice"), (2, "Bob")])

        with pytest.raises(RuntimeError):
            async with household_db.transaction() as repo:
                h = repo.get_household(1)
                h.pop_current_member()
                repo.save_household(h)
                raise RuntimeError("crash before commit")

        assert household_db.get_household(1).current_member == 0

    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_store_error(self, household_db, make_household):
        make_household(telegram_id=1)

        with pytest.raises(StoreError):
            async with household_db.transaction() as repo:
                repo.create_household(Household(telegram_id=1, crontab="0 9 * * *"))

    @pytest.mark.asyncio
    async def test_save_missing_household_raises(self, household_db):
        with pytest.raises(StoreError):
            await household_db.save_household(Household(telegram_id=5, crontab="* * * * *"))

    @pytest.mark.asyncio
    async def test_run_in_transaction_returns_result(self, household_db, make_household):
        make_household(telegram_id=3, members=[(1, "Alice")])

        async def _count(repo):
            return len(repo.get_household(3).members)

        assert await household_db.run_in_transaction(_count) == 1

    @pytest.mark.asyncio
    async def test_delete_household_removes_members(self, household_db, make_household):
        make_household(telegram_id=4, members=[(1, "Alice")])

        async with household_db.transaction() as repo:
            assert repo.delete_household(4) is True
            assert repo.delete_household(4) is False

        assert household_db.get_household(4) is None
        assert household_db.load_schedules() == []

    @pytest.mark.asyncio
    async def test_remove_member_persists_order(self, household_db, make_household):
        make_household(telegram_id=5, members=[(1, "A"), (2, "B"), (3, "C")])

        async with household_db.transaction() as repo:
            h = repo.get_household(5)
            h.remove_member(2)
            repo.save_household(h)

        stored = household_db.get_household(5)
        assert [(m.name, m.order) for m in stored.members] == [("A", 0), ("C", 1)]
