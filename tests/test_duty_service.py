"""Tests for src.core.duty_service — transactional rotation on NotifyHousehold."""

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core.duty_service import DutyService
from src.core.event_bus import EventBus
from src.core.events import NotifyHousehold
from src.data.db import HouseholdRepository
from src.data.models import InvariantViolation


@pytest.fixture
def notifier():
    n = MagicMock()
    n.notify_member = AsyncMock()
    return n


@pytest.fixture
def service(household_db, notifier):
    return DutyService(EventBus(), household_db, notifier)


class TestRotation:
    @pytest.mark.asyncio
    async def test_alice_then_bob_then_wrap(self, service, household_db, notifier, make_household):
        make_household(telegram_id=-100, members=[(1, "Alice"), (2, "Bob")])

        chosen = await service.notify_household(NotifyHousehold(household_id=-100))

        assert chosen.name == "Alice"
        notifier.notify_member.assert_awaited_once_with(-100, 1, "Alice")
        assert household_db.get_household(-100).current_member == 1

        chosen = await service.notify_household(NotifyHousehold(household_id=-100))

        assert chosen.name == "Bob"
        notifier.notify_member.assert_awaited_with(-100, 2, "Bob")
        assert household_db.get_household(-100).current_member == 0

    @pytest.mark.asyncio
    async def test_member_order_survives_rotation(self, service, household_db, make_household):
        make_household(telegram_id=-100, members=[(3, "Carol"), (1, "Alice"), (2, "Bob")])

        await service.notify_household(NotifyHousehold(household_id=-100))

        stored = household_db.get_household(-100)
        assert [m.name for m in stored.members] == ["Carol", "Alice", "Bob"]

    @pytest.mark.asyncio
    async def test_no_members_is_noop(self, service, household_db, notifier, make_household):
        make_household(telegram_id=-100)

        assert await service.notify_household(NotifyHousehold(household_id=-100)) is None

        notifier.notify_member.assert_not_called()
        stored = household_db.get_household(-100)
        assert stored.current_member == 0
        assert stored.members == []

    @pytest.mark.asyncio
    async def test_missing_household_is_noop(self, service, notifier):
        assert await service.notify_household(NotifyHousehold(household_id=404)) is None
        notifier.notify_member.assert_not_called()


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_notify_failure_keeps_rotation(self, service, household_db, notifier, make_household):
        make_household(telegram_id=-100, members=[(1, "Alice"), (2, "Bob")])
        notifier.notify_member.side_effect = RuntimeError("telegram is down")

        chosen = await service.notify_household(NotifyHousehold(household_id=-100))

        assert chosen.name == "Alice"
        assert household_db.get_household(-100).current_member == 1

    @pytest.mark.asyncio
    async def test_save_failure_rolls_back(self, service, household_db, make_household, caplog):
        make_household(telegram_id=-100, members=[(1, "Alice"), (2, "Bob")])

        with patch.object(
            HouseholdRepository, "save_household",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            assert await service.notify_household(NotifyHousehold(household_id=-100)) is None

        assert household_db.get_household(-100).current_member == 0
        assert "rolled back" in caplog.text

    @pytest.mark.asyncio
    async def test_next_fire_retries_after_rollback(self, service, household_db, notifier, make_household):
        make_household(telegram_id=-100, members=[(1, "Alice"), (2, "Bob")])

        with patch.object(
            HouseholdRepository, "save_household",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            await service.notify_household(NotifyHousehold(household_id=-100))

        chosen = await service.notify_household(NotifyHousehold(household_id=-100))
        assert chosen.name == "Alice"

    @pytest.mark.asyncio
    async def test_corrupt_cursor_raises_and_rolls_back(self, service, household_db, notifier, make_household):
        make_household(telegram_id=-100, members=[(1, "Alice")], current_member=5)

        with pytest.raises(InvariantViolation):
            await service.notify_household(NotifyHousehold(household_id=-100))

        notifier.notify_member.assert_not_called()
        assert household_db.get_household(-100).current_member == 5


class TestSubscription:
    @pytest.mark.asyncio
    async def test_bus_event_drives_rotation(self, household_db, notifier, make_household):
        bus = EventBus()
        DutyService(bus, household_db, notifier)
        make_household(telegram_id=-100, members=[(1, "Alice")])

        bus.publish(NotifyHousehold(household_id=-100))
        await bus.join()

        notifier.notify_member.assert_awaited_once_with(-100, 1, "Alice")

    @pytest.mark.asyncio
    async def test_concurrent_fires_for_different_households(self, household_db, notifier, make_household):
        bus = EventBus()
        DutyService(bus, household_db, notifier)
        make_household(telegram_id=-1, members=[(1, "Alice"), (2, "Bob")])
        make_household(telegram_id=-2, members=[(3, "Carol"), (4, "Dave")])

        bus.publish(NotifyHousehold(household_id=-1))
        bus.publish(NotifyHousehold(household_id=-2))
        bus.publish(NotifyHousehold(household_id=-1))
        await bus.join()

        assert household_db.get_household(-1).current_member == 0
        assert household_db.get_household(-2).current_member == 1
        assert notifier.notify_member.await_count == 3

    @pytest.mark.asyncio
    async def test_corrupt_cursor_is_logged_by_bus(self, household_db, notifier, make_household, caplog):
        bus = EventBus()
        DutyService(bus, household_db, notifier)
        make_household(telegram_id=-100, members=[(1, "Alice")], current_member=5)

        bus.publish(NotifyHousehold(household_id=-100))
        await bus.join()

        failures = [r for r in caplog.records if r.name == "src.core.event_bus"]
        assert len(failures) == 1
        assert failures[0].levelname == "ERROR"
        assert failures[0].exc_info[0] is InvariantViolation
        notifier.notify_member.assert_not_called()
        assert household_db.get_household(-100).current_member == 5
