"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("DEFAULT_CRONTAB", "0 9 * * 6")

from contextlib import closing

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_households.db")


@pytest.fixture
def household_db(tmp_db_path):
    """Return a HouseholdDB instance backed by a temp file."""
    from src.data.db import HouseholdDB
    return HouseholdDB(db_path=tmp_db_path)


@pytest.fixture
def make_household(household_db):
    """Insert a household with the given members and return it."""
    from src.data.models import Household, Member
    from src.data.db import HouseholdRepository

    def _make(telegram_id=-100, crontab="0 9 * * 6", members=(), current_member=0):
        household = Household(
            telegram_id=telegram_id, crontab=crontab, current_member=current_member,
        )
        for member_id, name in members:
            household.add_member(Member(telegram_id=member_id, name=name))

        with closing(household_db._connect()) as conn:
            HouseholdRepository(conn).create_household(household)
        return household

    return _make
