"""
Duty Reminder — Household Database.

Households and their ordered member lists persist in SQLite, so the
rotation and every group's schedule survive bot restarts.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager, closing
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from src.data.models import Household, Member

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Raised when any storage operation fails."""


class StoreUnavailable(StoreError):
    """Raised when the store cannot be read at startup."""


class HouseholdRepository:
    """Household queries bound to a single open connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def load_schedules(self) -> list[tuple[int, str]]:
        """Return (telegram_id, crontab) for every household with a schedule."""
        rows = self._conn.execute(
            "SELECT telegram_id, crontab FROM households "
            "WHERE crontab != '' ORDER BY telegram_id"
        ).fetchall()
        return [(r["telegram_id"], r["crontab"]) for r in rows]

    def get_household(self, telegram_id: int) -> Household | None:
        row = self._conn.execute(
            "SELECT * FROM households WHERE telegram_id = ?", (telegram_id,)
        ).fetchone()
        if row is None:
            return None

        member_rows = self._conn.execute(
            "SELECT telegram_id, name, position FROM members "
            "WHERE household_id = ? ORDER BY position",
            (telegram_id,),
        ).fetchall()

        return Household(
            telegram_id=row["telegram_id"],
            crontab=row["crontab"],
            current_member=row["current_member"],
            created_at=row["created_at"],
            members=[
                Member(telegram_id=m["telegram_id"], name=m["name"], order=m["position"])
                for m in member_rows
            ],
        )

    def create_household(self, household: Household) -> None:
        if not household.created_at:
            household.created_at = datetime.now().isoformat(timespec="seconds")
        self._conn.execute(
            "INSERT INTO households (telegram_id, crontab, current_member, created_at) "
            "VALUES (?, ?, ?, ?)",
            (
                household.telegram_id, household.crontab,
                household.current_member, household.created_at,
            ),
        )
        self._save_members(household)

    def save_household(self, household: Household) -> None:
        """Update schedule and cursor, and replace the stored member list."""
        cursor = self._conn.execute(
            "UPDATE households SET crontab = ?, current_member = ? WHERE telegram_id = ?",
            (household.crontab, household.current_member, household.telegram_id),
        )
        if cursor.rowcount == 0:
            raise StoreError(f"Household {household.telegram_id} does not exist")
        self._save_members(household)

    def delete_household(self, telegram_id: int) -> bool:
        self._conn.execute("DELETE FROM members WHERE household_id = ?", (telegram_id,))
        cursor = self._conn.execute(
            "DELETE FROM households WHERE telegram_id = ?", (telegram_id,)
        )
        return cursor.rowcount > 0

    def _save_members(self, household: Household) -> None:
        self._conn.execute(
            "DELETE FROM members WHERE household_id = ?", (household.telegram_id,)
        )
        self._conn.executemany(
            "INSERT INTO members (household_id, telegram_id, name, position) "
            "VALUES (?, ?, ?, ?)",
            [
                (household.telegram_id, m.telegram_id, m.name, pos)
                for pos, m in enumerate(household.members)
            ],
        )


class HouseholdDB:
    """SQLite-backed storage for households and their members."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._write_lock = asyncio.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly
        conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create the households and members tables if they don't exist."""
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS households (
                    telegram_id     INTEGER PRIMARY KEY,
                    crontab         TEXT    NOT NULL,
                    current_member  INTEGER NOT NULL DEFAULT 0,
                    created_at      TEXT    NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    household_id    INTEGER NOT NULL
                                    REFERENCES households(telegram_id) ON DELETE CASCADE,
                    telegram_id     INTEGER NOT NULL,
                    name            TEXT    NOT NULL,
                    position        INTEGER NOT NULL,
                    PRIMARY KEY (household_id, telegram_id)
                )
            """)
        logger.debug("Household tables initialized at %s", self._db_path)

    # -- single-statement helpers, each on its own short-lived connection --

    def load_schedules(self) -> list[tuple[int, str]]:
        try:
            with closing(self._connect()) as conn:
                return HouseholdRepository(conn).load_schedules()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to load schedules: {exc}") from exc

    def get_household(self, telegram_id: int) -> Household | None:
        try:
            with closing(self._connect()) as conn:
                return HouseholdRepository(conn).get_household(telegram_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to load household {telegram_id}: {exc}") from exc

    async def save_household(self, household: Household) -> None:
        async with self.transaction() as repo:
            repo.save_household(household)

    # -- transactions --

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[HouseholdRepository]:
        """Open a write transaction; commit on success, roll back on any error.

        Writers are serialized so a transaction may await network I/O
        without another writer blocking the event loop on the file lock.
        """
        async with self._write_lock:
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to open database: {exc}") from exc

            with closing(conn):
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    yield HouseholdRepository(conn)
                    conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    _rollback(conn)
                    raise StoreError(str(exc)) from exc
                except BaseException:
                    _rollback(conn)
                    raise

    async def run_in_transaction(
        self, fn: Callable[[HouseholdRepository], Awaitable[T]],
    ) -> T:
        """Run `fn(repo)` inside `transaction()` and return its result."""
        async with self.transaction() as repo:
            return await fn(repo)


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")
