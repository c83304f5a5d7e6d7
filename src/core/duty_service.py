"""
Duty Reminder — Duty rotation.

Handles NotifyHousehold: inside one storage transaction, re-read the
household, pick the member whose turn it is, announce it in the group and
persist the advanced cursor. Any failure before commit leaves the cursor
untouched for the next scheduled fire. A failed announcement does not roll
the rotation back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.core.events import NotifyHousehold
from src.data.db import StoreError

if TYPE_CHECKING:
    from src.core.event_bus import EventBus
    from src.data.db import HouseholdDB
    from src.data.models import Member
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


class DutyService:
    """Advances a household's rotation each time its job fires."""

    def __init__(
        self,
        bus: EventBus,
        db: HouseholdDB,
        notifier: NotificationPort,
    ) -> None:
        self._db = db
        self._notifier = notifier
        bus.subscribe(NotifyHousehold.name, self.notify_household)

    async def notify_household(self, event: NotifyHousehold) -> Member | None:
        """Rotate and notify. Returns the member notified, or None."""
        try:
            async with self._db.transaction() as repo:
                household = repo.get_household(event.household_id)
                if household is None:
                    logger.warning(
                        "Household %d fired but no longer exists", event.household_id,
                    )
                    return None

                if not household.members:
                    logger.info("Household %d has no members; nothing to do", household.telegram_id)
                    return None

                member = household.pop_current_member()

                try:
                    await self._notifier.notify_member(
                        household.telegram_id, member.telegram_id, member.name,
                    )
                except Exception as exc:
                    logger.error(
                        "Failed to notify household %d about member %d: %s",
                        household.telegram_id, member.telegram_id, exc,
                    )

                repo.save_household(household)
        except StoreError as exc:
            logger.error(
                "Rotation for household %d rolled back: %s", event.household_id, exc,
            )
            return None

        logger.info(
            "Household %d rotated: %s (%d) is up, next index %d",
            household.telegram_id, member.name, member.telegram_id,
            household.current_member,
        )
        return member
