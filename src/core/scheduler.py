"""
Duty Reminder — Notification Scheduler.

Keeps exactly one cron job per household on the bot's JobQueue. Jobs are
rebuilt from the database at startup and then follow household lifecycle
events from the EventBus. When a job fires it publishes NotifyHousehold;
the rotation itself happens in src.core.duty_service.

Lifecycle updates are best-effort: if removing an old job fails, the error
is logged and the table still moves on to the new job (last write wins).
A leaked job is reconciled on the next restart, which rebuilds the table
from storage.
"""

from __future__ import annotations

import logging
import threading
from datetime import tzinfo
from typing import TYPE_CHECKING

from src.core.crontab import InvalidCrontab, parse_crontab
from src.core.events import (
    HouseholdCreated,
    HouseholdCrontabUpdated,
    HouseholdDeleted,
    NotifyHousehold,
)
from src.data.db import StoreError, StoreUnavailable

if TYPE_CHECKING:
    from telegram.ext import CallbackContext, Job, JobQueue

    from src.core.event_bus import EventBus
    from src.data.db import HouseholdDB

logger = logging.getLogger(__name__)


class NotificationScheduler:
    """Owns the household id -> armed Job table."""

    def __init__(
        self,
        bus: EventBus,
        db: HouseholdDB,
        job_queue: JobQueue,
        timezone: tzinfo | None = None,
    ) -> None:
        self._bus = bus
        self._job_queue = job_queue
        self._timezone = timezone
        self._jobs: dict[int, Job] = {}
        self._lock = threading.Lock()

        self._rehydrate(db)

        bus.subscribe(HouseholdCreated.name, self.on_household_created)
        bus.subscribe(HouseholdCrontabUpdated.name, self.on_crontab_updated)
        bus.subscribe(HouseholdDeleted.name, self.on_household_deleted)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _rehydrate(self, db: HouseholdDB) -> None:
        """Arm one job per stored schedule. A failed read aborts startup."""
        try:
            schedules = db.load_schedules()
        except StoreError as exc:
            raise StoreUnavailable(f"Cannot load household schedules: {exc}") from exc

        with self._lock:
            for household_id, crontab in schedules:
                try:
                    self._jobs[household_id] = self._create_job(household_id, crontab)
                except InvalidCrontab as exc:
                    logger.error(
                        "Skipping household %d: stored schedule %r is invalid: %s",
                        household_id, crontab, exc,
                    )

        logger.info("Scheduler rehydrated %d household jobs", len(self._jobs))

    # ------------------------------------------------------------------
    # Lifecycle handlers
    # ------------------------------------------------------------------

    async def on_household_created(self, event: HouseholdCreated) -> None:
        if not event.crontab:
            return

        with self._lock:
            if event.household_id in self._jobs:
                logger.warning(
                    "Household %d already has a job; ignoring duplicate create",
                    event.household_id,
                )
                return

            try:
                self._jobs[event.household_id] = self._create_job(
                    event.household_id, event.crontab,
                )
            except Exception as exc:
                logger.error(
                    "Failed to register job for household %d: %s",
                    event.household_id, exc,
                )
                return

        logger.info("Created job for household %d (%s)", event.household_id, event.crontab)

    async def on_crontab_updated(self, event: HouseholdCrontabUpdated) -> None:
        with self._lock:
            old_job = self._jobs.get(event.household_id)
            if old_job is None:
                return

            self._remove_job(event.household_id, old_job)

            try:
                self._jobs[event.household_id] = self._create_job(
                    event.household_id, event.crontab,
                )
            except Exception as exc:
                del self._jobs[event.household_id]
                logger.error(
                    "Failed to register updated job for household %d: %s",
                    event.household_id, exc,
                )
                return

        logger.info("Updated job for household %d (%s)", event.household_id, event.crontab)

    async def on_household_deleted(self, event: HouseholdDeleted) -> None:
        with self._lock:
            job = self._jobs.pop(event.household_id, None)
            if job is None:
                return
            self._remove_job(event.household_id, job)

        logger.info("Deleted job for household %d", event.household_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_armed(self, household_id: int) -> bool:
        with self._lock:
            return household_id in self._jobs

    def armed_households(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._jobs)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _create_job(self, household_id: int, crontab: str) -> Job:
        trigger = parse_crontab(crontab, timezone=self._timezone)
        return self._job_queue.run_custom(
            self._fire,
            job_kwargs={"trigger": trigger},
            name=f"household:{household_id}",
            chat_id=household_id,
        )

    @staticmethod
    def _remove_job(household_id: int, job: Job) -> None:
        try:
            job.schedule_removal()
        except Exception as exc:
            logger.error(
                "Failed to remove old job for household %d: %s", household_id, exc,
            )

    async def _fire(self, context: CallbackContext) -> None:
        household_id = context.job.chat_id
        logger.info("Job fired for household %d", household_id)
        self._bus.publish(NotifyHousehold(household_id=household_id))
