"""Events exchanged over the in-process EventBus.

One frozen dataclass per event name. Handlers subscribe by `name` and
receive the concrete type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "Event"


@dataclass(frozen=True)
class HouseholdCreated(Event):
    name: ClassVar[str] = "HouseholdCreated"

    household_id: int
    crontab: str


@dataclass(frozen=True)
class HouseholdCrontabUpdated(Event):
    name: ClassVar[str] = "HouseholdCrontabUpdated"

    household_id: int
    crontab: str


@dataclass(frozen=True)
class HouseholdDeleted(Event):
    name: ClassVar[str] = "HouseholdDeleted"

    household_id: int


@dataclass(frozen=True)
class NotifyHousehold(Event):
    """A household's timer fired; its rotation is due."""

    name: ClassVar[str] = "NotifyHousehold"

    household_id: int
