"""
Duty Reminder — Data Models.

A household is a Telegram group chat whose members take turns on a chore.
The rotation lives here as plain data; persistence is in src.data.db.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class InvariantViolation(RuntimeError):
    """Raised when a household is used in a state its callers must prevent."""


@dataclass
class Member:
    """A registered member of a household."""

    telegram_id: int
    name: str
    order: int = 0    # position in the rotation, 0-based


@dataclass
class Household:
    """One group's rotation state.

    `current_member` is the index of the member due next. It always
    satisfies 0 <= current_member < len(members) while members is non-empty.
    """

    telegram_id: int
    crontab: str
    current_member: int = 0
    members: list[Member] = field(default_factory=list)
    created_at: str = ""

    def add_member(self, member: Member) -> None:
        member.order = len(self.members)
        self.members.append(member)

    def remove_member(self, telegram_id: int) -> Member | None:
        """Remove the first member with this id. A miss removes nothing.

        Returns the removed member, or None on a miss.
        """
        for i, m in enumerate(self.members):
            if m.telegram_id != telegram_id:
                continue

            del self.members[i]
            for pos, rest in enumerate(self.members):
                rest.order = pos

            # keep the cursor on the same upcoming member
            if i < self.current_member:
                self.current_member -= 1
            if self.current_member >= len(self.members):
                self.current_member = 0
            return m
        return None

    def find_member(self, telegram_id: int) -> Member | None:
        for m in self.members:
            if m.telegram_id == telegram_id:
                return m
        return None

    def pop_current_member(self) -> Member:
        """Return the member due now and advance the cursor round-robin."""
        if not self.members:
            raise InvariantViolation(
                f"household {self.telegram_id} has no members to rotate"
            )
        if not 0 <= self.current_member < len(self.members):
            raise InvariantViolation(
                f"household {self.telegram_id} cursor {self.current_member} "
                f"out of range for {len(self.members)} members"
            )

        member = self.members[self.current_member]
        self.current_member = (self.current_member + 1) % len(self.members)
        return member
