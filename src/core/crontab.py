"""
Duty Reminder — Crontab parsing.

Turns a standard five-field cron expression into an APScheduler
CronTrigger. APScheduler numbers weekdays from Monday = 0, while cron uses
Sunday = 0 (and 7), so day-of-week tokens are rewritten as names.
APScheduler-only extensions such as `last` or `2nd mon` are rejected.
"""

from __future__ import annotations

import re
from datetime import tzinfo

from apscheduler.triggers.cron import CronTrigger

DEFAULT_CRONTAB = "0 9 * * 6"  # 09:00 on Saturday

_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_MONTHS = (
    "jan", "feb", "mar", "apr", "may", "jun",
    "jul", "aug", "sep", "oct", "nov", "dec",
)
_NAME = re.compile(r"[a-z]+", re.IGNORECASE)


class InvalidCrontab(ValueError):
    """Raised when a schedule is not a valid five-field cron expression."""


def parse_crontab(expr: str, timezone: tzinfo | None = None) -> CronTrigger:
    """Build a CronTrigger for `minute hour day-of-month month day-of-week`."""
    fields = expr.split()
    if len(fields) != 5:
        raise InvalidCrontab(
            f"expected 5 fields (minute hour day month weekday), got {len(fields)}"
        )

    minute, hour, day, month, day_of_week = fields
    _check_names("minute", minute, ())
    _check_names("hour", hour, ())
    _check_names("day", day, ())
    _check_names("month", month, _MONTHS)
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=timezone,
        )
    except ValueError as exc:
        raise InvalidCrontab(str(exc)) from exc


def validate_crontab(expr: str) -> str:
    """Return `expr` normalized to single spaces, or raise InvalidCrontab."""
    parse_crontab(expr)
    return " ".join(expr.split())


def _check_names(label: str, field: str, allowed: tuple[str, ...]) -> None:
    for name in _NAME.findall(field):
        if name.lower() not in allowed:
            raise InvalidCrontab(f"unexpected {name!r} in {label} field {field!r}")


def _translate_day_of_week(field: str) -> str:
    """Rewrite cron weekdays (0/7 = Sunday, or names) as APScheduler names."""
    if field in ("*", "?"):
        return "*"

    # dedupe but keep cron order
    days: list[str] = []
    for item in field.split(","):
        for d in _expand_day_of_week(item):
            name = _WEEKDAYS[d % 7]
            if name not in days:
                days.append(name)
    return ",".join(days)


def _expand_day_of_week(item: str) -> list[int]:
    base, _, step_text = item.partition("/")
    step = 1
    if step_text:
        if not step_text.isdigit() or int(step_text) == 0:
            raise InvalidCrontab(f"invalid day-of-week step: {item!r}")
        step = int(step_text)

    if base == "*":
        start, end = 0, 6
    elif "-" in base:
        lo, _, hi = base.partition("-")
        start, end = _weekday(lo, item), _weekday(hi, item)
    else:
        start = _weekday(base, item)
        end = 7 if step_text else start

    if not (0 <= start <= 7 and 0 <= end <= 7) or start > end:
        raise InvalidCrontab(f"day-of-week out of range: {item!r}")
    return list(range(start, end + 1, step))


def _weekday(token: str, item: str) -> int:
    if token.isdigit():
        return int(token)
    if token.lower() in _WEEKDAYS:
        return _WEEKDAYS.index(token.lower())
    raise InvalidCrontab(f"invalid day-of-week value: {item!r}")
