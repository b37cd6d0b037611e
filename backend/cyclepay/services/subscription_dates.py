"""Calendar helpers for billing cycles."""

import calendar as cal
import math
from datetime import date, datetime, time


def add_months(d: date, months: int) -> date:
    """Add months to a date, clamping to the last day of the target month."""
    month = d.month - 1 + months
    year = d.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    return d.replace(year=year, month=month, day=min(d.day, max_day))


def next_month(today: date) -> tuple[int, int]:
    """Return (month, year) of the month after ``today``."""
    target = add_months(today.replace(day=1), 1)
    return target.month, target.year


def due_date_in_month(month: int, year: int, due_day: int) -> date:
    """The due date for a period, clamping ``due_day`` to the month length."""
    last_day = cal.monthrange(year, month)[1]
    return date(year, month, min(max(due_day, 1), last_day))


def remaining_days(cycle_end: date, now: datetime | date) -> int:
    """Whole days left until ``cycle_end``, counting a started day as a full day.

    Never negative.
    """
    if isinstance(now, datetime):
        end_of_cycle = datetime.combine(cycle_end, time.min, tzinfo=now.tzinfo)
        seconds = (end_of_cycle - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))
    return max(0, (cycle_end - now).days)


def to_date(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


def next_cycle_end(previous: date, anchor: date | None = None) -> date:
    """Cycle end one month after ``previous``, pinned to the anchor's day of month.

    Pinning keeps a cycle anchored on the 31st from drifting to the 28th after February.
    """
    target = add_months(previous.replace(day=1), 1)
    day = anchor.day if anchor is not None else previous.day
    return due_date_in_month(target.month, target.year, day)
