"""
governance_engines.recurrence -- Next start date of a recurring playbook.

Pure: ``after`` is supplied by the caller and the result is strictly later.

Anchor day meaning per pattern:
    WEEKLY       ISO weekday, 1 = Monday .. 7 = Sunday
    MONTHLY      day of month, clamped to the month's length
    QUARTERLY    day N of the quarter (1 = first day of the quarter)
    SEMI_ANNUAL  day N of the half year
    ANNUAL       day N of the year
An omitted anchor means "same weekday" for WEEKLY, "same day of month" for
MONTHLY and day 1 otherwise.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from governance_kernel.domain.playbook import RecurrencePattern

_PERIOD_MONTHS = {
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.SEMI_ANNUAL: 6,
    RecurrencePattern.ANNUAL: 12,
}


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def next_occurrence(
    pattern: RecurrencePattern,
    after: date,
    anchor_day: int | None = None,
) -> date | None:
    """First scheduled date strictly after ``after``; None for ONCE."""
    if pattern == RecurrencePattern.ONCE:
        return None

    if pattern == RecurrencePattern.DAILY:
        return after + timedelta(days=1)

    if pattern == RecurrencePattern.WEEKLY:
        weekday = anchor_day if anchor_day is not None else after.isoweekday()
        if not 1 <= weekday <= 7:
            raise ValueError(f"Weekly anchor must be 1-7, got {weekday}")
        delta = (weekday - after.isoweekday()) % 7 or 7
        return after + timedelta(days=delta)

    if pattern == RecurrencePattern.MONTHLY:
        day = anchor_day if anchor_day is not None else after.day
        if not 1 <= day <= 31:
            raise ValueError(f"Monthly anchor must be 1-31, got {day}")
        candidate = _clamped(after.year, after.month, day)
        if candidate > after:
            return candidate
        year, month = _add_months(after.year, after.month, 1)
        return _clamped(year, month, day)

    months = _PERIOD_MONTHS[pattern]
    day_of_period = anchor_day if anchor_day is not None else 1
    if day_of_period < 1:
        raise ValueError(f"Anchor day must be >= 1, got {day_of_period}")

    start_month = ((after.month - 1) // months) * months + 1
    year, month = after.year, start_month
    while True:
        candidate = date(year, month, 1) + timedelta(days=day_of_period - 1)
        if candidate > after:
            return candidate
        year, month = _add_months(year, month, months)
