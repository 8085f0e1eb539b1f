"""
Business-day arithmetic.

A business (qualifying) day is any calendar day that is not a Sunday. Loan
terms are granted in business days and lateness is measured in the same
unit, so both walk the calendar one day at a time with the same rule.
"""

from datetime import date, timedelta

SUNDAY = 6  # date.weekday()

ONE_DAY = timedelta(days=1)


def is_business_day(day: date) -> bool:
    return day.weekday() != SUNDAY


def add_business_days(start: date, days: int) -> date:
    """Date of the `days`-th business day after `start` (exclusive)."""
    current = start
    counted = 0
    while counted < days:
        current += ONE_DAY
        if is_business_day(current):
            counted += 1
    return current


def count_business_days(start: date, end: date) -> int:
    """Business days in the half-open interval (start, end]; 0 if end <= start."""
    counted = 0
    current = start
    while current < end:
        current += ONE_DAY
        if is_business_day(current):
            counted += 1
    return counted
