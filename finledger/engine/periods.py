"""
Month and money helpers shared by every engine component.

Month arithmetic goes through dateutil's relativedelta, which clamps to
the last day of shorter months (Jan 31 + 1 month = Feb 28/29).
"""

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from dateutil.relativedelta import relativedelta


CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value: Union[Decimal, int, str]) -> Decimal:
    """Round half-up to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def first_day(year: int, month: int) -> date:
    return date(year, month, 1)


def last_day(year: int, month: int) -> date:
    return date(year, month, days_in_month(year, month))


def add_months(value: date, months: int) -> date:
    return value + relativedelta(months=months)


def previous_month(year: int, month: int) -> tuple[int, int]:
    prev = first_day(year, month) - relativedelta(months=1)
    return prev.year, prev.month


def month_key(year: int, month: int) -> str:
    """Year-month key used for last_closed_month, e.g. '2024-06'."""
    return f"{year:04d}-{month:02d}"


def month_key_of(value: date) -> str:
    return month_key(value.year, value.month)


def parse_month_key(key: str) -> tuple[int, int]:
    year, month = key.split("-")
    return int(year), int(month)


def in_month(value: date, year: int, month: int) -> bool:
    return value.year == year and value.month == month


def compare_month(year: int, month: int, today: date) -> int:
    """-1 if (year, month) is before today's month, 0 if it is, 1 if after."""
    target = (year, month)
    current = (today.year, today.month)
    if target < current:
        return -1
    if target > current:
        return 1
    return 0


def clamp_day(year: int, month: int, day: int) -> int:
    return min(day, days_in_month(year, month))
