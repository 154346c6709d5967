"""
Recurrence Expander

Expands an income definition into its occurrences in a target month and
classifies each one as confirmed (already received) or pending.

Rules:
- One-time income counts as confirmed in the month of its date and is
  absent from every other month.
- Monthly: one occurrence on the anchor day.
- Biweekly: the anchor day and anchor + 15, the second wrapped back into
  the month when it overflows (anchor 28 in a 30-day month -> day 13).
  The wrap uses the configured day, so anchor 31 in June gives [30, 16].
- Weekly: anchor, +7, +14, ... while still inside the month.
- Anchor days past the end of a short month are clamped to its last day,
  for every frequency: a weekly income on day 31 is paid on June 30
  rather than skipping June.

Classification depends on where the month sits relative to today: in the
current month an occurrence is pending until its day arrives; in a past
month everything is confirmed; in a future month everything is pending.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable

from finledger.engine.periods import ZERO, clamp_day, compare_month, days_in_month, in_month
from finledger.models.ledger import Income, RecurringFrequency
from finledger.models.results import IncomeBreakdown, IncomeExpansion, IncomeOccurrence


BIWEEKLY_OFFSET = 15
WEEK = 7


def occurrence_days(
    recurring_day: int,
    frequency: RecurringFrequency,
    year: int,
    month: int,
) -> list[int]:
    """Days of the month on which a recurring income is received."""
    month_length = days_in_month(year, month)
    anchor = clamp_day(year, month, recurring_day)

    if frequency == RecurringFrequency.MONTHLY:
        return [anchor]

    if frequency == RecurringFrequency.BIWEEKLY:
        # wrap from the configured day, not the clamped one
        second = recurring_day + BIWEEKLY_OFFSET
        if second > month_length:
            second -= month_length
        return [anchor, second]

    if frequency == RecurringFrequency.WEEKLY:
        return list(range(anchor, month_length + 1, WEEK))

    raise ValueError(f"Unsupported frequency: {frequency}")


def _is_confirmed(day: int, position: int, today: date) -> bool:
    if position < 0:
        return True
    if position > 0:
        return False
    return today.day >= day


def expand_income(income: Income, year: int, month: int, today: date) -> IncomeExpansion:
    """Occurrences of one income definition in (year, month)."""
    occurrences: list[IncomeOccurrence] = []

    if not income.is_recurring:
        if income.income_date is not None and in_month(income.income_date, year, month):
            occurrences.append(IncomeOccurrence(
                occurs_on=income.income_date,
                amount=income.amount,
                is_confirmed=True,
            ))
    else:
        position = compare_month(year, month, today)
        for day in occurrence_days(income.recurring_day, income.recurring_frequency, year, month):
            occurrences.append(IncomeOccurrence(
                occurs_on=date(year, month, day),
                amount=income.amount,
                is_confirmed=_is_confirmed(day, position, today),
            ))

    occurrences.sort(key=lambda o: o.occurs_on)
    confirmed = sum((o.amount for o in occurrences if o.is_confirmed), ZERO)
    pending = sum((o.amount for o in occurrences if not o.is_confirmed), ZERO)
    return IncomeExpansion(
        income_id=income.id,
        occurrences=occurrences,
        confirmed=confirmed,
        pending=pending,
        total=confirmed + pending,
    )


def monthly_income_breakdown(
    incomes: Iterable[Income],
    year: int,
    month: int,
    today: date,
) -> IncomeBreakdown:
    """Sum of every income definition's expansion for (year, month)."""
    expansions = [
        expansion
        for expansion in (expand_income(income, year, month, today) for income in incomes)
        if expansion.occurrences
    ]
    confirmed = sum((e.confirmed for e in expansions), Decimal("0"))
    pending = sum((e.pending for e in expansions), Decimal("0"))
    return IncomeBreakdown(
        year=year,
        month=month,
        confirmed=confirmed,
        pending=pending,
        total=confirmed + pending,
        expansions=expansions,
    )
