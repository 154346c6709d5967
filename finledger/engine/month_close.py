"""
Month-Close State Machine

Once per calendar month the prior month is closed in exactly one of
three ways (see finledger.models.month_close). Every transition writes
last_closed_month = current month key, which is what makes the machine
idempotent: it only re-triggers when the calendar month changes.
"""

from datetime import date
from decimal import Decimal

from finledger.engine.periods import ZERO, last_day, month_key, month_key_of, previous_month, to_money
from finledger.models.ledger import Expense, ExpenseStatus, FinancialType, UserPreferences
from finledger.models.month_close import (
    CarriedOver,
    MonthCloseOutcome,
    MonthCloseTransition,
    MonthCloseTrigger,
    RegisteredAsExpense,
    StartedFresh,
)


DEFAULT_ADJUSTMENT_DESCRIPTION = "Unregistered spending adjustment"


class MonthAlreadyClosedError(ValueError):
    """The current month key has already been closed."""
    pass


def is_closed(preferences: UserPreferences, today: date) -> bool:
    return preferences.last_closed_month == month_key_of(today)


def evaluate_month_close(
    preferences: UserPreferences,
    today: date,
    has_income: bool,
) -> MonthCloseTrigger:
    """
    Decide what a session start should do about the prior month.

    Users without any income configured are closed silently: income
    tracking is optional and they should never be asked.
    """
    if is_closed(preferences, today):
        return MonthCloseTrigger.NOT_NEEDED
    if not has_income:
        return MonthCloseTrigger.AUTO_START_FRESH
    return MonthCloseTrigger.PROMPT


def previous_month_key(today: date) -> str:
    return month_key(*previous_month(today.year, today.month))


def adjustment_expense(
    user_id: str,
    amount: Decimal,
    today: date,
    description: str = DEFAULT_ADJUSTMENT_DESCRIPTION,
) -> Expense:
    """Expense booked on the last day of the prior month for untracked spend."""
    year, month = previous_month(today.year, today.month)
    return Expense(
        user_id=user_id,
        amount=to_money(amount),
        description=description,
        expense_date=last_day(year, month),
        financial_type=FinancialType.NEEDS,
        status=ExpenseStatus.PAID,
        category_ids=[],
    )


def apply_month_close(
    preferences: UserPreferences,
    outcome: MonthCloseOutcome,
    today: date,
    adjustment_description: str = DEFAULT_ADJUSTMENT_DESCRIPTION,
) -> MonthCloseTransition:
    """
    Single transition function of the machine.

    Returns the new preferences and, for RegisteredAsExpense with a
    non-zero amount, the adjustment expense to write. Nothing is
    persisted here.

    Raises:
        MonthAlreadyClosedError: the current month is already closed.
    """
    if is_closed(preferences, today):
        raise MonthAlreadyClosedError(
            f"Month {preferences.last_closed_month} is already closed"
        )

    expense = None
    if isinstance(outcome, CarriedOver):
        carryover = to_money(outcome.amount)
    elif isinstance(outcome, RegisteredAsExpense):
        carryover = to_money(outcome.carryover_amount)
        if outcome.expense_amount > 0:
            expense = adjustment_expense(
                preferences.user_id,
                outcome.expense_amount,
                today,
                adjustment_description,
            )
    elif isinstance(outcome, StartedFresh):
        carryover = ZERO
    else:
        raise TypeError(f"Unknown month-close outcome: {outcome!r}")

    current_key = month_key_of(today)
    return MonthCloseTransition(
        closed_month_key=current_key,
        outcome=outcome,
        preferences=preferences.model_copy(update={
            "last_closed_month": current_key,
            "carryover_amount": carryover,
        }),
        adjustment_expense=expense,
    )
