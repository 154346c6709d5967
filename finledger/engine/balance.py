"""
Balance & Projection Calculator

Composes the income breakdown, the obligation summary and the month's
expenses into the running balance and a month-end projection.

The projection is a plain linear extrapolation of variable spend
(average per elapsed day times remaining days) plus every fixed
obligation still to be paid. It is not a statistical forecast.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable

from finledger.engine.obligations import summarize_obligations
from finledger.engine.periods import (
    ZERO,
    days_in_month,
    in_month,
    last_day,
    previous_month,
    to_money,
)
from finledger.engine.recurrence import monthly_income_breakdown
from finledger.models.ledger import (
    Expense,
    ExpenseStatus,
    Income,
    RecurringService,
    ServicePayment,
)
from finledger.models.results import (
    BalanceSummary,
    IncomeBreakdown,
    MonthProjection,
    ObligationSummary,
)


def counts_toward_balance(expense: Expense, today: date) -> bool:
    """
    Whether a row is real spend as of today.

    Installment parents are metadata, cancelled rows never happened and
    pending rows dated after today have not happened yet.
    """
    if expense.is_parent:
        return False
    if expense.status == ExpenseStatus.CANCELLED:
        return False
    if expense.status == ExpenseStatus.PENDING and expense.expense_date > today:
        return False
    return True


def qualifying_expenses(
    expenses: Iterable[Expense],
    year: int,
    month: int,
    today: date,
) -> list[Expense]:
    return [
        e for e in expenses
        if in_month(e.expense_date, year, month) and counts_toward_balance(e, today)
    ]


def _total(expenses: Iterable[Expense]) -> Decimal:
    return sum((e.amount for e in expenses), ZERO)


def split_fixed_variable(expenses: Iterable[Expense]) -> tuple[Decimal, Decimal]:
    """(fixed, variable) totals. Fixed rows pay a recurring service."""
    fixed = ZERO
    variable = ZERO
    for expense in expenses:
        if expense.is_fixed:
            fixed += expense.amount
        else:
            variable += expense.amount
    return fixed, variable


def days_remaining(today: date) -> int:
    """Days left in today's month, today included."""
    return days_in_month(today.year, today.month) - today.day + 1


def calculate_balance(
    expenses: Iterable[Expense],
    income: IncomeBreakdown,
    obligations: ObligationSummary,
    carryover: Decimal,
    today: date,
) -> BalanceSummary:
    """
    Running balance of today's month.

    Args:
        expenses: Any expense rows; only qualifying rows of today's month count.
        income: Breakdown for today's month (see recurrence.monthly_income_breakdown).
        obligations: Summary for today's month (see obligations.summarize_obligations).
        carryover: Amount carried over from the prior month.
    """
    month_rows = qualifying_expenses(expenses, today.year, today.month, today)
    total_expenses = _total(month_rows)
    total_fixed, total_variable = split_fixed_variable(month_rows)

    total_income = income.confirmed + carryover
    gross_balance = total_income - total_expenses
    balance = gross_balance - obligations.pending_total

    remaining = days_remaining(today)
    available_daily = to_money(balance / remaining) if balance > 0 else ZERO

    return BalanceSummary(
        year=today.year,
        month=today.month,
        confirmed_income=income.confirmed,
        pending_income=income.pending,
        carryover=carryover,
        total_income=total_income,
        total_expenses=total_expenses,
        total_fixed=total_fixed,
        total_variable=total_variable,
        gross_balance=gross_balance,
        pending_recurring=obligations.pending_total,
        paid_recurring=obligations.paid_total,
        total_recurring=obligations.total,
        balance=balance,
        days_remaining=remaining,
        available_daily=available_daily,
    )


def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    if previous <= 0:
        return ZERO
    return to_money((current - previous) / previous * 100)


def project_month(
    expenses: Iterable[Expense],
    obligations: ObligationSummary,
    today: date,
) -> MonthProjection:
    """Month-end projection of today's month and the change versus last month."""
    rows = list(expenses)
    month_rows = qualifying_expenses(rows, today.year, today.month, today)
    prev_year, prev_month = previous_month(today.year, today.month)
    previous_total = _total(qualifying_expenses(rows, prev_year, prev_month, today))

    total_expenses = _total(month_rows)
    total_fixed, total_variable = split_fixed_variable(month_rows)

    days_passed = max(1, today.day)
    remaining = days_remaining(today)
    daily_variable_average = total_variable / days_passed
    projected_variables = total_variable + daily_variable_average * remaining
    projected_fixed = total_fixed + obligations.pending_total

    weeks_passed = max(Decimal(1), Decimal(days_passed) / 7)

    return MonthProjection(
        year=today.year,
        month=today.month,
        total_expenses=total_expenses,
        total_fixed=total_fixed,
        total_variable=total_variable,
        previous_month_total=previous_total,
        change_from_last_month=percentage_change(total_expenses, previous_total),
        weekly_average=to_money(total_expenses / weeks_passed),
        days_passed=days_passed,
        days_remaining=remaining,
        daily_variable_average=to_money(daily_variable_average),
        projected_variables=to_money(projected_variables),
        projected_fixed=projected_fixed,
        projected_balance=to_money(projected_fixed + projected_variables),
    )


def month_end_remaining(
    expenses: Iterable[Expense],
    incomes: Iterable[Income],
    services: Iterable[RecurringService],
    payments: Iterable[ServicePayment],
    carryover: Decimal,
    year: int,
    month: int,
) -> Decimal:
    """
    Balance of (year, month) evaluated on its last day.

    This is the remainder offered to the user when that month is closed.
    """
    as_of = last_day(year, month)
    income = monthly_income_breakdown(incomes, year, month, as_of)
    obligations = summarize_obligations(services, payments, year, month, as_of)
    return calculate_balance(expenses, income, obligations, carryover, as_of).balance
