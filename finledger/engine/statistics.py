"""
Spending statistics over a date range.

Budget pillar distribution against the 50/30/20 rule, top categories,
and a month-by-month income versus expenses comparison.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable

from finledger.engine.balance import counts_toward_balance, qualifying_expenses
from finledger.engine.periods import ZERO, add_months, month_key, to_money
from finledger.engine.recurrence import monthly_income_breakdown
from finledger.models.ledger import Expense, FinancialType, Income
from finledger.models.results import CategoryTotal, FinancialTypeShare, MonthComparison


# Share of spend each pillar should take (50/30/20 rule)
IDEAL_PERCENTAGES = {
    FinancialType.NEEDS: 50,
    FinancialType.WANTS: 30,
    FinancialType.SAVINGS: 20,
    FinancialType.UNCLASSIFIED: 0,
}

TOP_CATEGORIES = 10


def expenses_in_range(
    expenses: Iterable[Expense],
    start: date,
    end: date,
    today: date,
) -> list[Expense]:
    return [
        e for e in expenses
        if start <= e.expense_date <= end and counts_toward_balance(e, today)
    ]


def _percentage(amount: Decimal, total: Decimal) -> Decimal:
    if total <= 0:
        return ZERO
    return to_money(amount / total * 100)


def financial_type_distribution(expenses: Iterable[Expense]) -> list[FinancialTypeShare]:
    """Spend per budget pillar. Pillars with no spend are left out."""
    rows = list(expenses)
    total = sum((e.amount for e in rows), ZERO)
    totals: dict[FinancialType, Decimal] = defaultdict(lambda: ZERO)
    for expense in rows:
        totals[expense.financial_type] += expense.amount

    return [
        FinancialTypeShare(
            financial_type=pillar,
            amount=totals[pillar],
            percentage=_percentage(totals[pillar], total),
            ideal_percentage=ideal,
        )
        for pillar, ideal in IDEAL_PERCENTAGES.items()
        if totals[pillar] > 0
    ]


def category_totals(
    expenses: Iterable[Expense],
    limit: int = TOP_CATEGORIES,
) -> list[CategoryTotal]:
    """
    Spend per category, largest first.

    An expense with several categories counts fully toward each of them,
    so percentages can add up to more than 100.
    """
    rows = list(expenses)
    total = sum((e.amount for e in rows), ZERO)
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for expense in rows:
        for category_id in expense.category_ids:
            totals[category_id] += expense.amount

    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [
        CategoryTotal(
            category_id=category_id,
            amount=amount,
            percentage=_percentage(amount, total),
        )
        for category_id, amount in ranked
    ]


def monthly_comparison(
    expenses: Iterable[Expense],
    incomes: Iterable[Income],
    today: date,
    months: int = 6,
) -> list[MonthComparison]:
    """Income and spend of the last ``months`` months, oldest first, today's month last."""
    rows = list(expenses)
    income_rows = list(incomes)
    result = []
    for offset in range(months - 1, -1, -1):
        point = add_months(date(today.year, today.month, 1), -offset)
        spent = sum(
            (e.amount for e in qualifying_expenses(rows, point.year, point.month, today)),
            ZERO,
        )
        income = monthly_income_breakdown(income_rows, point.year, point.month, today)
        result.append(MonthComparison(
            month_key=month_key(point.year, point.month),
            income=income.total,
            expenses=spent,
        ))
    return result
