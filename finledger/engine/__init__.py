"""
Ledger engine: pure computations over already-fetched records.

Nothing in this package performs I/O or reads the wall clock.
"""

from finledger.engine.balance import (
    calculate_balance,
    counts_toward_balance,
    month_end_remaining,
    project_month,
    qualifying_expenses,
)
from finledger.engine.installments import (
    InstallmentError,
    distinct_categories,
    expense_family,
    installment_amounts,
    split_installments,
    upcoming_installments,
)
from finledger.engine.month_close import (
    MonthAlreadyClosedError,
    apply_month_close,
    evaluate_month_close,
    previous_month_key,
)
from finledger.engine.obligations import find_payment, summarize_obligations
from finledger.engine.recurrence import expand_income, monthly_income_breakdown
from finledger.engine.statistics import (
    category_totals,
    expenses_in_range,
    financial_type_distribution,
    monthly_comparison,
)

__all__ = [
    "InstallmentError",
    "MonthAlreadyClosedError",
    "apply_month_close",
    "calculate_balance",
    "category_totals",
    "counts_toward_balance",
    "distinct_categories",
    "evaluate_month_close",
    "expand_income",
    "expense_family",
    "expenses_in_range",
    "financial_type_distribution",
    "find_payment",
    "installment_amounts",
    "month_end_remaining",
    "monthly_comparison",
    "monthly_income_breakdown",
    "previous_month_key",
    "project_month",
    "qualifying_expenses",
    "split_installments",
    "summarize_obligations",
    "upcoming_installments",
]
