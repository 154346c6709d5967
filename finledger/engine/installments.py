"""
Installment Splitter

Turns a purchase paid in N installments into an InstallmentPlan: one
aggregate owning N scheduled installments. The record-store rows
(parent metadata plus N children) are derived from the plan.

ROUNDING: each installment is round(T / N, 2). With the default
"remainder_to_last" policy the installments sum exactly to T: a shortfall
is added to the last installment, an excess (the share rounded up) is
taken back one cent at a time from the trailing installments, so no
installment drops below zero. The "independent" policy keeps every
installment at round(T / N, 2); the sum then drifts from T by at most
N cents.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Literal, Optional
from uuid import UUID

from finledger.engine.periods import CENT, add_months, month_key_of, to_money
from finledger.models.ledger import (
    Expense,
    ExpenseStatus,
    FinancialType,
    Installment,
    InstallmentPlan,
)
from finledger.models.results import UpcomingMonth


RoundingPolicy = Literal["remainder_to_last", "independent"]


class InstallmentError(ValueError):
    """Purchase cannot be split as requested. Nothing was created."""
    pass


def installment_amounts(
    total_amount: Decimal,
    installments: int,
    rounding: RoundingPolicy = "remainder_to_last",
) -> list[Decimal]:
    """Per-installment amounts, in installment order."""
    if installments < 1:
        raise InstallmentError(f"Installment count must be at least 1, got {installments}")
    if total_amount <= 0:
        raise InstallmentError(f"Purchase amount must be positive, got {total_amount}")

    share = to_money(Decimal(total_amount) / installments)
    amounts = [share] * installments
    if rounding == "remainder_to_last":
        remainder = to_money(total_amount) - share * installments
        if remainder >= 0:
            amounts[-1] += remainder
        else:
            # share rounded up: give the excess back one cent per trailing installment
            excess_cents = int(-remainder / CENT)
            for index in range(installments - excess_cents, installments):
                amounts[index] -= CENT
    return amounts


def split_installments(
    *,
    user_id: str,
    total_amount: Decimal,
    installments: int,
    first_date: date,
    today: date,
    starting_installment: int = 1,
    description: str = "",
    financial_type: FinancialType = FinancialType.UNCLASSIFIED,
    category_ids: Optional[list[str]] = None,
    credit_card_id: Optional[str] = None,
    payment_group_id: Optional[str] = None,
    debt_id: Optional[str] = None,
    rounding: RoundingPolicy = "remainder_to_last",
) -> InstallmentPlan:
    """
    Build the installment plan of a purchase.

    Args:
        first_date: Date of the installment the user is currently paying
            (installment number ``starting_installment``).
        starting_installment: 1..N. Values above 1 mean the purchase is
            entered mid-stream: earlier installments are back-dated one
            month each and, being in the past, come out as paid.
        today: Evaluation date; installments due on or before it are paid.

    Raises:
        InstallmentError: invalid count, amount or starting installment.
    """
    if not 1 <= starting_installment <= max(installments, 1):
        raise InstallmentError(
            f"Starting installment must be between 1 and {installments}, "
            f"got {starting_installment}"
        )
    amounts = installment_amounts(total_amount, installments, rounding)

    plan_start = add_months(first_date, -(starting_installment - 1))

    items = []
    for number, amount in enumerate(amounts, start=1):
        due = add_months(plan_start, number - 1)
        items.append(Installment(
            number=number,
            amount=amount,
            due_date=due,
            status=ExpenseStatus.PAID if due <= today else ExpenseStatus.PENDING,
        ))

    return InstallmentPlan(
        user_id=user_id,
        description=description,
        total_amount=to_money(total_amount),
        installments=installments,
        first_installment_date=plan_start,
        financial_type=financial_type,
        category_ids=distinct_categories(category_ids or []),
        credit_card_id=credit_card_id,
        payment_group_id=payment_group_id,
        debt_id=debt_id,
        items=items,
    )


def distinct_categories(category_ids: Iterable[str]) -> list[str]:
    """Category ids without duplicates, first occurrence order kept."""
    return list(dict.fromkeys(category_ids))


def expense_family(expenses: Iterable[Expense], expense_id: UUID) -> list[Expense]:
    """
    All rows of the purchase an expense belongs to.

    For a plain expense that is the expense alone; for any installment
    family member it is the parent and every child. Returns an empty
    list when the id is unknown.
    """
    rows = list(expenses)
    target = next((e for e in rows if e.id == expense_id), None)
    if target is None:
        return []
    family_id = target.family_id
    if family_id is None:
        return [target]
    return [e for e in rows if e.id == family_id or e.parent_expense_id == family_id]


def upcoming_installments(expenses: Iterable[Expense], today: date) -> list[UpcomingMonth]:
    """
    Pending installments due after today, grouped by month.

    Months come out in chronological order.
    """
    grouped: dict[str, list[Expense]] = defaultdict(list)
    for expense in sorted(expenses, key=lambda e: e.expense_date):
        if (
            expense.is_installment
            and expense.status == ExpenseStatus.PENDING
            and expense.expense_date > today
        ):
            grouped[month_key_of(expense.expense_date)].append(expense)

    return [
        UpcomingMonth(
            month_key=key,
            total=sum((e.amount for e in rows), Decimal("0")),
            expenses=rows,
        )
        for key, rows in sorted(grouped.items())
    ]
