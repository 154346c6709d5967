"""
Tests for the installment splitter.
"""

import pytest
from datetime import date
from decimal import Decimal

from finledger.engine.installments import (
    InstallmentError,
    distinct_categories,
    expense_family,
    installment_amounts,
    split_installments,
    upcoming_installments,
)
from finledger.models.ledger import Expense, ExpenseStatus


def split(**overrides):
    data = dict(
        user_id="user-1",
        total_amount=Decimal("600.00"),
        installments=6,
        first_date=date(2024, 6, 15),
        today=date(2024, 6, 20),
    )
    data.update(overrides)
    return split_installments(**data)


class TestInstallmentAmounts:
    """Tests for per-installment amounts and rounding."""

    def test_even_split(self):
        """Test a total that divides exactly."""
        assert installment_amounts(Decimal("600"), 6) == [Decimal("100.00")] * 6

    def test_remainder_goes_to_last(self):
        """Test the default policy sums exactly to the total."""
        amounts = installment_amounts(Decimal("100"), 3)
        assert amounts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(amounts) == Decimal("100")

    def test_independent_rounding_drifts_within_bound(self):
        """Test the independent policy drifts by at most N cents."""
        amounts = installment_amounts(Decimal("100"), 3, rounding="independent")
        assert amounts == [Decimal("33.33")] * 3
        assert abs(sum(amounts) - Decimal("100")) <= Decimal("0.03")

    def test_half_up_rounding(self):
        """Test that half a cent rounds up."""
        amounts = installment_amounts(Decimal("0.05"), 2, rounding="independent")
        assert amounts == [Decimal("0.03"), Decimal("0.03")]

    def test_rejects_zero_installments(self):
        """Test N < 1 is rejected."""
        with pytest.raises(InstallmentError):
            installment_amounts(Decimal("100"), 0)

    def test_rejects_non_positive_total(self):
        """Test T <= 0 is rejected."""
        with pytest.raises(InstallmentError):
            installment_amounts(Decimal("0"), 3)

    def test_share_rounded_up_takes_cents_from_the_end(self):
        """Test an excess from rounding up is returned by trailing installments."""
        amounts = installment_amounts(Decimal("7.00"), 48)
        assert sum(amounts) == Decimal("7.00")
        assert amounts[:28] == [Decimal("0.15")] * 28
        assert amounts[28:] == [Decimal("0.14")] * 20

    def test_tiny_total_never_goes_negative(self):
        """Test a few cents over many installments still sums to the total."""
        amounts = installment_amounts(Decimal("0.15"), 10)
        assert sum(amounts) == Decimal("0.15")
        assert all(amount >= 0 for amount in amounts)
        assert amounts == [Decimal("0.02")] * 5 + [Decimal("0.01")] * 5

    def test_total_below_one_cent_per_installment(self):
        """Test totals smaller than N cents are split rather than rejected."""
        amounts = installment_amounts(Decimal("0.02"), 5)
        assert sum(amounts) == Decimal("0.02")
        assert all(amount >= 0 for amount in amounts)
        assert installment_amounts(Decimal("0.02"), 3, rounding="independent") == [
            Decimal("0.01")
        ] * 3


class TestSplitInstallments:
    """Tests for building an installment plan."""

    def test_numbers_unique_and_complete(self):
        """Test every installment number 1..N appears exactly once."""
        plan = split()
        assert [item.number for item in plan.items] == [1, 2, 3, 4, 5, 6]
        assert plan.total_amount == Decimal("600.00")
        assert plan.installment_total == Decimal("600.00")

    def test_monthly_dates_from_first_date(self):
        """Test installment k falls k-1 months after the first."""
        plan = split(today=date(2024, 1, 1))
        assert [item.due_date for item in plan.items] == [
            date(2024, 6, 15),
            date(2024, 7, 15),
            date(2024, 8, 15),
            date(2024, 9, 15),
            date(2024, 10, 15),
            date(2024, 11, 15),
        ]

    def test_starting_installment_shifts_dates_back(self):
        """Test S > 1 back-dates the plan by S-1 months and marks past items paid."""
        plan = split(starting_installment=3)

        assert plan.first_installment_date == date(2024, 4, 15)
        assert plan.items[2].due_date == date(2024, 6, 15)
        statuses = [item.status for item in plan.items]
        assert statuses[:3] == [ExpenseStatus.PAID] * 3
        assert statuses[3:] == [ExpenseStatus.PENDING] * 3

    def test_installment_due_today_is_paid(self):
        """Test the boundary: due date equal to today counts as paid."""
        plan = split(today=date(2024, 6, 15))
        assert plan.items[0].status == ExpenseStatus.PAID
        assert plan.items[1].status == ExpenseStatus.PENDING

    def test_month_end_dates_are_clamped(self):
        """Test the 31st falls on the last day of shorter months."""
        plan = split(
            total_amount=Decimal("90"),
            installments=3,
            first_date=date(2024, 1, 31),
            today=date(2024, 1, 1),
        )
        assert [item.due_date for item in plan.items] == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
        ]

    def test_rejects_starting_installment_out_of_range(self):
        """Test S outside 1..N is rejected before anything is built."""
        with pytest.raises(InstallmentError, match="Starting installment"):
            split(starting_installment=7)
        with pytest.raises(InstallmentError):
            split(starting_installment=0)

    def test_duplicate_categories_collapsed(self):
        """Test categories are distinct on the plan."""
        plan = split(category_ids=["tech", "home", "tech"])
        assert plan.category_ids == ["tech", "home"]

    def test_distinct_categories_keeps_order(self):
        """Test first-occurrence order is preserved."""
        assert distinct_categories(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


class TestExpenseFamily:
    """Tests for resolving installment families."""

    def test_child_resolves_whole_family(self):
        """Test any installment resolves parent plus every sibling."""
        plan = split()
        rows = plan.to_expenses()
        unrelated = Expense(user_id="user-1", amount=Decimal("5"), expense_date=date(2024, 6, 1))

        family = expense_family([*rows, unrelated], rows[3].id)

        assert {e.id for e in family} == {r.id for r in rows}

    def test_parent_resolves_whole_family(self):
        """Test the parent resolves itself and its children."""
        rows = split().to_expenses()
        assert len(expense_family(rows, rows[0].id)) == 7

    def test_plain_expense_is_its_own_family(self):
        """Test a plain expense resolves only itself."""
        expense = Expense(user_id="user-1", amount=Decimal("5"), expense_date=date(2024, 6, 1))
        assert expense_family([expense], expense.id) == [expense]

    def test_unknown_id(self):
        """Test an unknown id resolves nothing."""
        rows = split().to_expenses()
        assert expense_family(rows, Expense(
            user_id="user-1", amount=Decimal("1"), expense_date=date(2024, 6, 1)
        ).id) == []


class TestUpcomingInstallments:
    """Tests for the upcoming payments view."""

    def test_grouped_by_month(self):
        """Test future pending installments are grouped per month."""
        plan = split(installments=3, total_amount=Decimal("300"))
        upcoming = upcoming_installments(plan.to_expenses(), date(2024, 6, 20))

        assert [month.month_key for month in upcoming] == ["2024-07", "2024-08"]
        assert all(month.total == Decimal("100.00") for month in upcoming)
        assert all(len(month.expenses) == 1 for month in upcoming)

    def test_parent_and_paid_rows_excluded(self):
        """Test only pending children after today are listed."""
        plan = split(installments=2, total_amount=Decimal("200"), today=date(2024, 12, 1))
        assert upcoming_installments(plan.to_expenses(), date(2024, 12, 1)) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
