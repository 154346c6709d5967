"""
Tests for input validation and user-facing messages.
"""

import pytest
from datetime import date
from decimal import Decimal

from finledger.engine.installments import InstallmentError
from finledger.engine.month_close import MonthAlreadyClosedError
from finledger.models.ledger import Category
from finledger.models.month_close import CarriedOver, RegisteredAsExpense, StartedFresh
from finledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PartialWriteError,
    StorageError,
)
from finledger.validation.messages import GENERIC_MESSAGE, get_user_friendly_message
from finledger.validation.validator import LedgerValidationError, LedgerValidator


@pytest.fixture
def validator():
    return LedgerValidator()


@pytest.fixture
def categories():
    return [Category(id="food", name="Food"), Category(id="home", name="Home")]


def issue_types(result) -> list[str]:
    return [issue.issue_type for issue in result.issues]


class TestExpenseValidation:
    """Tests for single expenses."""

    def test_valid_expense(self, validator, categories):
        """Test a complete expense passes."""
        result = validator.validate_expense(
            Decimal("25.00"), date(2024, 6, 3), ["food"], categories
        )
        assert result.is_valid
        assert result.issues == []

    def test_zero_amount_rejected(self, validator):
        """Test amounts must be positive."""
        result = validator.validate_expense(Decimal("0"), date(2024, 6, 3))
        assert result.has_errors
        assert issue_types(result) == ["invalid_value"]

    def test_missing_fields(self, validator):
        """Test amount and date are both required."""
        result = validator.validate_expense(None, None)
        assert result.error_count == 2

    def test_large_amount_only_warns(self, validator):
        """Test suspicious amounts do not block the write."""
        result = validator.validate_expense(Decimal("999999999"), date(2024, 6, 3))
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_unknown_category_rejected(self, validator, categories):
        """Test categories must exist when the known list is given."""
        result = validator.validate_expense(
            Decimal("25.00"), date(2024, 6, 3), ["food", "travel"], categories
        )
        assert result.has_errors
        assert "travel" in result.issues[0].message

    def test_categories_unchecked_without_known_list(self, validator):
        """Test reference checks are skipped when no list is given."""
        result = validator.validate_expense(Decimal("25.00"), date(2024, 6, 3), ["anything"])
        assert result.is_valid

    def test_blank_category_id_rejected(self, validator):
        """Test empty category ids are malformed."""
        result = validator.validate_expense(Decimal("25.00"), date(2024, 6, 3), ["  "])
        assert result.has_errors

    def test_semantic_stage_skipped_on_schema_errors(self, validator, categories):
        """Test unknown categories are not reported when the amount is already wrong."""
        result = validator.validate_expense(Decimal("0"), date(2024, 6, 3), ["travel"], categories)
        assert issue_types(result) == ["invalid_value"]


class TestInstallmentValidation:
    """Tests for installment purchases."""

    def test_valid_purchase(self, validator):
        """Test a normal purchase passes."""
        result = validator.validate_installment_purchase(
            Decimal("600"), 6, starting_installment=2, first_date=date(2024, 6, 15)
        )
        assert result.is_valid

    def test_installments_out_of_range(self, validator):
        """Test the count must be between 1 and the configured maximum."""
        for count in (0, 121, None):
            result = validator.validate_installment_purchase(
                Decimal("600"), count, first_date=date(2024, 6, 15)
            )
            assert result.has_errors
            assert result.issues[0].field == "installments"

    def test_starting_installment_past_count(self, validator):
        """Test the current installment cannot exceed the count."""
        result = validator.validate_installment_purchase(
            Decimal("600"), 3, starting_installment=5, first_date=date(2024, 6, 15)
        )
        assert [issue.field for issue in result.issues] == ["starting_installment"]

    def test_missing_date(self, validator):
        """Test the installment date is required."""
        result = validator.validate_installment_purchase(Decimal("600"), 6)
        assert [issue.field for issue in result.issues] == ["first_date"]

    def test_small_total_accepted(self, validator):
        """Test a total under one cent per installment is still valid."""
        result = validator.validate_installment_purchase(
            Decimal("0.05"), 6, first_date=date(2024, 6, 15)
        )
        assert not result.has_errors


class TestIncomeAndServiceValidation:
    """Tests for incomes, services and payments."""

    def test_recurring_income_needs_day(self, validator):
        """Test recurring income without a day is rejected."""
        result = validator.validate_income(Decimal("1000"), is_recurring=True)
        assert result.has_errors

    def test_one_time_income_needs_date(self, validator):
        """Test one-time income without a date is rejected."""
        result = validator.validate_income(Decimal("1000"), is_recurring=False)
        assert result.issues[0].field == "income_date"

    def test_late_day_is_informational(self, validator):
        """Test day 31 is accepted with a note about short months."""
        result = validator.validate_income(Decimal("1000"), is_recurring=True, recurring_day=31)
        assert result.is_valid
        assert issue_types(result) == ["clamped_day"]
        assert result.issues[0].severity == "info"

    def test_service_requires_name_and_day(self, validator):
        """Test service name and due day are required."""
        result = validator.validate_service("  ", Decimal("50"), 0)
        assert result.error_count == 2

    def test_zero_estimate_warns(self, validator):
        """Test a zero estimate is allowed with a warning."""
        result = validator.validate_service("Streaming", Decimal("0"), 10)
        assert result.is_valid
        assert result.warnings == ["Estimated amount is zero"]

    def test_payment_may_be_zero_not_negative(self, validator):
        """Test waived payments are allowed, negative ones are not."""
        assert validator.validate_service_payment(Decimal("0")).is_valid
        assert validator.validate_service_payment(Decimal("-1")).has_errors


class TestMonthCloseValidation:
    """Tests for month-close choices."""

    def test_started_fresh_is_valid(self, validator):
        """Test starting fresh never fails."""
        assert validator.validate_month_close(StartedFresh()).issues == []

    def test_negative_amount_on_hand_rejected(self, validator):
        """Test the money the user still has cannot be negative."""
        result = validator.validate_month_close(
            RegisteredAsExpense(expense_amount=Decimal("10"), carryover_amount=Decimal("-5"))
        )
        assert result.has_errors

    def test_zero_adjustment_is_informational(self, validator):
        """Test registering zero spending is noted."""
        result = validator.validate_month_close(RegisteredAsExpense(expense_amount=Decimal("0")))
        assert result.is_valid
        assert issue_types(result) == ["no_effect"]

    def test_negative_carryover_warns(self, validator):
        """Test carrying a deficit forward warns."""
        result = validator.validate_month_close(CarriedOver(amount=Decimal("-20")))
        assert result.is_valid
        assert len(result.warnings) == 1


class TestReporting:
    """Tests for raising and summarising results."""

    def test_raise_for_errors(self, validator):
        """Test invalid results raise with every error message."""
        result = validator.validate_expense(None, None)
        with pytest.raises(LedgerValidationError, match="Invalid expense") as excinfo:
            validator.raise_for_errors(result)
        assert excinfo.value.result is result

    def test_raise_for_errors_passes_warnings(self, validator):
        """Test warnings do not raise."""
        result = validator.validate_service("Streaming", Decimal("0"), 10)
        assert validator.raise_for_errors(result) is result

    def test_summary_all_passed(self, validator):
        """Test the clean summary."""
        result = validator.validate_expense(Decimal("5"), date(2024, 6, 3))
        assert validator.get_user_friendly_summary(result) == "All checks passed."

    def test_summary_lists_errors_and_fixes(self, validator):
        """Test errors are listed with their suggested fixes."""
        result = validator.validate_expense(Decimal("0"), date(2024, 6, 3))
        summary = validator.get_user_friendly_summary(result)
        assert "Please fix the following:" in summary
        assert "Amount must be greater than zero" in summary
        assert "Enter a positive amount" in summary


class TestUserFriendlyMessages:
    """Tests for mapping errors to UI messages."""

    def test_validation_error(self, validator):
        """Test rejected input asks the user to fix fields."""
        error = LedgerValidationError(validator.validate_expense(None, None))
        assert get_user_friendly_message(error) == "Please complete all required fields correctly"

    def test_domain_errors(self):
        """Test engine errors have their own messages."""
        assert "split" in get_user_friendly_message(InstallmentError("bad"))
        assert "already been closed" in get_user_friendly_message(MonthAlreadyClosedError("x"))

    def test_storage_errors(self):
        """Test record-store errors map by type."""
        assert "Connection error" in get_user_friendly_message(ConnectionError("timeout"))
        assert get_user_friendly_message(DuplicateError("x")) == "This item already exists"
        assert get_user_friendly_message(NotFoundError("x"), "delete") == "This item no longer exists"
        assert "reload" in get_user_friendly_message(NotFoundError("x"))
        assert "partly saved" in get_user_friendly_message(PartialWriteError("x", []))

    def test_context_fallback(self):
        """Test unknown errors fall back to the context message."""
        message = get_user_friendly_message(StorageError("quota"), "installment")
        assert message == "Could not save the installment purchase. Please try again"

    def test_short_message_passed_through(self):
        """Test a short unexpected message is shown as is."""
        assert get_user_friendly_message(RuntimeError("Sheet is read-only")) == "Sheet is read-only"

    def test_long_message_hidden(self):
        """Test long technical messages are replaced."""
        assert get_user_friendly_message(RuntimeError("x" * 200)) == GENERIC_MESSAGE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
