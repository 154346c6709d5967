"""
Ledger Input Validation

DESIGN DECISION: Every user input is validated before anything is
written. Validation runs in two stages:

STAGE 1 - SCHEMA VALIDATION:
- Required values present
- Amounts positive, counts and days within range
- Category references well formed

STAGE 2 - SEMANTIC VALIDATION:
- Suspiciously large amounts
- Category references that point nowhere
- Month-close choices that do nothing

Stage 2 only runs when stage 1 found no errors. Errors block the write;
warnings are reported and the write may go ahead.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from finledger.config import get_settings
from finledger.models.ledger import Category, ValidationIssue, ValidationResult
from finledger.models.month_close import (
    CarriedOver,
    MonthCloseOutcome,
    RegisteredAsExpense,
)


class LedgerValidationError(ValueError):
    """Input rejected before any write. Carries the full validation result."""
    
    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Invalid {result.subject.replace('_', ' ')}: {messages}")


def _finish(subject: str, schema_issues: list[ValidationIssue], semantic) -> ValidationResult:
    issues = list(schema_issues)
    if not any(issue.severity == "error" for issue in issues):
        issues.extend(semantic())
    return ValidationResult(subject=subject, issues=issues)


class LedgerValidator:
    """
    Validates ledger inputs through a two-stage pipeline.
    
    All checks are synchronous and need no storage access. Known
    categories are passed in by the caller when reference checks are
    wanted.
    """
    
    def __init__(self):
        self._settings = get_settings().ledger
    
    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------
    
    def _amount_issues(self, field: str, amount: Optional[Decimal]) -> list[ValidationIssue]:
        if amount is None:
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message="Amount is required",
                severity="error",
                suggested_fix="Enter the amount",
            )]
        if Decimal(amount) <= 0:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter a positive amount",
            )]
        return []
    
    def _suspicious_amount_issues(self, field: str, amount: Decimal) -> list[ValidationIssue]:
        max_amount = Decimal(str(self._settings.max_expense_amount))
        if Decimal(amount) > max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({Decimal(amount):,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            )]
        return []
    
    @staticmethod
    def _category_schema_issues(category_ids: Iterable[str]) -> list[ValidationIssue]:
        malformed = [c for c in category_ids if not isinstance(c, str) or not c.strip()]
        if malformed:
            return [ValidationIssue(
                field="category_ids",
                issue_type="invalid_value",
                message="Category references must be non-empty ids",
                severity="error",
                suggested_fix="Pick categories from the list",
            )]
        return []
    
    @staticmethod
    def _category_reference_issues(
        category_ids: Iterable[str],
        known_categories: Optional[Iterable[Category]],
    ) -> list[ValidationIssue]:
        if known_categories is None:
            return []
        known = {c.id for c in known_categories}
        unknown = [c for c in category_ids if c not in known]
        if unknown:
            return [ValidationIssue(
                field="category_ids",
                issue_type="unknown_reference",
                message=f"Unknown categories: {', '.join(unknown)}",
                severity="error",
                suggested_fix="Pick categories from the list",
            )]
        return []
    
    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    
    def validate_expense(
        self,
        amount: Optional[Decimal],
        expense_date: Optional[date],
        category_ids: Iterable[str] = (),
        known_categories: Optional[Iterable[Category]] = None,
    ) -> ValidationResult:
        """Validate a single (non-installment) expense."""
        category_ids = list(category_ids)
        issues = self._amount_issues("amount", amount)
        if expense_date is None:
            issues.append(ValidationIssue(
                field="expense_date",
                issue_type="missing",
                message="Expense date is required",
                severity="error",
            ))
        issues.extend(self._category_schema_issues(category_ids))
        
        def semantic():
            return [
                *self._suspicious_amount_issues("amount", amount),
                *self._category_reference_issues(category_ids, known_categories),
            ]
        
        return _finish("expense", issues, semantic)
    
    def validate_installment_purchase(
        self,
        total_amount: Optional[Decimal],
        installments: Optional[int],
        starting_installment: int = 1,
        first_date: Optional[date] = None,
        category_ids: Iterable[str] = (),
        known_categories: Optional[Iterable[Category]] = None,
    ) -> ValidationResult:
        """
        Validate an installment purchase.
        
        Checks:
        - Purchase total positive
        - 1 <= installments <= configured maximum
        - 1 <= starting installment <= installments
        - First installment date present
        """
        category_ids = list(category_ids)
        issues = self._amount_issues("total_amount", total_amount)
        
        max_installments = self._settings.max_installments
        if installments is None or not 1 <= installments <= max_installments:
            issues.append(ValidationIssue(
                field="installments",
                issue_type="invalid_value",
                message=f"Installments must be between 1 and {max_installments}",
                severity="error",
                suggested_fix="Enter how many installments the purchase is split into",
            ))
        elif not 1 <= starting_installment <= installments:
            issues.append(ValidationIssue(
                field="starting_installment",
                issue_type="invalid_value",
                message=f"Current installment must be between 1 and {installments}",
                severity="error",
                suggested_fix="Enter the installment you are paying now",
            ))
        
        if first_date is None:
            issues.append(ValidationIssue(
                field="first_date",
                issue_type="missing",
                message="Installment date is required",
                severity="error",
            ))
        issues.extend(self._category_schema_issues(category_ids))
        
        def semantic():
            return [
                *self._suspicious_amount_issues("total_amount", total_amount),
                *self._category_reference_issues(category_ids, known_categories),
            ]
        
        return _finish("installment_purchase", issues, semantic)
    
    def validate_categories(
        self,
        category_ids: Iterable[str],
        known_categories: Optional[Iterable[Category]] = None,
    ) -> ValidationResult:
        """Validate a category change on an existing expense."""
        category_ids = list(category_ids)
        return _finish(
            "category_update",
            self._category_schema_issues(category_ids),
            lambda: self._category_reference_issues(category_ids, known_categories),
        )
    
    def validate_income(
        self,
        amount: Optional[Decimal],
        is_recurring: bool,
        recurring_day: Optional[int] = None,
        income_date: Optional[date] = None,
    ) -> ValidationResult:
        issues = self._amount_issues("amount", amount)
        if is_recurring:
            if recurring_day is None or not 1 <= recurring_day <= 31:
                issues.append(ValidationIssue(
                    field="recurring_day",
                    issue_type="invalid_value",
                    message="Recurring income needs a day of month between 1 and 31",
                    severity="error",
                ))
        elif income_date is None:
            issues.append(ValidationIssue(
                field="income_date",
                issue_type="missing",
                message="One-time income needs a date",
                severity="error",
            ))
        
        def semantic():
            issues = self._suspicious_amount_issues("amount", amount)
            if is_recurring and recurring_day is not None and recurring_day > 28:
                issues.append(ValidationIssue(
                    field="recurring_day",
                    issue_type="clamped_day",
                    message=(
                        f"Day {recurring_day} does not exist in every month; "
                        "shorter months use their last day"
                    ),
                    severity="info",
                ))
            return issues
        
        return _finish("income", issues, semantic)
    
    def validate_service(
        self,
        name: Optional[str],
        estimated_amount: Optional[Decimal],
        day_of_month: Optional[int],
    ) -> ValidationResult:
        issues = []
        if not name or not name.strip():
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Service name is required",
                severity="error",
            ))
        if estimated_amount is None or Decimal(estimated_amount) < 0:
            issues.append(ValidationIssue(
                field="estimated_amount",
                issue_type="invalid_value",
                message="Estimated amount cannot be negative",
                severity="error",
            ))
        if day_of_month is None or not 1 <= day_of_month <= 31:
            issues.append(ValidationIssue(
                field="day_of_month",
                issue_type="invalid_value",
                message="Due day must be between 1 and 31",
                severity="error",
            ))
        
        def semantic():
            if estimated_amount is not None and Decimal(estimated_amount) == 0:
                return [ValidationIssue(
                    field="estimated_amount",
                    issue_type="suspicious_value",
                    message="Estimated amount is zero",
                    severity="warning",
                    suggested_fix="Enter the usual monthly amount",
                )]
            return []
        
        return _finish("service", issues, semantic)
    
    def validate_service_payment(self, amount: Optional[Decimal]) -> ValidationResult:
        """A service payment may be zero (waived) but never negative."""
        issues = []
        if amount is None or Decimal(amount) < 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Paid amount cannot be negative",
                severity="error",
            ))
        return _finish("service_payment", issues, list)
    
    def validate_month_close(self, outcome: MonthCloseOutcome) -> ValidationResult:
        """
        Validate a month-close choice.
        
        The amount the user still has may exceed the tracked remainder;
        only a negative amount on hand is rejected.
        """
        issues = []
        if isinstance(outcome, RegisteredAsExpense) and outcome.carryover_amount < 0:
            issues.append(ValidationIssue(
                field="carryover_amount",
                issue_type="invalid_value",
                message="The amount you still have cannot be negative",
                severity="error",
                suggested_fix="Enter 0 if nothing is left",
            ))
        
        def semantic():
            if isinstance(outcome, RegisteredAsExpense) and outcome.expense_amount == 0:
                return [ValidationIssue(
                    field="expense_amount",
                    issue_type="no_effect",
                    message="No unregistered spending; no adjustment expense will be created",
                    severity="info",
                )]
            if isinstance(outcome, CarriedOver) and outcome.amount < 0:
                return [ValidationIssue(
                    field="amount",
                    issue_type="negative_carryover",
                    message="Carrying over a deficit lowers next month's balance",
                    severity="warning",
                )]
            return []
        
        return _finish("month_close", issues, semantic)
    
    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    
    @staticmethod
    def raise_for_errors(result: ValidationResult) -> ValidationResult:
        """Raise LedgerValidationError when the result has errors."""
        if result.has_errors:
            raise LedgerValidationError(result)
        return result
    
    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        
        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."
        
        lines = []
        
        if result.has_errors:
            lines.append("Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")
        
        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")
        
        return "\n".join(lines)
