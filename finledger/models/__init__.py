"""
Data Models Package

This package contains all Pydantic models used by finledger.
All data flowing through the ledger must conform to these schemas.
"""

from finledger.models.ledger import (
    Category,
    Expense,
    ExpenseStatus,
    FinancialType,
    Income,
    IncomeType,
    Installment,
    InstallmentPlan,
    RecurringFrequency,
    RecurringService,
    ServicePayment,
    ServicePaymentStatus,
    UserPreferences,
    ValidationIssue,
    ValidationResult,
)
from finledger.models.results import (
    BalanceSummary,
    CategoryTotal,
    Dashboard,
    FinancialTypeShare,
    IncomeBreakdown,
    IncomeExpansion,
    IncomeOccurrence,
    LedgerRecords,
    MonthComparison,
    MonthProjection,
    ObligationStatus,
    ObligationSummary,
    SpendingStatistics,
    UpcomingMonth,
)
from finledger.models.month_close import (
    CarriedOver,
    MonthCloseOutcome,
    MonthClosePrompt,
    MonthCloseTransition,
    MonthCloseTrigger,
    RegisteredAsExpense,
    StartedFresh,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "Category",
    "Expense",
    "ExpenseStatus",
    "FinancialType",
    "Income",
    "IncomeType",
    "Installment",
    "InstallmentPlan",
    "RecurringFrequency",
    "RecurringService",
    "ServicePayment",
    "ServicePaymentStatus",
    "UserPreferences",
    "ValidationIssue",
    "ValidationResult",
    # Result models
    "BalanceSummary",
    "CategoryTotal",
    "Dashboard",
    "FinancialTypeShare",
    "IncomeBreakdown",
    "IncomeExpansion",
    "IncomeOccurrence",
    "LedgerRecords",
    "MonthComparison",
    "MonthProjection",
    "ObligationStatus",
    "ObligationSummary",
    "SpendingStatistics",
    "UpcomingMonth",
    # Month close
    "CarriedOver",
    "MonthCloseOutcome",
    "MonthClosePrompt",
    "MonthCloseTransition",
    "MonthCloseTrigger",
    "RegisteredAsExpense",
    "StartedFresh",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
