"""
Computed Result Models

Everything the engine returns. These are read-only views over records:
nothing here is ever written back to the record store.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from finledger.models.ledger import (
    Expense,
    FinancialType,
    Income,
    RecurringService,
    ServicePayment,
    UserPreferences,
)


ZERO = Decimal("0")


# =============================================================================
# RECURRENCE
# =============================================================================

class IncomeOccurrence(BaseModel):
    """One scheduled receipt of an income within a month."""

    occurs_on: date
    amount: Decimal
    is_confirmed: bool


class IncomeExpansion(BaseModel):
    """Occurrences of a single income definition in one month."""

    income_id: UUID
    occurrences: list[IncomeOccurrence] = Field(default_factory=list)
    confirmed: Decimal = ZERO
    pending: Decimal = ZERO
    total: Decimal = ZERO


class IncomeBreakdown(BaseModel):
    """Income of all definitions for one month."""

    year: int
    month: int
    confirmed: Decimal = ZERO
    pending: Decimal = ZERO
    total: Decimal = ZERO
    expansions: list[IncomeExpansion] = Field(default_factory=list)


# =============================================================================
# OBLIGATIONS
# =============================================================================

class ObligationStatus(BaseModel):
    """State of one recurring service in one month."""

    service: RecurringService
    payment: Optional[ServicePayment] = None
    due_date: date
    is_paid: bool
    amount: Decimal = Field(
        ...,
        description="Recorded amount when paid, estimated amount otherwise"
    )
    is_overdue: bool = False


class ObligationSummary(BaseModel):
    """Paid/pending totals of all active services for one month."""

    year: int
    month: int
    paid_total: Decimal = ZERO
    pending_total: Decimal = ZERO
    total: Decimal = ZERO
    statuses: list[ObligationStatus] = Field(default_factory=list)

    @property
    def overdue(self) -> list[ObligationStatus]:
        return [s for s in self.statuses if s.is_overdue]

    @property
    def pending(self) -> list[ObligationStatus]:
        return [s for s in self.statuses if not s.is_paid]


# =============================================================================
# BALANCE & PROJECTION
# =============================================================================

class BalanceSummary(BaseModel):
    """
    Running balance of the month.

    balance = confirmed income + carryover - expenses - pending obligations
    """

    year: int
    month: int
    confirmed_income: Decimal
    pending_income: Decimal
    carryover: Decimal
    total_income: Decimal
    total_expenses: Decimal
    total_fixed: Decimal
    total_variable: Decimal
    gross_balance: Decimal
    pending_recurring: Decimal
    paid_recurring: Decimal
    total_recurring: Decimal
    balance: Decimal
    days_remaining: int
    available_daily: Decimal


class MonthProjection(BaseModel):
    """Linear extrapolation of this month's spend to month end."""

    year: int
    month: int
    total_expenses: Decimal
    total_fixed: Decimal
    total_variable: Decimal
    previous_month_total: Decimal
    change_from_last_month: Decimal = Field(
        ...,
        description="Percentage delta versus the previous month's total"
    )
    weekly_average: Decimal
    days_passed: int
    days_remaining: int
    daily_variable_average: Decimal
    projected_variables: Decimal
    projected_fixed: Decimal
    projected_balance: Decimal


# =============================================================================
# STATISTICS
# =============================================================================

class FinancialTypeShare(BaseModel):
    """Spend of one budget pillar against its 50/30/20 target."""

    financial_type: FinancialType
    amount: Decimal
    percentage: Decimal
    ideal_percentage: int


class CategoryTotal(BaseModel):
    category_id: str
    amount: Decimal
    percentage: Decimal


class MonthComparison(BaseModel):
    month_key: str
    income: Decimal
    expenses: Decimal


class UpcomingMonth(BaseModel):
    """Scheduled installments falling in one future month."""

    month_key: str
    total: Decimal
    expenses: list[Expense] = Field(default_factory=list)


# =============================================================================
# FLOW RESULTS
# =============================================================================

class LedgerRecords(BaseModel):
    """Everything loaded from the record store for one user."""

    user_id: str
    expenses: list[Expense] = Field(default_factory=list)
    incomes: list[Income] = Field(default_factory=list)
    services: list[RecurringService] = Field(default_factory=list)
    payments: list[ServicePayment] = Field(default_factory=list)
    preferences: UserPreferences

    @property
    def has_income(self) -> bool:
        return bool(self.incomes)


class SpendingStatistics(BaseModel):
    """Statistics of one date range."""

    start: date
    end: date
    total_expenses: Decimal
    distribution: list[FinancialTypeShare] = Field(default_factory=list)
    top_categories: list[CategoryTotal] = Field(default_factory=list)
    comparison: list[MonthComparison] = Field(default_factory=list)


class Dashboard(BaseModel):
    """Everything the home screen shows for today's month."""

    today: date
    income: IncomeBreakdown
    obligations: ObligationSummary
    balance: BalanceSummary
    projection: MonthProjection
    statistics: SpendingStatistics
    upcoming_installments: list[UpcomingMonth] = Field(default_factory=list)
