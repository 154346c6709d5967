"""
Core Record Models for finledger

These models define the strict schemas for every record the ledger reads
from or writes to the record store. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep the installment family consistent by construction

DESIGN DECISION: Money is Decimal with two decimal places everywhere.
Floats never enter the engine.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class FinancialType(str, Enum):
    """
    Budget pillar of an expense, used for 50/30/20-style analysis.
    """
    NEEDS = "needs"
    WANTS = "wants"
    SAVINGS = "savings"
    UNCLASSIFIED = "unclassified"


class ExpenseStatus(str, Enum):
    """Payment status of an expense row."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class IncomeType(str, Enum):
    """Kind of income."""
    SALARY = "salary"
    FREELANCE = "freelance"
    BONUS = "bonus"
    INVESTMENT = "investment"
    RENTAL = "rental"
    OTHER = "other"


class RecurringFrequency(str, Enum):
    """How often a recurring income is received."""
    MONTHLY = "monthly"
    BIWEEKLY = "biweekly"
    WEEKLY = "weekly"


class ServicePaymentStatus(str, Enum):
    """
    Stored status of a service payment row.
    
    Only PAID rows count as paid. Overdue is normally derived, never
    trusted from storage.
    """
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


# =============================================================================
# CATEGORIES
# =============================================================================

class Category(BaseModel):
    """A user-defined expense category."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: str = Field(..., min_length=1, max_length=64)
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    financial_type: Optional[FinancialType] = None
    usage_count: int = Field(default=0, ge=0)


# =============================================================================
# EXPENSES
# =============================================================================

class Expense(BaseModel):
    """
    A single expense row as stored in the record store.
    
    Installment purchases are stored as one parent row (metadata only,
    amount 0) plus one child row per installment. In memory the family
    is handled through InstallmentPlan; this model only guards the
    per-row shape of the invariant.
    """
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount of this row (0 for installment parents)"
    )
    description: str = Field(default="", max_length=500)
    expense_date: date = Field(..., description="When the expense occurs")
    financial_type: FinancialType = FinancialType.UNCLASSIFIED
    status: ExpenseStatus = ExpenseStatus.PAID
    category_ids: list[str] = Field(default_factory=list)
    
    # Optional links
    service_id: Optional[UUID] = Field(
        default=None,
        description="Recurring service this expense pays"
    )
    debt_id: Optional[str] = None
    payment_group_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    
    # Installment family
    is_parent: bool = False
    total_amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    installments: Optional[int] = Field(default=None, ge=1)
    parent_expense_id: Optional[UUID] = None
    installment_number: Optional[int] = Field(default=None, ge=1)
    
    @model_validator(mode='after')
    def validate_installment_shape(self) -> 'Expense':
        """A row is either a parent, a child, or a plain expense."""
        if self.is_parent:
            if self.amount != 0:
                raise ValueError("Installment parent must have amount 0")
            if self.total_amount is None or self.installments is None:
                raise ValueError("Installment parent needs total_amount and installments")
            if self.parent_expense_id is not None:
                raise ValueError("Installment parent cannot have a parent")
        if self.parent_expense_id is not None:
            if self.installment_number is None:
                raise ValueError("Installment child needs an installment_number")
            if self.installments is not None and self.installment_number > self.installments:
                raise ValueError("installment_number cannot exceed installments")
        return self
    
    @property
    def is_installment(self) -> bool:
        return self.parent_expense_id is not None
    
    @property
    def is_fixed(self) -> bool:
        """Fixed expenses pay a recurring service."""
        return self.service_id is not None
    
    @property
    def family_id(self) -> Optional[UUID]:
        """ID of the installment family this row belongs to, if any."""
        if self.is_parent:
            return self.id
        return self.parent_expense_id


class Installment(BaseModel):
    """One scheduled payment of an installment plan."""
    
    id: UUID = Field(default_factory=uuid4)
    number: int = Field(..., ge=1)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_date: date
    status: ExpenseStatus = ExpenseStatus.PENDING


class InstallmentPlan(BaseModel):
    """
    An installment purchase as a single aggregate.
    
    The plan owns its installments; the record-store parent row and the
    child rows are projections of it (see to_expenses/from_expenses).
    There is no way to build a plan with missing or duplicated
    installments, so an orphaned parent or child cannot be expressed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: UUID = Field(
        default_factory=uuid4,
        description="Also the id of the parent expense row"
    )
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    
    description: str = Field(default="", max_length=500)
    total_amount: Decimal = Field(..., gt=0, decimal_places=2)
    installments: int = Field(..., ge=1)
    first_installment_date: date
    financial_type: FinancialType = FinancialType.UNCLASSIFIED
    category_ids: list[str] = Field(default_factory=list)
    credit_card_id: Optional[str] = None
    payment_group_id: Optional[str] = None
    debt_id: Optional[str] = None
    
    items: list[Installment] = Field(default_factory=list)
    
    @model_validator(mode='after')
    def validate_items(self) -> 'InstallmentPlan':
        """Installments are numbered 1..N exactly once, in order."""
        numbers = [item.number for item in self.items]
        if numbers != list(range(1, self.installments + 1)):
            raise ValueError(
                f"Plan with {self.installments} installments has items numbered {numbers}"
            )
        return self
    
    @property
    def installment_total(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0"))
    
    @property
    def rounding_drift(self) -> Decimal:
        """Difference between the sum of installments and the purchase total."""
        return self.installment_total - self.total_amount
    
    def parent_expense(self) -> Expense:
        return Expense(
            id=self.id,
            user_id=self.user_id,
            created_at=self.created_at,
            amount=Decimal("0"),
            description=self.description,
            expense_date=self.first_installment_date,
            financial_type=self.financial_type,
            status=ExpenseStatus.PAID,
            category_ids=list(self.category_ids),
            credit_card_id=self.credit_card_id,
            payment_group_id=self.payment_group_id,
            debt_id=self.debt_id,
            is_parent=True,
            total_amount=self.total_amount,
            installments=self.installments,
        )
    
    def child_expenses(self) -> list[Expense]:
        return [
            Expense(
                id=item.id,
                user_id=self.user_id,
                created_at=self.created_at,
                amount=item.amount,
                description=self.description,
                expense_date=item.due_date,
                financial_type=self.financial_type,
                status=item.status,
                category_ids=list(self.category_ids),
                credit_card_id=self.credit_card_id,
                payment_group_id=self.payment_group_id,
                debt_id=self.debt_id,
                installments=self.installments,
                parent_expense_id=self.id,
                installment_number=item.number,
            )
            for item in self.items
        ]
    
    def to_expenses(self) -> list[Expense]:
        """Flatten to record-store rows, parent first."""
        return [self.parent_expense(), *self.child_expenses()]
    
    @classmethod
    def from_expenses(cls, parent: Expense, children: list[Expense]) -> 'InstallmentPlan':
        """
        Rebuild the aggregate from stored rows.
        
        Raises ValueError when the rows do not form a complete family.
        """
        if not parent.is_parent:
            raise ValueError(f"Expense {parent.id} is not an installment parent")
        stray = [c.id for c in children if c.parent_expense_id != parent.id]
        if stray:
            raise ValueError(f"Expenses {stray} do not belong to plan {parent.id}")
        
        ordered = sorted(children, key=lambda c: c.installment_number or 0)
        first_date = ordered[0].expense_date if ordered else parent.expense_date
        return cls(
            id=parent.id,
            user_id=parent.user_id,
            created_at=parent.created_at,
            description=parent.description,
            total_amount=parent.total_amount,
            installments=parent.installments,
            first_installment_date=first_date,
            financial_type=parent.financial_type,
            category_ids=list(parent.category_ids),
            credit_card_id=parent.credit_card_id,
            payment_group_id=parent.payment_group_id,
            debt_id=parent.debt_id,
            items=[
                Installment(
                    id=child.id,
                    number=child.installment_number,
                    amount=child.amount,
                    due_date=child.expense_date,
                    status=child.status,
                )
                for child in ordered
            ],
        )


# =============================================================================
# INCOME
# =============================================================================

class Income(BaseModel):
    """
    An income definition.
    
    Either one-time (income_date) or recurring (recurring_day plus
    frequency). Recurring incomes never end.
    """
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(default="", max_length=500)
    income_type: IncomeType = IncomeType.OTHER
    
    income_date: Optional[date] = None
    is_recurring: bool = False
    recurring_day: Optional[int] = Field(default=None, ge=1, le=31)
    recurring_frequency: RecurringFrequency = RecurringFrequency.MONTHLY
    
    @model_validator(mode='after')
    def validate_schedule(self) -> 'Income':
        if self.is_recurring and self.recurring_day is None:
            raise ValueError("Recurring income needs a recurring_day")
        if not self.is_recurring and self.income_date is None:
            raise ValueError("One-time income needs an income_date")
        return self


# =============================================================================
# RECURRING OBLIGATIONS
# =============================================================================

class RecurringService(BaseModel):
    """A fixed monthly obligation (rent, subscription, utility)."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    
    name: str = Field(..., min_length=1, max_length=200)
    estimated_amount: Decimal = Field(..., ge=0, decimal_places=2)
    day_of_month: int = Field(..., ge=1, le=31)
    category_id: Optional[str] = None
    is_active: bool = True


class ServicePayment(BaseModel):
    """
    Month-specific state of a recurring service.
    
    Keyed by (service_id, month, year). A missing row means the service
    has not been paid that month.
    """
    
    id: UUID = Field(default_factory=uuid4)
    service_id: UUID
    expense_id: Optional[UUID] = None
    payment_date: date
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    status: ServicePaymentStatus = ServicePaymentStatus.PAID
    created_at: datetime = Field(default_factory=utcnow)
    
    @property
    def key(self) -> tuple[UUID, int, int]:
        return (self.service_id, self.month, self.year)
    
    @property
    def is_paid(self) -> bool:
        return self.status == ServicePaymentStatus.PAID


# =============================================================================
# PREFERENCES (month-close state)
# =============================================================================

class UserPreferences(BaseModel):
    """
    Month-close state of a user.
    
    Only the month-close state machine writes these two fields.
    """
    
    user_id: str = Field(..., min_length=1)
    last_closed_month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$",
        description="Year-month key (YYYY-MM) of the last closed month"
    )
    carryover_amount: Decimal = Field(default=Decimal("0"), decimal_places=2)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""
    
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of validating one ledger input before any write."""
    
    validated_at: datetime = Field(default_factory=utcnow)
    subject: str = Field(
        ...,
        description="What was validated (e.g., 'expense', 'installment_purchase')"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)
    
    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)
    
    @property
    def is_valid(self) -> bool:
        return not self.has_errors
    
    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
    
    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
