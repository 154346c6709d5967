"""
Month-Close Models

The three ways to close a month are a tagged union discriminated on
``kind``. Each outcome is independently constructible and testable; the
transition function in finledger.engine.month_close consumes them.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from finledger.models.ledger import Expense, UserPreferences


class MonthCloseTrigger(str, Enum):
    """What should happen when a session starts."""
    NOT_NEEDED = "not_needed"              # already closed this month
    PROMPT = "prompt"                      # ask the user to pick an outcome
    AUTO_START_FRESH = "auto_start_fresh"  # no income configured, close silently


class CarriedOver(BaseModel):
    """Roll the remainder of the prior month into this month's income."""
    kind: Literal["carried_over"] = "carried_over"
    amount: Decimal = Field(..., decimal_places=2)


class RegisteredAsExpense(BaseModel):
    """
    The user spent more than they tracked.

    expense_amount becomes an adjustment expense on the last day of the
    prior month; carryover_amount is what they actually still have.
    """
    kind: Literal["registered_as_expense"] = "registered_as_expense"
    expense_amount: Decimal = Field(..., ge=0, decimal_places=2)
    carryover_amount: Decimal = Field(default=Decimal("0"), decimal_places=2)


class StartedFresh(BaseModel):
    """Discard any remainder."""
    kind: Literal["started_fresh"] = "started_fresh"


MonthCloseOutcome = Annotated[
    Union[CarriedOver, RegisteredAsExpense, StartedFresh],
    Field(discriminator="kind"),
]


class MonthClosePrompt(BaseModel):
    """Data shown to the user when a close decision is needed."""

    trigger: MonthCloseTrigger
    current_month_key: str
    previous_month_key: str
    remaining_balance: Decimal = Decimal("0")


class MonthCloseTransition(BaseModel):
    """Result of applying an outcome: new state plus the records to write."""

    closed_month_key: str
    outcome: MonthCloseOutcome
    preferences: UserPreferences
    adjustment_expense: Optional[Expense] = None
