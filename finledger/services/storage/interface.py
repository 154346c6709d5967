"""
Abstract Storage Interface

DESIGN DECISION: The record store is an external collaborator reached
only through async calls that may fail. This interface is the whole
contract the ledger relies on:
1. Reads return fully typed records (category links already resolved)
2. Each call is all-or-nothing at the record-store level
3. Nothing coordinates atomicity across calls; the orchestrator
   compensates when a later call of a multi-write fails

The interface is intentionally simple - we're not building a full ORM.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Category,
    Expense,
    Income,
    InstallmentPlan,
    RecurringService,
    ServicePayment,
    UserPreferences,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger record storage.
    
    Any record store (in-memory, Google Sheets, a hosted database)
    must implement these methods.
    """
    
    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------
    
    @abstractmethod
    async def list_expenses(self, user_id: str) -> list[Expense]:
        """All expense rows of a user, installment parents included."""
        pass
    
    @abstractmethod
    async def save_expense(self, expense: Expense) -> Expense:
        """
        Insert a single expense.
        
        Raises:
            DuplicateError: an expense with this id exists
            StorageError: the write failed
        """
        pass
    
    @abstractmethod
    async def update_expenses(self, expenses: list[Expense]) -> None:
        """
        Replace a batch of existing expense rows in one call.
        
        Raises:
            NotFoundError: any of the rows does not exist (nothing written)
        """
        pass
    
    @abstractmethod
    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        """Delete a batch of expense rows. Returns how many existed."""
        pass
    
    @abstractmethod
    async def save_installment_plan(self, plan: InstallmentPlan) -> InstallmentPlan:
        """
        Insert the parent row and every child row of a plan in one call.
        
        Either all rows are written or none are.
        """
        pass
    
    # ------------------------------------------------------------------
    # Incomes
    # ------------------------------------------------------------------
    
    @abstractmethod
    async def list_incomes(self, user_id: str) -> list[Income]:
        pass
    
    @abstractmethod
    async def save_income(self, income: Income) -> Income:
        pass
    
    @abstractmethod
    async def update_income(self, income: Income) -> Income:
        pass
    
    @abstractmethod
    async def delete_income(self, income_id: UUID) -> bool:
        pass
    
    # ------------------------------------------------------------------
    # Recurring services and their payments
    # ------------------------------------------------------------------
    
    @abstractmethod
    async def list_services(self, user_id: str) -> list[RecurringService]:
        pass
    
    @abstractmethod
    async def save_service(self, service: RecurringService) -> RecurringService:
        pass
    
    @abstractmethod
    async def update_service(self, service: RecurringService) -> RecurringService:
        pass
    
    @abstractmethod
    async def delete_service(self, service_id: UUID) -> bool:
        pass
    
    @abstractmethod
    async def list_service_payments(self, service_ids: list[UUID]) -> list[ServicePayment]:
        """Payment rows of the given services, any month."""
        pass
    
    @abstractmethod
    async def upsert_service_payment(self, payment: ServicePayment) -> ServicePayment:
        """
        Insert or replace the row for (service_id, month, year).
        
        Returns the stored row (an existing row keeps its id).
        """
        pass
    
    @abstractmethod
    async def delete_service_payment(self, service_id: UUID, month: int, year: int) -> bool:
        pass
    
    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    
    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        pass
    
    @abstractmethod
    async def increment_category_usage(self, user_id: str, category_ids: list[str]) -> None:
        """Add one to the usage counter of each listed category."""
        pass
    
    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    
    @abstractmethod
    async def get_preferences(self, user_id: str) -> UserPreferences:
        """Stored preferences, or defaults when the user has none yet."""
        pass
    
    @abstractmethod
    async def update_preferences(self, preferences: UserPreferences) -> UserPreferences:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.
    
    Audit logs are append-only - we never delete or modify them.
    """
    
    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.
        
        Returns:
            True if logged successfully
        """
        pass
    
    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one user action, in chronological order."""
        pass
    
    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """Most recent events (newest first), optionally for one user."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class PartialWriteError(StorageError):
    """
    A multi-record write failed part-way and could not be rolled back.
    
    The record store may now hold an inconsistent state; ``written``
    lists the ids that were left behind.
    """
    
    def __init__(self, message: str, written: Optional[list[UUID]] = None):
        super().__init__(message)
        self.written = written or []
