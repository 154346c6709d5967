"""
In-Memory Storage Implementation

Dictionary-backed record store used by the test suite and for local
runs without credentials. Every read and write copies the models so
callers can never mutate stored state behind the store's back, the same
as with a remote store.
"""

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
from finledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger storage held in process memory."""

    def __init__(self):
        self._expenses: dict[UUID, Expense] = {}
        self._incomes: dict[UUID, Income] = {}
        self._services: dict[UUID, RecurringService] = {}
        self._payments: dict[tuple[UUID, int, int], ServicePayment] = {}
        self._categories: dict[str, Category] = {}
        self._preferences: dict[str, UserPreferences] = {}

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True)

    # Expenses

    async def list_expenses(self, user_id: str) -> list[Expense]:
        rows = [self._copy(e) for e in self._expenses.values() if e.user_id == user_id]
        rows.sort(key=lambda e: e.expense_date, reverse=True)
        return rows

    async def save_expense(self, expense: Expense) -> Expense:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense {expense.id} already exists")
        self._expenses[expense.id] = self._copy(expense)
        return self._copy(expense)

    async def update_expenses(self, expenses: list[Expense]) -> None:
        missing = [e.id for e in expenses if e.id not in self._expenses]
        if missing:
            raise NotFoundError(f"Expenses not found: {missing}")
        for expense in expenses:
            self._expenses[expense.id] = self._copy(expense)

    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        deleted = 0
        for expense_id in expense_ids:
            if self._expenses.pop(expense_id, None) is not None:
                deleted += 1
        return deleted

    async def save_installment_plan(self, plan: InstallmentPlan) -> InstallmentPlan:
        rows = plan.to_expenses()
        clashes = [row.id for row in rows if row.id in self._expenses]
        if clashes:
            raise DuplicateError(f"Expenses already exist: {clashes}")
        for row in rows:
            self._expenses[row.id] = row
        return self._copy(plan)

    # Incomes

    async def list_incomes(self, user_id: str) -> list[Income]:
        return [self._copy(i) for i in self._incomes.values() if i.user_id == user_id]

    async def save_income(self, income: Income) -> Income:
        if income.id in self._incomes:
            raise DuplicateError(f"Income {income.id} already exists")
        self._incomes[income.id] = self._copy(income)
        return self._copy(income)

    async def update_income(self, income: Income) -> Income:
        if income.id not in self._incomes:
            raise NotFoundError(f"Income {income.id} not found")
        self._incomes[income.id] = self._copy(income)
        return self._copy(income)

    async def delete_income(self, income_id: UUID) -> bool:
        return self._incomes.pop(income_id, None) is not None

    # Services

    async def list_services(self, user_id: str) -> list[RecurringService]:
        rows = [self._copy(s) for s in self._services.values() if s.user_id == user_id]
        rows.sort(key=lambda s: s.name)
        return rows

    async def save_service(self, service: RecurringService) -> RecurringService:
        if service.id in self._services:
            raise DuplicateError(f"Service {service.id} already exists")
        self._services[service.id] = self._copy(service)
        return self._copy(service)

    async def update_service(self, service: RecurringService) -> RecurringService:
        if service.id not in self._services:
            raise NotFoundError(f"Service {service.id} not found")
        self._services[service.id] = self._copy(service)
        return self._copy(service)

    async def delete_service(self, service_id: UUID) -> bool:
        return self._services.pop(service_id, None) is not None

    async def list_service_payments(self, service_ids: list[UUID]) -> list[ServicePayment]:
        wanted = set(service_ids)
        return [self._copy(p) for p in self._payments.values() if p.service_id in wanted]

    async def upsert_service_payment(self, payment: ServicePayment) -> ServicePayment:
        existing = self._payments.get(payment.key)
        stored = payment if existing is None else payment.model_copy(update={"id": existing.id})
        self._payments[payment.key] = self._copy(stored)
        return self._copy(stored)

    async def delete_service_payment(self, service_id: UUID, month: int, year: int) -> bool:
        return self._payments.pop((service_id, month, year), None) is not None

    # Categories

    def add_category(self, category: Category) -> None:
        """Seed a category (categories are managed outside the ledger)."""
        self._categories[category.id] = self._copy(category)

    async def list_categories(self, user_id: str) -> list[Category]:
        return [
            self._copy(c) for c in self._categories.values()
            if c.user_id in (None, user_id)
        ]

    async def increment_category_usage(self, user_id: str, category_ids: list[str]) -> None:
        missing = [c for c in category_ids if c not in self._categories]
        if missing:
            raise NotFoundError(f"Categories not found: {missing}")
        for category_id in category_ids:
            category = self._categories[category_id]
            self._categories[category_id] = category.model_copy(
                update={"usage_count": category.usage_count + 1}
            )

    # Preferences

    async def get_preferences(self, user_id: str) -> UserPreferences:
        stored = self._preferences.get(user_id)
        if stored is None:
            return UserPreferences(user_id=user_id)
        return self._copy(stored)

    async def update_preferences(self, preferences: UserPreferences) -> UserPreferences:
        self._preferences[preferences.user_id] = self._copy(preferences)
        return self._copy(preferences)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if user_id is None or e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
