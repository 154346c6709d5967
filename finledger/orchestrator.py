"""
Main Orchestrator for finledger

This module ties the pure engine to the record store and defines the
end-to-end flows for:
1. Expenses (plain and installment purchases)
2. Incomes
3. Recurring obligations (services, mark/unmark paid)
4. Dashboard (balance, projection, statistics)
5. Month close

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every input is validated before anything is written
- The engine only ever sees records that were loaded first
- Multi-record writes are compensated when a later write fails
- Every write is audited

"today" is always a parameter. Nothing in here reads the clock.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, NamedTuple, Optional
from uuid import UUID

import structlog

from finledger.audit import AuditLogger, create_correlation_id
from finledger.config import get_settings
from finledger.engine import (
    apply_month_close,
    calculate_balance,
    category_totals,
    distinct_categories,
    evaluate_month_close,
    expense_family,
    expenses_in_range,
    find_payment,
    financial_type_distribution,
    month_end_remaining,
    monthly_comparison,
    monthly_income_breakdown,
    previous_month_key,
    project_month,
    split_installments,
    summarize_obligations,
    upcoming_installments,
)
from finledger.engine.periods import ZERO, first_day, last_day, month_key, parse_month_key, to_money
from finledger.models.audit import AuditEventType
from finledger.models.ledger import (
    Category,
    Expense,
    ExpenseStatus,
    FinancialType,
    Income,
    IncomeType,
    InstallmentPlan,
    RecurringFrequency,
    RecurringService,
    ServicePayment,
    ServicePaymentStatus,
    ValidationResult,
)
from finledger.models.month_close import (
    MonthCloseOutcome,
    MonthClosePrompt,
    MonthCloseTransition,
    MonthCloseTrigger,
    StartedFresh,
)
from finledger.models.results import (
    Dashboard,
    IncomeBreakdown,
    LedgerRecords,
    ObligationSummary,
    SpendingStatistics,
)
from finledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    PartialWriteError,
)
from finledger.validation import LedgerValidationError, LedgerValidator


logger = structlog.get_logger("finledger.orchestrator")


class _Flow:
    """Shared plumbing: storage, validation and audit of every flow."""
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or LedgerValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = get_settings().ledger
    
    async def _require_valid(
        self,
        result: ValidationResult,
        user_id: Optional[str],
        correlation_id: UUID,
    ) -> ValidationResult:
        """Audit and raise when validation found errors."""
        if result.has_errors:
            await self._audit_logger.log_validation_failed(
                subject=result.subject,
                issues=[issue.model_dump() for issue in result.issues],
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise LedgerValidationError(result)
        return result
    
    async def _known_categories(
        self,
        user_id: str,
        category_ids: Iterable[str],
    ) -> Optional[list[Category]]:
        # Only hit the store when there is something to check
        if not list(category_ids):
            return None
        return await self._storage.list_categories(user_id)
    
    async def _compensate(
        self,
        operation: str,
        error: Exception,
        undo: Callable[[], Awaitable[object]],
        written: list[UUID],
        correlation_id: UUID,
    ) -> None:
        """
        Roll back the writes of a failed multi-record operation.
        
        Returns normally when the rollback succeeded so the caller can
        re-raise the original error.
        
        Raises:
            PartialWriteError: the rollback failed as well
        """
        details = {
            "written": [str(i) for i in written],
            "original_error": str(error),
        }
        try:
            await undo()
        except Exception as undo_error:
            await self._audit_logger.log_compensation(
                succeeded=False,
                operation=operation,
                error_message=str(undo_error),
                details=details,
                correlation_id=correlation_id,
            )
            raise PartialWriteError(
                f"{operation} failed and could not be rolled back: {undo_error}",
                written=written,
            ) from error
        
        await self._audit_logger.log_compensation(
            succeeded=True,
            operation=operation,
            error_message=str(error),
            details=details,
            correlation_id=correlation_id,
        )


class ExpenseFlow(_Flow):
    """
    Records and edits expenses.
    
    Installment purchases are written as one batch (parent plus every
    installment); the category counter update that follows is the only
    second write, and its failure deletes the plan again.
    """
    
    async def add_expense(
        self,
        user_id: str,
        amount: Decimal,
        expense_date: date,
        description: str = "",
        financial_type: FinancialType = FinancialType.UNCLASSIFIED,
        category_ids: Iterable[str] = (),
        status: ExpenseStatus = ExpenseStatus.PAID,
        service_id: Optional[UUID] = None,
        debt_id: Optional[str] = None,
        payment_group_id: Optional[str] = None,
        credit_card_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Record a single expense.
        
        Raises:
            LedgerValidationError: invalid input, nothing written
            StorageError: the write failed (a failed counter update is rolled back first)
        """
        correlation_id = correlation_id or create_correlation_id()
        category_ids = distinct_categories(category_ids)
        
        known = await self._known_categories(user_id, category_ids)
        await self._require_valid(
            self._validator.validate_expense(amount, expense_date, category_ids, known),
            user_id,
            correlation_id,
        )
        
        expense = Expense(
            user_id=user_id,
            amount=to_money(amount),
            description=description,
            expense_date=expense_date,
            financial_type=financial_type,
            status=status,
            category_ids=category_ids,
            service_id=service_id,
            debt_id=debt_id,
            payment_group_id=payment_group_id,
            credit_card_id=credit_card_id,
        )
        saved = await self._storage.save_expense(expense)
        await self._increment_or_undo(
            "add_expense",
            user_id,
            category_ids,
            [saved.id],
            correlation_id,
        )
        
        await self._audit_logger.log_expense_created(
            expense_id=saved.id,
            user_id=user_id,
            amount=str(saved.amount),
            correlation_id=correlation_id,
        )
        return saved
    
    async def add_installment_purchase(
        self,
        user_id: str,
        total_amount: Decimal,
        installments: int,
        first_date: date,
        today: date,
        starting_installment: int = 1,
        description: str = "",
        financial_type: FinancialType = FinancialType.UNCLASSIFIED,
        category_ids: Iterable[str] = (),
        credit_card_id: Optional[str] = None,
        payment_group_id: Optional[str] = None,
        debt_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InstallmentPlan:
        """
        Record a purchase paid in installments.
        
        Args:
            first_date: Date of the installment being paid now
            starting_installment: Which installment that is (1..N)
            today: Installments due on or before today are stored as paid
        
        Raises:
            LedgerValidationError: invalid input, nothing written
            StorageError: the write failed and was rolled back
            PartialWriteError: the write failed and could not be rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        category_ids = distinct_categories(category_ids)
        
        known = await self._known_categories(user_id, category_ids)
        await self._require_valid(
            self._validator.validate_installment_purchase(
                total_amount,
                installments,
                starting_installment,
                first_date,
                category_ids,
                known,
            ),
            user_id,
            correlation_id,
        )
        
        plan = split_installments(
            user_id=user_id,
            total_amount=Decimal(total_amount),
            installments=installments,
            first_date=first_date,
            today=today,
            starting_installment=starting_installment,
            description=description,
            financial_type=financial_type,
            category_ids=category_ids,
            credit_card_id=credit_card_id,
            payment_group_id=payment_group_id,
            debt_id=debt_id,
            rounding=self._settings.installment_rounding,
        )
        
        saved = await self._storage.save_installment_plan(plan)
        await self._increment_or_undo(
            "add_installment_purchase",
            user_id,
            category_ids,
            [row.id for row in plan.to_expenses()],
            correlation_id,
        )
        
        await self._audit_logger.log_installment_plan_created(
            plan_id=saved.id,
            user_id=user_id,
            total_amount=str(saved.total_amount),
            installments=saved.installments,
            correlation_id=correlation_id,
        )
        logger.info(
            "installment_plan_created",
            plan_id=str(saved.id),
            installments=saved.installments,
            rounding_drift=str(saved.rounding_drift),
        )
        return saved
    
    async def _increment_or_undo(
        self,
        operation: str,
        user_id: str,
        category_ids: list[str],
        written: list[UUID],
        correlation_id: UUID,
    ) -> None:
        if not category_ids:
            return
        try:
            await self._storage.increment_category_usage(user_id, category_ids)
        except Exception as e:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            await self._compensate(
                operation,
                e,
                lambda: self._storage.delete_expenses(written),
                written,
                correlation_id,
            )
            raise
    
    async def get_installment_plan(self, user_id: str, expense_id: UUID) -> InstallmentPlan:
        """
        Rebuild the plan any installment (or its parent) belongs to.
        
        Raises:
            NotFoundError: unknown expense, or not part of an installment purchase
        """
        family = expense_family(await self._storage.list_expenses(user_id), expense_id)
        parent = next((e for e in family if e.is_parent), None)
        if parent is None:
            raise NotFoundError(f"Expense {expense_id} is not part of an installment purchase")
        children = [e for e in family if not e.is_parent]
        return InstallmentPlan.from_expenses(parent, children)
    
    async def delete_expense(
        self,
        user_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """
        Delete an expense. Deleting any installment deletes the whole purchase.
        
        Returns the ids of every deleted row.
        """
        correlation_id = correlation_id or create_correlation_id()
        family = expense_family(await self._storage.list_expenses(user_id), expense_id)
        if not family:
            raise NotFoundError(f"Expense {expense_id} not found")
        
        ids = [e.id for e in family]
        await self._storage.delete_expenses(ids)
        await self._audit_logger.log_expense_deleted(
            expense_ids=ids,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return ids
    
    async def update_classification(
        self,
        user_id: str,
        expense_id: UUID,
        financial_type: Optional[FinancialType] = None,
        category_ids: Optional[Iterable[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Change the financial type and/or categories of an expense.
        
        The change applies to every row of an installment purchase.
        """
        correlation_id = correlation_id or create_correlation_id()
        changes: dict = {}
        if financial_type is not None:
            changes["financial_type"] = financial_type
        if category_ids is not None:
            categories = distinct_categories(category_ids)
            known = await self._known_categories(user_id, categories)
            await self._require_valid(
                self._validator.validate_categories(categories, known),
                user_id,
                correlation_id,
            )
            changes["category_ids"] = categories
        if not changes:
            return []
        
        family = expense_family(await self._storage.list_expenses(user_id), expense_id)
        if not family:
            raise NotFoundError(f"Expense {expense_id} not found")
        
        updated = [e.model_copy(update=changes) for e in family]
        await self._storage.update_expenses(updated)
        await self._audit_logger.log_expense_updated(
            expense_ids=[e.id for e in updated],
            user_id=user_id,
            changes={k: (v.value if isinstance(v, FinancialType) else v) for k, v in changes.items()},
            correlation_id=correlation_id,
        )
        return updated


class IncomeFlow(_Flow):
    """Manages income definitions."""
    
    async def add_income(
        self,
        user_id: str,
        amount: Decimal,
        income_type: IncomeType = IncomeType.OTHER,
        description: str = "",
        income_date: Optional[date] = None,
        is_recurring: bool = False,
        recurring_day: Optional[int] = None,
        recurring_frequency: RecurringFrequency = RecurringFrequency.MONTHLY,
        correlation_id: Optional[UUID] = None,
    ) -> Income:
        correlation_id = correlation_id or create_correlation_id()
        await self._require_valid(
            self._validator.validate_income(amount, is_recurring, recurring_day, income_date),
            user_id,
            correlation_id,
        )
        income = Income(
            user_id=user_id,
            amount=to_money(amount),
            income_type=income_type,
            description=description,
            income_date=None if is_recurring else income_date,
            is_recurring=is_recurring,
            recurring_day=recurring_day if is_recurring else None,
            recurring_frequency=recurring_frequency,
        )
        saved = await self._storage.save_income(income)
        await self._audit_logger.log_record_changed(
            event_type=AuditEventType.INCOME_CREATED,
            entity_type="income",
            entity_id=saved.id,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return saved
    
    async def update_income(
        self,
        income: Income,
        correlation_id: Optional[UUID] = None,
    ) -> Income:
        correlation_id = correlation_id or create_correlation_id()
        await self._require_valid(
            self._validator.validate_income(
                income.amount,
                income.is_recurring,
                income.recurring_day,
                income.income_date,
            ),
            income.user_id,
            correlation_id,
        )
        saved = await self._storage.update_income(income)
        await self._audit_logger.log_record_changed(
            event_type=AuditEventType.INCOME_UPDATED,
            entity_type="income",
            entity_id=saved.id,
            user_id=saved.user_id,
            correlation_id=correlation_id,
        )
        return saved
    
    async def delete_income(
        self,
        user_id: str,
        income_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        correlation_id = correlation_id or create_correlation_id()
        deleted = await self._storage.delete_income(income_id)
        if deleted:
            await self._audit_logger.log_record_changed(
                event_type=AuditEventType.INCOME_DELETED,
                entity_type="income",
                entity_id=income_id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        return deleted
    
    async def monthly_breakdown(
        self,
        user_id: str,
        year: int,
        month: int,
        today: date,
    ) -> IncomeBreakdown:
        incomes = await self._storage.list_incomes(user_id)
        return monthly_income_breakdown(incomes, year, month, today)


class ObligationFlow(_Flow):
    """
    Manages recurring services and their monthly payments.
    
    Marking a service paid writes an expense and a payment row. If the
    payment row cannot be written the expense is deleted again, so the
    service never shows as paid without its expense or vice versa.
    """
    
    async def add_service(
        self,
        user_id: str,
        name: str,
        estimated_amount: Decimal,
        day_of_month: int,
        category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringService:
        correlation_id = correlation_id or create_correlation_id()
        await self._require_valid(
            self._validator.validate_service(name, estimated_amount, day_of_month),
            user_id,
            correlation_id,
        )
        service = RecurringService(
            user_id=user_id,
            name=name,
            estimated_amount=to_money(estimated_amount),
            day_of_month=day_of_month,
            category_id=category_id,
        )
        saved = await self._storage.save_service(service)
        await self._audit_logger.log_record_changed(
            event_type=AuditEventType.SERVICE_CREATED,
            entity_type="service",
            entity_id=saved.id,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return saved
    
    async def update_service(
        self,
        service: RecurringService,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringService:
        correlation_id = correlation_id or create_correlation_id()
        await self._require_valid(
            self._validator.validate_service(
                service.name,
                service.estimated_amount,
                service.day_of_month,
            ),
            service.user_id,
            correlation_id,
        )
        saved = await self._storage.update_service(service)
        await self._audit_logger.log_record_changed(
            event_type=AuditEventType.SERVICE_UPDATED,
            entity_type="service",
            entity_id=saved.id,
            user_id=saved.user_id,
            correlation_id=correlation_id,
        )
        return saved
    
    async def delete_service(
        self,
        user_id: str,
        service_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Delete a service. Its payment history and expenses are kept."""
        correlation_id = correlation_id or create_correlation_id()
        deleted = await self._storage.delete_service(service_id)
        if deleted:
            await self._audit_logger.log_record_changed(
                event_type=AuditEventType.SERVICE_DELETED,
                entity_type="service",
                entity_id=service_id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        return deleted
    
    async def month_summary(
        self,
        user_id: str,
        year: int,
        month: int,
        today: date,
    ) -> ObligationSummary:
        services = await self._storage.list_services(user_id)
        payments = await self._storage.list_service_payments([s.id for s in services])
        return summarize_obligations(services, payments, year, month, today)
    
    async def _get_service(self, user_id: str, service_id: UUID) -> RecurringService:
        services = await self._storage.list_services(user_id)
        service = next((s for s in services if s.id == service_id), None)
        if service is None:
            raise NotFoundError(f"Service {service_id} not found")
        return service
    
    async def mark_paid(
        self,
        user_id: str,
        service_id: UUID,
        year: int,
        month: int,
        today: date,
        amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ServicePayment:
        """
        Mark a service paid for (year, month).
        
        Creates a 'needs' expense dated today, linked to the service, then
        upserts the payment row. Marking an already paid month again
        returns the existing payment and writes nothing.
        
        Args:
            amount: Amount actually paid; defaults to the estimated amount
        
        Raises:
            NotFoundError: unknown service
            StorageError: a write failed and was rolled back
            PartialWriteError: a write failed and could not be rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        service = await self._get_service(user_id, service_id)
        paid_amount = service.estimated_amount if amount is None else amount
        await self._require_valid(
            self._validator.validate_service_payment(paid_amount),
            user_id,
            correlation_id,
        )
        
        payments, categories = await asyncio.gather(
            self._storage.list_service_payments([service_id]),
            self._storage.list_categories(user_id),
        )
        existing = find_payment(payments, service_id, month, year)
        if existing is not None and existing.is_paid:
            logger.info(
                "service_already_paid",
                service_id=str(service_id),
                month_key=month_key(year, month),
            )
            return existing
        
        known = {c.id for c in categories}
        category_ids = [service.category_id] if service.category_id in known else []
        
        expense = await self._storage.save_expense(Expense(
            user_id=user_id,
            amount=to_money(paid_amount),
            description=service.name,
            expense_date=today,
            financial_type=FinancialType.NEEDS,
            status=ExpenseStatus.PAID,
            category_ids=category_ids,
            service_id=service.id,
        ))
        
        try:
            payment = await self._storage.upsert_service_payment(ServicePayment(
                service_id=service.id,
                expense_id=expense.id,
                payment_date=first_day(year, month),
                amount=expense.amount,
                month=month,
                year=year,
                status=ServicePaymentStatus.PAID,
            ))
            if category_ids:
                await self._storage.increment_category_usage(user_id, category_ids)
        except Exception as e:
            await self._audit_logger.log_storage_error(
                operation="mark_paid",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            await self._compensate(
                "mark_paid",
                e,
                lambda: self._undo_mark_paid(service.id, month, year, expense.id, existing),
                [expense.id],
                correlation_id,
            )
            raise
        
        await self._audit_logger.log_service_marked_paid(
            service_id=service.id,
            user_id=user_id,
            month_key=month_key(year, month),
            amount=str(payment.amount),
            expense_id=expense.id,
            correlation_id=correlation_id,
        )
        return payment
    
    async def _undo_mark_paid(
        self,
        service_id: UUID,
        month: int,
        year: int,
        expense_id: UUID,
        previous: Optional[ServicePayment],
    ) -> None:
        if previous is None:
            await self._storage.delete_service_payment(service_id, month, year)
        else:
            await self._storage.upsert_service_payment(previous)
        await self._storage.delete_expenses([expense_id])
    
    async def unmark_paid(
        self,
        user_id: str,
        service_id: UUID,
        year: int,
        month: int,
        delete_expense: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Undo a payment: the service goes back to pending for (year, month).
        
        Args:
            delete_expense: Also delete the expense the payment created
        
        Returns:
            False when there was no payment to undo
        """
        correlation_id = correlation_id or create_correlation_id()
        payments = await self._storage.list_service_payments([service_id])
        payment = find_payment(payments, service_id, month, year)
        if payment is None:
            return False
        
        await self._storage.delete_service_payment(service_id, month, year)
        
        expense_deleted = False
        if delete_expense and payment.expense_id is not None:
            try:
                expense_deleted = await self._storage.delete_expenses([payment.expense_id]) > 0
            except Exception as e:
                await self._compensate(
                    "unmark_paid",
                    e,
                    lambda: self._storage.upsert_service_payment(payment),
                    [payment.id],
                    correlation_id,
                )
                raise
        
        await self._audit_logger.log_service_unmarked(
            service_id=service_id,
            user_id=user_id,
            month_key=month_key(year, month),
            expense_deleted=expense_deleted,
            correlation_id=correlation_id,
        )
        return True


class DashboardFlow(_Flow):
    """Loads a user's records and runs the engine over them. Read-only."""
    
    async def load(self, user_id: str) -> LedgerRecords:
        """Fetch every collection the engine needs, concurrently."""
        expenses, incomes, services, preferences = await asyncio.gather(
            self._storage.list_expenses(user_id),
            self._storage.list_incomes(user_id),
            self._storage.list_services(user_id),
            self._storage.get_preferences(user_id),
        )
        payments = await self._storage.list_service_payments([s.id for s in services])
        return LedgerRecords(
            user_id=user_id,
            expenses=expenses,
            incomes=incomes,
            services=services,
            payments=payments,
            preferences=preferences,
        )
    
    def statistics(
        self,
        records: LedgerRecords,
        start: date,
        end: date,
        today: date,
    ) -> SpendingStatistics:
        rows = expenses_in_range(records.expenses, start, end, today)
        return SpendingStatistics(
            start=start,
            end=end,
            total_expenses=sum((e.amount for e in rows), ZERO),
            distribution=financial_type_distribution(rows),
            top_categories=category_totals(rows),
            comparison=monthly_comparison(
                records.expenses,
                records.incomes,
                today,
                months=self._settings.comparison_months,
            ),
        )
    
    def compute(self, records: LedgerRecords, today: date) -> Dashboard:
        """Run every engine component for today's month."""
        income = monthly_income_breakdown(records.incomes, today.year, today.month, today)
        obligations = summarize_obligations(
            records.services,
            records.payments,
            today.year,
            today.month,
            today,
        )
        return Dashboard(
            today=today,
            income=income,
            obligations=obligations,
            balance=calculate_balance(
                records.expenses,
                income,
                obligations,
                records.preferences.carryover_amount,
                today,
            ),
            projection=project_month(records.expenses, obligations, today),
            statistics=self.statistics(
                records,
                first_day(today.year, today.month),
                last_day(today.year, today.month),
                today,
            ),
            upcoming_installments=upcoming_installments(records.expenses, today),
        )
    
    async def dashboard(self, user_id: str, today: date) -> Dashboard:
        return self.compute(await self.load(user_id), today)


class MonthCloseFlow(_Flow):
    """
    Runs the month-close state machine against the record store.
    
    check() is called on session start. When it returns a PROMPT the
    caller asks the user for an outcome and passes it to close_month().
    """
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        dashboard: Optional[DashboardFlow] = None,
    ):
        super().__init__(storage, validator, audit_logger)
        self._dashboard = dashboard or DashboardFlow(storage, validator, self._audit_logger)
    
    async def check(
        self,
        user_id: str,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> MonthClosePrompt:
        """
        Decide what session start should do about the prior month.
        
        Users without income are closed silently (StartedFresh). Otherwise
        the prompt carries the prior month's remaining balance.
        """
        correlation_id = correlation_id or create_correlation_id()
        records = await self._dashboard.load(user_id)
        trigger = evaluate_month_close(records.preferences, today, records.has_income)
        
        prompt = MonthClosePrompt(
            trigger=trigger,
            current_month_key=month_key(today.year, today.month),
            previous_month_key=previous_month_key(today),
        )
        
        if trigger == MonthCloseTrigger.AUTO_START_FRESH:
            await self._persist(records, StartedFresh(), today, correlation_id, automatic=True)
        elif trigger == MonthCloseTrigger.PROMPT:
            year, month = parse_month_key(prompt.previous_month_key)
            remaining = month_end_remaining(
                records.expenses,
                records.incomes,
                records.services,
                records.payments,
                records.preferences.carryover_amount,
                year,
                month,
            )
            prompt = prompt.model_copy(update={"remaining_balance": remaining})
            await self._audit_logger.log_month_close_prompted(
                user_id=user_id,
                previous_month_key=prompt.previous_month_key,
                remaining_balance=str(remaining),
                correlation_id=correlation_id,
            )
        
        return prompt
    
    async def close_month(
        self,
        user_id: str,
        outcome: MonthCloseOutcome,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> MonthCloseTransition:
        """
        Apply the user's month-close choice.
        
        Raises:
            LedgerValidationError: invalid outcome, nothing written
            MonthAlreadyClosedError: this month was already closed
            StorageError: a write failed (the adjustment expense is rolled back)
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._require_valid(
            self._validator.validate_month_close(outcome),
            user_id,
            correlation_id,
        )
        records = await self._dashboard.load(user_id)
        return await self._persist(records, outcome, today, correlation_id)
    
    async def _persist(
        self,
        records: LedgerRecords,
        outcome: MonthCloseOutcome,
        today: date,
        correlation_id: UUID,
        automatic: bool = False,
    ) -> MonthCloseTransition:
        transition = apply_month_close(
            records.preferences,
            outcome,
            today,
            self._settings.adjustment_description,
        )
        
        expense = transition.adjustment_expense
        if expense is not None:
            await self._storage.save_expense(expense)
        
        try:
            await self._storage.update_preferences(transition.preferences)
        except Exception as e:
            await self._audit_logger.log_storage_error(
                operation="close_month",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            if expense is not None:
                await self._compensate(
                    "close_month",
                    e,
                    lambda: self._storage.delete_expenses([expense.id]),
                    [expense.id],
                    correlation_id,
                )
            raise
        
        if expense is not None:
            await self._audit_logger.log_expense_created(
                expense_id=expense.id,
                user_id=records.user_id,
                amount=str(expense.amount),
                correlation_id=correlation_id,
            )
        await self._audit_logger.log_month_closed(
            user_id=records.user_id,
            month_key=transition.closed_month_key,
            outcome=outcome.kind,
            carryover=str(transition.preferences.carryover_amount),
            correlation_id=correlation_id,
            automatic=automatic,
        )
        return transition


class AppComponents(NamedTuple):
    expenses: ExpenseFlow
    incomes: IncomeFlow
    obligations: ObligationFlow
    dashboard: DashboardFlow
    month_close: MonthCloseFlow
    storage: LedgerStorageInterface


def create_app_components(
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.
    
    Args:
        storage: Record store to use. When omitted the backend named by
                 APP settings (storage_backend) is created.
        audit_storage: Audit store; defaults to the one matching the backend.
    
    Returns:
        AppComponents with every flow wired to the same storage and audit logger
    """
    if storage is None:
        backend = get_settings().app.storage_backend
        if backend == "google_sheets":
            try:
                sheets_client = GoogleSheetsClient()
                storage = GoogleSheetsLedgerStorage(sheets_client)
                audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
            except Exception as e:
                # Storage not configured - continue in memory
                logger.warning("storage_not_configured", backend=backend, error=str(e))
                storage = None
        if storage is None:
            storage = InMemoryLedgerStorage()
            audit_storage = audit_storage or InMemoryAuditStorage()
    
    audit_logger = AuditLogger(audit_storage)
    validator = LedgerValidator()
    dashboard = DashboardFlow(storage, validator, audit_logger)
    
    return AppComponents(
        expenses=ExpenseFlow(storage, validator, audit_logger),
        incomes=IncomeFlow(storage, validator, audit_logger),
        obligations=ObligationFlow(storage, validator, audit_logger),
        dashboard=dashboard,
        month_close=MonthCloseFlow(storage, validator, audit_logger, dashboard),
        storage=storage,
    )
