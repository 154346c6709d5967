"""
End-to-end tests for the orchestrator flows.

Test strategy:
1. Flows run against the in-memory record store and audit log
2. Record-store failures are injected by overriding single storage calls
3. Assertions cover both the stored records and the audit trail
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from finledger.engine.month_close import MonthAlreadyClosedError
from finledger.models.audit import AuditEventType
from finledger.models.ledger import (
    Category,
    ExpenseStatus,
    FinancialType,
    UserPreferences,
)
from finledger.models.month_close import (
    CarriedOver,
    MonthCloseTrigger,
    RegisteredAsExpense,
)
from finledger.orchestrator import create_app_components
from finledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    NotFoundError,
    PartialWriteError,
    StorageError,
)
from finledger.validation import LedgerValidationError


USER = "user-1"


def run(coro):
    return asyncio.run(coro)


class FailingCounterStorage(InMemoryLedgerStorage):
    async def increment_category_usage(self, user_id, category_ids):
        raise StorageError("quota exceeded")


class FailingRollbackStorage(FailingCounterStorage):
    async def delete_expenses(self, expense_ids):
        raise StorageError("sheet locked")


class FailingPaymentStorage(InMemoryLedgerStorage):
    async def upsert_service_payment(self, payment):
        raise StorageError("quota exceeded")


class FailingPreferencesStorage(InMemoryLedgerStorage):
    async def update_preferences(self, preferences):
        raise StorageError("quota exceeded")


def seeded(storage: InMemoryLedgerStorage) -> InMemoryLedgerStorage:
    storage.add_category(Category(id="tech", name="Tech"))
    storage.add_category(Category(id="home", name="Home"))
    storage.add_category(Category(id="utilities", name="Utilities"))
    return storage


def build(storage=None):
    storage = seeded(storage or InMemoryLedgerStorage())
    audit = InMemoryAuditStorage()
    return create_app_components(storage=storage, audit_storage=audit), audit


def event_types(audit: InMemoryAuditStorage) -> set:
    return {e.event_type for e in run(audit.get_recent_events(limit=1000))}


@pytest.fixture
def app():
    components, _ = build()
    return components


@pytest.fixture
def app_with_audit():
    return build()


class TestExpenseFlow:
    """Tests for recording expenses."""

    def test_add_expense(self, app_with_audit):
        """Test an expense is stored, counted and audited."""
        app, audit = app_with_audit
        saved = run(app.expenses.add_expense(
            USER, Decimal("42.5"), date(2024, 6, 3), category_ids=["tech", "tech"]
        ))

        assert saved.amount == Decimal("42.50")
        assert saved.category_ids == ["tech"]
        assert run(app.storage.list_expenses(USER)) == [saved]
        [tech] = [c for c in run(app.storage.list_categories(USER)) if c.id == "tech"]
        assert tech.usage_count == 1
        assert AuditEventType.EXPENSE_CREATED in event_types(audit)

    def test_invalid_expense_writes_nothing(self, app_with_audit):
        """Test rejected input is audited and never stored."""
        app, audit = app_with_audit
        with pytest.raises(LedgerValidationError):
            run(app.expenses.add_expense(USER, Decimal("0"), date(2024, 6, 3)))

        assert run(app.storage.list_expenses(USER)) == []
        assert AuditEventType.VALIDATION_FAILED in event_types(audit)

    def test_unknown_category_rejected(self, app):
        """Test expenses cannot reference categories that do not exist."""
        with pytest.raises(LedgerValidationError, match="Unknown categories"):
            run(app.expenses.add_expense(
                USER, Decimal("10"), date(2024, 6, 3), category_ids=["travel"]
            ))

    def test_counter_failure_rolls_back_expense(self):
        """Test a failed counter update deletes the expense again."""
        app, audit = build(FailingCounterStorage())
        with pytest.raises(StorageError, match="quota exceeded"):
            run(app.expenses.add_expense(
                USER, Decimal("10"), date(2024, 6, 3), category_ids=["tech"]
            ))

        assert run(app.storage.list_expenses(USER)) == []
        assert AuditEventType.COMPENSATION_APPLIED in event_types(audit)


class TestInstallmentFlow:
    """Tests for installment purchases."""

    def test_purchase_stored_as_family(self, app):
        """Test a purchase writes one parent plus N installments."""
        plan = run(app.expenses.add_installment_purchase(
            USER,
            Decimal("100"),
            3,
            first_date=date(2024, 6, 15),
            today=date(2024, 6, 20),
            category_ids=["tech"],
        ))

        rows = run(app.storage.list_expenses(USER))
        assert len(rows) == 4
        children = [r for r in rows if not r.is_parent]
        assert sum(c.amount for c in children) == Decimal("100.00")
        assert {c.parent_expense_id for c in children} == {plan.id}
        [tech] = [c for c in run(app.storage.list_categories(USER)) if c.id == "tech"]
        assert tech.usage_count == 1

    def test_mid_stream_purchase(self, app):
        """Test entering installment 3 of 6 back-dates and pays the first three."""
        plan = run(app.expenses.add_installment_purchase(
            USER,
            Decimal("600"),
            6,
            first_date=date(2024, 6, 15),
            today=date(2024, 6, 20),
            starting_installment=3,
        ))
        paid = [item.number for item in plan.items if item.status == ExpenseStatus.PAID]
        assert paid == [1, 2, 3]
        assert plan.first_installment_date == date(2024, 4, 15)

    def test_share_rounding_up_still_recorded(self, app):
        """Test a purchase whose share rounds up is stored and sums to the total."""
        plan = run(app.expenses.add_installment_purchase(
            USER,
            Decimal("7.00"),
            48,
            first_date=date(2024, 6, 1),
            today=date(2024, 6, 1),
        ))
        assert plan.rounding_drift == Decimal("0")

        children = [r for r in run(app.storage.list_expenses(USER)) if not r.is_parent]
        assert len(children) == 48
        assert sum(c.amount for c in children) == Decimal("7.00")
        assert min(c.amount for c in children) == Decimal("0.14")

    def test_invalid_count_rejected(self, app):
        """Test zero installments is rejected before writing."""
        with pytest.raises(LedgerValidationError):
            run(app.expenses.add_installment_purchase(
                USER, Decimal("600"), 0, first_date=date(2024, 6, 15), today=date(2024, 6, 20)
            ))
        assert run(app.storage.list_expenses(USER)) == []

    def test_counter_failure_removes_every_row(self):
        """Test no orphaned parent or installment survives a failed purchase."""
        app, audit = build(FailingCounterStorage())
        with pytest.raises(StorageError):
            run(app.expenses.add_installment_purchase(
                USER, Decimal("300"), 3,
                first_date=date(2024, 6, 15), today=date(2024, 6, 20),
                category_ids=["tech"],
            ))

        assert run(app.storage.list_expenses(USER)) == []
        assert AuditEventType.COMPENSATION_APPLIED in event_types(audit)

    def test_failed_rollback_raises_partial_write(self):
        """Test a rollback failure is surfaced with the rows left behind."""
        app, audit = build(FailingRollbackStorage())
        with pytest.raises(PartialWriteError) as excinfo:
            run(app.expenses.add_installment_purchase(
                USER, Decimal("300"), 3,
                first_date=date(2024, 6, 15), today=date(2024, 6, 20),
                category_ids=["tech"],
            ))

        assert len(excinfo.value.written) == 4
        assert AuditEventType.COMPENSATION_FAILED in event_types(audit)

    def test_get_plan_from_any_installment(self, app):
        """Test the plan can be rebuilt from one of its installments."""
        plan = run(app.expenses.add_installment_purchase(
            USER, Decimal("300"), 3, first_date=date(2024, 6, 15), today=date(2024, 6, 20)
        ))
        rebuilt = run(app.expenses.get_installment_plan(USER, plan.items[1].id))

        assert rebuilt.id == plan.id
        assert rebuilt.items == plan.items

    def test_get_plan_of_plain_expense(self, app):
        """Test a plain expense has no plan."""
        expense = run(app.expenses.add_expense(USER, Decimal("5"), date(2024, 6, 3)))
        with pytest.raises(NotFoundError):
            run(app.expenses.get_installment_plan(USER, expense.id))

    def test_delete_any_installment_deletes_purchase(self, app):
        """Test deleting one installment deletes parent and siblings."""
        plan = run(app.expenses.add_installment_purchase(
            USER, Decimal("300"), 3, first_date=date(2024, 6, 15), today=date(2024, 6, 20)
        ))
        deleted = run(app.expenses.delete_expense(USER, plan.items[2].id))

        assert len(deleted) == 4
        assert run(app.storage.list_expenses(USER)) == []

    def test_delete_unknown_expense(self, app):
        """Test deleting an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            run(app.expenses.delete_expense(USER, uuid4()))

    def test_classification_applies_to_family(self, app):
        """Test changing one installment changes the whole purchase."""
        plan = run(app.expenses.add_installment_purchase(
            USER, Decimal("300"), 3, first_date=date(2024, 6, 15), today=date(2024, 6, 20)
        ))
        updated = run(app.expenses.update_classification(
            USER,
            plan.items[0].id,
            financial_type=FinancialType.WANTS,
            category_ids=["home"],
        ))

        assert len(updated) == 4
        rows = run(app.storage.list_expenses(USER))
        assert all(r.financial_type == FinancialType.WANTS for r in rows)
        assert all(r.category_ids == ["home"] for r in rows)

    def test_classification_without_changes(self, app):
        """Test an empty change writes nothing."""
        expense = run(app.expenses.add_expense(USER, Decimal("5"), date(2024, 6, 3)))
        assert run(app.expenses.update_classification(USER, expense.id)) == []


class TestIncomeFlow:
    """Tests for income definitions."""

    def test_add_update_delete(self, app):
        """Test the income lifecycle."""
        income = run(app.incomes.add_income(
            USER, Decimal("2000"), is_recurring=True, recurring_day=1
        ))
        run(app.incomes.update_income(income.model_copy(update={"amount": Decimal("2100.00")})))

        [stored] = run(app.storage.list_incomes(USER))
        assert stored.amount == Decimal("2100.00")
        assert run(app.incomes.delete_income(USER, income.id))
        assert not run(app.incomes.delete_income(USER, income.id))

    def test_monthly_breakdown(self, app):
        """Test the breakdown uses stored definitions."""
        run(app.incomes.add_income(USER, Decimal("2000"), is_recurring=True, recurring_day=25))
        breakdown = run(app.incomes.monthly_breakdown(USER, 2024, 6, date(2024, 6, 10)))
        assert breakdown.pending == Decimal("2000.00")

    def test_invalid_income_rejected(self, app):
        """Test one-time income without a date is rejected."""
        with pytest.raises(LedgerValidationError):
            run(app.incomes.add_income(USER, Decimal("100")))


class TestObligationFlow:
    """Tests for recurring services and payments."""

    def _rent(self, app, category_id=None):
        return run(app.obligations.add_service(
            USER, "Rent", Decimal("300"), 5, category_id=category_id
        ))

    def test_mark_paid(self, app):
        """Test paying a service writes an expense and a payment."""
        rent = self._rent(app, category_id="utilities")
        payment = run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 7)))

        [expense] = run(app.storage.list_expenses(USER))
        assert expense.service_id == rent.id
        assert expense.financial_type == FinancialType.NEEDS
        assert expense.expense_date == date(2024, 6, 7)
        assert expense.category_ids == ["utilities"]
        assert expense.description == "Rent"
        assert payment.expense_id == expense.id
        assert payment.payment_date == date(2024, 6, 1)

        summary = run(app.obligations.month_summary(USER, 2024, 6, date(2024, 6, 7)))
        assert summary.paid_total == Decimal("300.00")
        assert summary.pending_total == Decimal("0")

    def test_mark_paid_with_actual_amount(self, app):
        """Test the amount actually paid replaces the estimate."""
        rent = self._rent(app)
        payment = run(app.obligations.mark_paid(
            USER, rent.id, 2024, 6, today=date(2024, 6, 7), amount=Decimal("310")
        ))
        assert payment.amount == Decimal("310.00")

    def test_mark_paid_twice_writes_once(self, app):
        """Test marking an already paid month returns the existing payment."""
        rent = self._rent(app)
        first = run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 7)))
        second = run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 8)))

        assert second.id == first.id
        assert len(run(app.storage.list_expenses(USER))) == 1

    def test_mark_unknown_service(self, app):
        """Test paying an unknown service raises NotFoundError."""
        with pytest.raises(NotFoundError):
            run(app.obligations.mark_paid(USER, uuid4(), 2024, 6, today=date(2024, 6, 7)))

    def test_payment_failure_removes_expense(self):
        """Test a failed payment write deletes the expense it created."""
        app, audit = build(FailingPaymentStorage())
        rent = self._rent(app)

        with pytest.raises(StorageError):
            run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 7)))

        assert run(app.storage.list_expenses(USER)) == []
        assert AuditEventType.COMPENSATION_APPLIED in event_types(audit)

    def test_unmark_paid(self, app):
        """Test undoing a payment removes the payment and its expense."""
        rent = self._rent(app)
        run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 7)))

        assert run(app.obligations.unmark_paid(USER, rent.id, 2024, 6))
        assert run(app.storage.list_expenses(USER)) == []
        summary = run(app.obligations.month_summary(USER, 2024, 6, date(2024, 6, 7)))
        assert summary.pending_total == Decimal("300.00")

    def test_unmark_keeps_expense_when_asked(self, app):
        """Test the expense can be kept when undoing a payment."""
        rent = self._rent(app)
        run(app.obligations.mark_paid(USER, rent.id, 2024, 6, today=date(2024, 6, 7)))

        run(app.obligations.unmark_paid(USER, rent.id, 2024, 6, delete_expense=False))
        assert len(run(app.storage.list_expenses(USER))) == 1

    def test_unmark_without_payment(self, app):
        """Test undoing an unpaid month does nothing."""
        rent = self._rent(app)
        assert not run(app.obligations.unmark_paid(USER, rent.id, 2024, 6))

    def test_invalid_service_rejected(self, app):
        """Test services need a name."""
        with pytest.raises(LedgerValidationError):
            run(app.obligations.add_service(USER, "", Decimal("10"), 5))


class TestDashboardFlow:
    """Tests for the computed dashboard."""

    def test_balance_and_daily_allowance(self, app):
        """Test the running balance and daily allowance from stored records."""
        run(app.incomes.add_income(USER, Decimal("3000"), income_date=date(2024, 6, 1)))
        run(app.expenses.add_expense(USER, Decimal("1500"), date(2024, 6, 2)))
        run(app.obligations.add_service(USER, "Rent", Decimal("300"), 25))
        run(app.storage.update_preferences(UserPreferences(
            user_id=USER, last_closed_month="2024-06", carryover_amount=Decimal("200.00")
        )))

        dashboard = run(app.dashboard.dashboard(USER, date(2024, 6, 17)))

        assert dashboard.balance.balance == Decimal("1400.00")
        assert dashboard.balance.days_remaining == 14
        assert dashboard.balance.available_daily == Decimal("100.00")
        assert dashboard.obligations.pending_total == Decimal("300.00")
        assert dashboard.statistics.total_expenses == Decimal("1500.00")
        assert dashboard.statistics.comparison[-1].month_key == "2024-06"

    def test_upcoming_installments(self, app):
        """Test future installments are listed by month."""
        run(app.expenses.add_installment_purchase(
            USER, Decimal("300"), 3, first_date=date(2024, 6, 15), today=date(2024, 6, 20)
        ))
        dashboard = run(app.dashboard.dashboard(USER, date(2024, 6, 20)))

        assert [m.month_key for m in dashboard.upcoming_installments] == ["2024-07", "2024-08"]
        assert dashboard.balance.total_expenses == Decimal("100.00")

    def test_empty_user(self, app):
        """Test a new user gets an all-zero dashboard."""
        dashboard = run(app.dashboard.dashboard(USER, date(2024, 6, 17)))
        assert dashboard.balance.balance == Decimal("0")
        assert dashboard.upcoming_installments == []


class TestMonthCloseFlow:
    """Tests for closing months against the record store."""

    def test_user_without_income_closed_silently(self, app_with_audit):
        """Test no prompt is shown to users without income."""
        app, audit = app_with_audit
        prompt = run(app.month_close.check(USER, date(2024, 7, 2)))

        assert prompt.trigger == MonthCloseTrigger.AUTO_START_FRESH
        prefs = run(app.storage.get_preferences(USER))
        assert prefs.last_closed_month == "2024-07"
        assert prefs.carryover_amount == Decimal("0")
        closed = [
            e for e in run(audit.get_recent_events())
            if e.event_type == AuditEventType.MONTH_CLOSED
        ]
        assert closed[0].details["automatic"] is True

        again = run(app.month_close.check(USER, date(2024, 7, 20)))
        assert again.trigger == MonthCloseTrigger.NOT_NEEDED

    def test_prompt_then_register_as_expense(self, app):
        """Test the prompt amount and the RegisteredAsExpense close."""
        run(app.incomes.add_income(USER, Decimal("2000"), is_recurring=True, recurring_day=1))
        run(app.expenses.add_expense(USER, Decimal("1200"), date(2024, 6, 10)))
        today = date(2024, 7, 2)

        prompt = run(app.month_close.check(USER, today))
        assert prompt.trigger == MonthCloseTrigger.PROMPT
        assert prompt.previous_month_key == "2024-06"
        assert prompt.remaining_balance == Decimal("800.00")

        transition = run(app.month_close.close_month(
            USER,
            RegisteredAsExpense(expense_amount=Decimal("500"), carryover_amount=Decimal("0")),
            today,
        ))

        adjustment = transition.adjustment_expense
        stored = {e.id: e for e in run(app.storage.list_expenses(USER))}
        assert adjustment.id in stored
        assert stored[adjustment.id].expense_date == date(2024, 6, 30)
        prefs = run(app.storage.get_preferences(USER))
        assert prefs.last_closed_month == "2024-07"
        assert prefs.carryover_amount == Decimal("0")

        assert run(app.month_close.check(USER, today)).trigger == MonthCloseTrigger.NOT_NEEDED
        with pytest.raises(MonthAlreadyClosedError):
            run(app.month_close.close_month(USER, CarriedOver(amount=Decimal("10")), today))

    def test_carryover_reaches_next_balance(self, app):
        """Test the carried amount shows up in this month's income."""
        run(app.incomes.add_income(USER, Decimal("2000"), is_recurring=True, recurring_day=28))
        today = date(2024, 7, 2)
        run(app.month_close.close_month(USER, CarriedOver(amount=Decimal("250.00")), today))

        dashboard = run(app.dashboard.dashboard(USER, today))
        assert dashboard.balance.carryover == Decimal("250.00")
        assert dashboard.balance.balance == Decimal("250.00")

    def test_invalid_outcome_rejected(self, app):
        """Test a negative amount on hand is rejected before anything is written."""
        with pytest.raises(LedgerValidationError):
            run(app.month_close.close_month(
                USER,
                RegisteredAsExpense(expense_amount=Decimal("5"), carryover_amount=Decimal("-1")),
                date(2024, 7, 2),
            ))
        assert run(app.storage.get_preferences(USER)).last_closed_month is None

    def test_preferences_failure_removes_adjustment(self):
        """Test the adjustment expense is rolled back when the close cannot be saved."""
        app, _ = build(FailingPreferencesStorage())
        with pytest.raises(StorageError):
            run(app.month_close.close_month(
                USER, RegisteredAsExpense(expense_amount=Decimal("100")), date(2024, 7, 2)
            ))
        assert run(app.storage.list_expenses(USER)) == []


class TestAppComponents:
    """Tests for wiring the flows together."""

    def test_defaults_to_memory_backend(self):
        """Test the default backend needs no credentials."""
        components = create_app_components()
        assert isinstance(components.storage, InMemoryLedgerStorage)

    def test_flows_share_storage(self, app):
        """Test every flow writes to the same store."""
        run(app.expenses.add_expense(USER, Decimal("5"), date(2024, 6, 3)))
        records = run(app.dashboard.load(USER))
        assert len(records.expenses) == 1
        assert not records.has_income


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
