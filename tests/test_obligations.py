"""
Tests for the recurring obligation tracker.
"""

import pytest
from datetime import date
from decimal import Decimal

from finledger.engine.obligations import find_payment, summarize_obligations
from finledger.models.ledger import RecurringService, ServicePayment, ServicePaymentStatus


def service(name: str, amount: str, day: int, active: bool = True) -> RecurringService:
    return RecurringService(
        user_id="user-1",
        name=name,
        estimated_amount=Decimal(amount),
        day_of_month=day,
        is_active=active,
    )


def payment(svc: RecurringService, amount: str, month: int = 6, year: int = 2024,
            status=ServicePaymentStatus.PAID) -> ServicePayment:
    return ServicePayment(
        service_id=svc.id,
        payment_date=date(year, month, 1),
        amount=Decimal(amount),
        month=month,
        year=year,
        status=status,
    )


@pytest.fixture
def services():
    return [
        service("Internet", "50.00", 20),
        service("Rent", "100.00", 5),
        service("Old gym", "30.00", 1, active=False),
    ]


class TestSummarizeObligations:
    """Tests for paid and pending totals."""

    def test_paid_uses_recorded_amount(self, services):
        """Test paid services count at the paid amount, unpaid at the estimate."""
        internet, rent, _ = services
        summary = summarize_obligations(
            services, [payment(rent, "95.00")], 2024, 6, date(2024, 6, 10)
        )

        assert summary.paid_total == Decimal("95.00")
        assert summary.pending_total == Decimal("50.00")
        assert summary.total == Decimal("145.00")

    def test_inactive_services_ignored(self, services):
        """Test inactive services are left out."""
        summary = summarize_obligations(services, [], 2024, 6, date(2024, 6, 10))
        assert [s.service.name for s in summary.statuses] == ["Rent", "Internet"]

    def test_sorted_by_due_day(self, services):
        """Test statuses come out in due-day order."""
        summary = summarize_obligations(services, [], 2024, 6, date(2024, 6, 1))
        assert [s.due_date for s in summary.statuses] == [date(2024, 6, 5), date(2024, 6, 20)]

    def test_payment_of_other_month_ignored(self, services):
        """Test a payment for May does not pay June."""
        _, rent, _ = services
        summary = summarize_obligations(
            services, [payment(rent, "100.00", month=5)], 2024, 6, date(2024, 6, 10)
        )
        assert summary.paid_total == Decimal("0")
        assert summary.pending_total == Decimal("150.00")

    def test_non_paid_row_counts_as_pending(self, services):
        """Test only PAID rows mark a service paid."""
        _, rent, _ = services
        summary = summarize_obligations(
            services,
            [payment(rent, "100.00", status=ServicePaymentStatus.PENDING)],
            2024, 6, date(2024, 6, 10),
        )
        rent_status = summary.statuses[0]
        assert not rent_status.is_paid
        assert rent_status.payment is not None
        assert rent_status.amount == Decimal("100.00")

    def test_due_day_clamped(self):
        """Test day 31 is due on June 30."""
        summary = summarize_obligations(
            [service("Insurance", "20.00", 31)], [], 2024, 6, date(2024, 6, 1)
        )
        assert summary.statuses[0].due_date == date(2024, 6, 30)


class TestOverdue:
    """Tests for overdue detection."""

    def test_due_day_passed_in_current_month(self, services):
        """Test an unpaid service is overdue once its day has passed."""
        summary = summarize_obligations(services, [], 2024, 6, date(2024, 6, 10))
        assert [s.service.name for s in summary.overdue] == ["Rent"]

        later = summarize_obligations(services, [], 2024, 6, date(2024, 6, 25))
        assert [s.service.name for s in later.overdue] == ["Rent", "Internet"]

    def test_not_overdue_on_due_day(self, services):
        """Test the due day itself is not overdue."""
        summary = summarize_obligations(services, [], 2024, 6, date(2024, 6, 5))
        assert summary.overdue == []

    def test_past_month_unpaid_is_overdue(self, services):
        """Test every unpaid service of a past month is overdue."""
        summary = summarize_obligations(services, [], 2024, 5, date(2024, 6, 1))
        assert len(summary.overdue) == 2

    def test_future_month_never_overdue(self, services):
        """Test nothing is overdue in a future month."""
        summary = summarize_obligations(services, [], 2024, 7, date(2024, 6, 30))
        assert summary.overdue == []

    def test_paid_is_never_overdue(self, services):
        """Test paying a service clears overdue."""
        _, rent, _ = services
        summary = summarize_obligations(
            services, [payment(rent, "100.00")], 2024, 6, date(2024, 6, 10)
        )
        assert summary.overdue == []


class TestFindPayment:
    """Tests for looking up a payment by key."""

    def test_finds_by_service_month_year(self, services):
        """Test the (service, month, year) lookup."""
        _, rent, _ = services
        june = payment(rent, "100.00")
        may = payment(rent, "90.00", month=5)

        assert find_payment([may, june], rent.id, 6, 2024) == june
        assert find_payment([may, june], rent.id, 7, 2024) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
