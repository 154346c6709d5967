"""
Recurring Obligation Tracker

Decides, per (service, month, year), whether a fixed obligation is paid
and for how much. Payment rows are sparse: no row means not paid yet,
and the obligation is reserved at its estimated amount.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from finledger.engine.periods import ZERO, clamp_day, compare_month
from finledger.models.ledger import RecurringService, ServicePayment
from finledger.models.results import ObligationStatus, ObligationSummary


PaymentIndex = dict[tuple[UUID, int, int], ServicePayment]


def index_payments(payments: Iterable[ServicePayment]) -> PaymentIndex:
    """Payments keyed by (service_id, month, year). Later rows win."""
    return {payment.key: payment for payment in payments}


def find_payment(
    payments: Iterable[ServicePayment],
    service_id: UUID,
    month: int,
    year: int,
) -> Optional[ServicePayment]:
    return index_payments(payments).get((service_id, month, year))


def _is_overdue(service: RecurringService, year: int, month: int, today: date) -> bool:
    position = compare_month(year, month, today)
    if position < 0:
        return True
    if position > 0:
        return False
    return clamp_day(year, month, service.day_of_month) < today.day


def obligation_status(
    service: RecurringService,
    payment: Optional[ServicePayment],
    year: int,
    month: int,
    today: date,
) -> ObligationStatus:
    due_date = date(year, month, clamp_day(year, month, service.day_of_month))
    if payment is not None and payment.is_paid:
        return ObligationStatus(
            service=service,
            payment=payment,
            due_date=due_date,
            is_paid=True,
            amount=payment.amount,
        )
    return ObligationStatus(
        service=service,
        payment=payment,
        due_date=due_date,
        is_paid=False,
        amount=service.estimated_amount,
        is_overdue=_is_overdue(service, year, month, today),
    )


def summarize_obligations(
    services: Iterable[RecurringService],
    payments: Iterable[ServicePayment],
    year: int,
    month: int,
    today: date,
) -> ObligationSummary:
    """
    Paid and pending totals of every active service for (year, month).

    Statuses come out sorted by due day, then name.
    """
    index = index_payments(payments)
    statuses = [
        obligation_status(service, index.get((service.id, month, year)), year, month, today)
        for service in services
        if service.is_active
    ]
    statuses.sort(key=lambda s: (s.service.day_of_month, s.service.name))

    paid_total = sum((s.amount for s in statuses if s.is_paid), ZERO)
    pending_total = sum((s.amount for s in statuses if not s.is_paid), ZERO)
    return ObligationSummary(
        year=year,
        month=month,
        paid_total=paid_total,
        pending_total=pending_total,
        total=paid_total + pending_total,
        statuses=statuses,
    )
