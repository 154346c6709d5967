"""
Audit Models for finledger

Every write the ledger performs is logged for audit purposes.
This provides:
1. Complete traceability of all balance-affecting changes
2. Debugging information when a multi-record write fails halfway
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    INSTALLMENT_PLAN_CREATED = "installment_plan_created"
    
    # Income
    INCOME_CREATED = "income_created"
    INCOME_UPDATED = "income_updated"
    INCOME_DELETED = "income_deleted"
    
    # Recurring obligations
    SERVICE_CREATED = "service_created"
    SERVICE_UPDATED = "service_updated"
    SERVICE_DELETED = "service_deleted"
    SERVICE_MARKED_PAID = "service_marked_paid"
    SERVICE_UNMARKED = "service_unmarked"
    
    # Month close
    MONTH_CLOSE_PROMPTED = "month_close_prompted"
    MONTH_CLOSED = "month_closed"
    
    # Failures
    VALIDATION_FAILED = "validation_failed"
    COMPENSATION_APPLIED = "compensation_applied"
    COMPENSATION_FAILED = "compensation_failed"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.
    
    Every balance-affecting action creates one of these.
    """
    
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )
    
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'installment_plan', 'service')"
    )
    entity_id: Optional[UUID] = None
    
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all writes of one user action)"
    )
    
    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    
    error_message: Optional[str] = None
    
    is_user_action: bool = False
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }
    
    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.
        
        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.expense_created(expense_id, user_id, "15.00", correlation_id)
        event = AuditEventBuilder.month_closed(user_id, "2024-06", "carried_over", "200.00", correlation_id)
    """
    
    @staticmethod
    def expense_created(
        expense_id: UUID,
        user_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense recorded: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )
    
    @staticmethod
    def expense_updated(
        expense_ids: list[UUID],
        user_id: str,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_ids[0] if expense_ids else None,
            correlation_id=correlation_id,
            description=f"{len(expense_ids)} expense row(s) updated",
            details={
                "expense_ids": [str(i) for i in expense_ids],
                "changes": changes,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def expense_deleted(
        expense_ids: list[UUID],
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_ids[0] if expense_ids else None,
            correlation_id=correlation_id,
            description=f"{len(expense_ids)} expense row(s) deleted",
            details={"expense_ids": [str(i) for i in expense_ids]},
            is_user_action=True,
        )
    
    @staticmethod
    def installment_plan_created(
        plan_id: UUID,
        user_id: str,
        total_amount: str,
        installments: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_PLAN_CREATED,
            user_id=user_id,
            entity_type="installment_plan",
            entity_id=plan_id,
            correlation_id=correlation_id,
            description=f"Installment purchase of {total_amount} in {installments} installments",
            details={
                "total_amount": total_amount,
                "installments": installments,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        """Generic create/update/delete event for incomes and services."""
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {action}",
            is_user_action=True,
        )
    
    @staticmethod
    def service_marked_paid(
        service_id: UUID,
        user_id: str,
        month_key: str,
        amount: str,
        expense_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERVICE_MARKED_PAID,
            user_id=user_id,
            entity_type="service",
            entity_id=service_id,
            correlation_id=correlation_id,
            description=f"Service paid for {month_key}: {amount}",
            details={
                "month_key": month_key,
                "amount": amount,
                "expense_id": str(expense_id),
            },
            is_user_action=True,
        )
    
    @staticmethod
    def service_unmarked(
        service_id: UUID,
        user_id: str,
        month_key: str,
        expense_deleted: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERVICE_UNMARKED,
            user_id=user_id,
            entity_type="service",
            entity_id=service_id,
            correlation_id=correlation_id,
            description=f"Service payment for {month_key} undone",
            details={
                "month_key": month_key,
                "expense_deleted": expense_deleted,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def month_close_prompted(
        user_id: str,
        previous_month_key: str,
        remaining_balance: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_CLOSE_PROMPTED,
            user_id=user_id,
            entity_type="preferences",
            correlation_id=correlation_id,
            description=f"Close of {previous_month_key} presented to user",
            details={
                "previous_month_key": previous_month_key,
                "remaining_balance": remaining_balance,
            },
        )
    
    @staticmethod
    def month_closed(
        user_id: str,
        month_key: str,
        outcome: str,
        carryover: str,
        correlation_id: UUID,
        automatic: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_CLOSED,
            user_id=user_id,
            entity_type="preferences",
            correlation_id=correlation_id,
            description=f"Month closed as {outcome}, carryover {carryover}",
            details={
                "month_key": month_key,
                "outcome": outcome,
                "carryover": carryover,
                "automatic": automatic,
            },
            is_user_action=not automatic,
        )
    
    @staticmethod
    def validation_failed(
        subject: str,
        issues: list[dict],
        user_id: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=subject,
            correlation_id=correlation_id,
            description=f"{subject.replace('_', ' ').capitalize()} rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )
    
    @staticmethod
    def compensation(
        succeeded: bool,
        operation: str,
        error_message: str,
        details: dict[str, Any],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.COMPENSATION_APPLIED
                if succeeded
                else AuditEventType.COMPENSATION_FAILED
            ),
            severity=AuditSeverity.WARNING if succeeded else AuditSeverity.CRITICAL,
            correlation_id=correlation_id,
            description=(
                f"{operation} failed part-way and was rolled back"
                if succeeded
                else f"{operation} failed part-way and could not be rolled back"
            ),
            error_message=error_message,
            details=details,
        )
    
    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Record store error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

