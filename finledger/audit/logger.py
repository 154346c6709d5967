"""
Audit Logger

DESIGN DECISION: Every balance-affecting write is logged.
This provides:
1. Complete traceability of the ledger
2. A record of multi-record writes that failed part-way
3. Correlation of all writes done for one user action

The audit logger:
- Is async so it fits the storage calls around it
- Gracefully handles failures (a failed audit write never fails the ledger write)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from finledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.
    
    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence)
    """
    
    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.
        
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finledger.audit")
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.
        
        Always logs locally. Persists to storage if available.
        
        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()
        
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)
        
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False
        
        return True
    
    async def log_expense_created(
        self,
        expense_id: UUID,
        user_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            expense_id=expense_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        ))
    
    async def log_expense_updated(
        self,
        expense_ids: list[UUID],
        user_id: str,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            expense_ids=expense_ids,
            user_id=user_id,
            changes=changes,
            correlation_id=correlation_id,
        ))
    
    async def log_expense_deleted(
        self,
        expense_ids: list[UUID],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            expense_ids=expense_ids,
            user_id=user_id,
            correlation_id=correlation_id,
        ))
    
    async def log_installment_plan_created(
        self,
        plan_id: UUID,
        user_id: str,
        total_amount: str,
        installments: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.installment_plan_created(
            plan_id=plan_id,
            user_id=user_id,
            total_amount=total_amount,
            installments=installments,
            correlation_id=correlation_id,
        ))
    
    async def log_record_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        """Log a create, update or delete of an income or service."""
        await self.log(AuditEventBuilder.record_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))
    
    async def log_service_marked_paid(
        self,
        service_id: UUID,
        user_id: str,
        month_key: str,
        amount: str,
        expense_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.service_marked_paid(
            service_id=service_id,
            user_id=user_id,
            month_key=month_key,
            amount=amount,
            expense_id=expense_id,
            correlation_id=correlation_id,
        ))
    
    async def log_service_unmarked(
        self,
        service_id: UUID,
        user_id: str,
        month_key: str,
        expense_deleted: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.service_unmarked(
            service_id=service_id,
            user_id=user_id,
            month_key=month_key,
            expense_deleted=expense_deleted,
            correlation_id=correlation_id,
        ))
    
    async def log_month_close_prompted(
        self,
        user_id: str,
        previous_month_key: str,
        remaining_balance: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.month_close_prompted(
            user_id=user_id,
            previous_month_key=previous_month_key,
            remaining_balance=remaining_balance,
            correlation_id=correlation_id,
        ))
    
    async def log_month_closed(
        self,
        user_id: str,
        month_key: str,
        outcome: str,
        carryover: str,
        correlation_id: UUID,
        automatic: bool = False,
    ) -> None:
        await self.log(AuditEventBuilder.month_closed(
            user_id=user_id,
            month_key=month_key,
            outcome=outcome,
            carryover=carryover,
            correlation_id=correlation_id,
            automatic=automatic,
        ))
    
    async def log_validation_failed(
        self,
        subject: str,
        issues: list[dict],
        user_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            subject=subject,
            issues=issues,
            user_id=user_id,
            correlation_id=correlation_id,
        ))
    
    async def log_compensation(
        self,
        succeeded: bool,
        operation: str,
        error_message: str,
        details: dict[str, Any],
        correlation_id: UUID,
    ) -> None:
        """Log the outcome of rolling back a failed multi-record write."""
        await self.log(AuditEventBuilder.compensation(
            succeeded=succeeded,
            operation=operation,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))
    
    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.
    
    Use this at the start of a new user action (e.g., an installment
    purchase). Pass it through all subsequent writes.
    """
    return uuid4()
