"""
Audit Logger

DESIGN DECISION: Every membership change and expense mutation is logged.
This provides:
1. Complete traceability of who changed what in a household
2. Debugging capability when a transition is rolled back
3. An operator-side trail independent of the feed's system notes

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace the events of one operation
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_expenses.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from household_expenses.services.storage import AuditStorageInterface


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
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

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

    async def log_household_created(
        self,
        household_id: str,
        actor_id: str,
        name: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.household_created(
            household_id=household_id,
            actor_id=actor_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_household_deleted(
        self,
        household_id: str,
        actor_id: str,
        expenses_deleted: int,
        members_released: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.household_deleted(
            household_id=household_id,
            actor_id=actor_id,
            expenses_deleted=expenses_deleted,
            members_released=members_released,
            correlation_id=correlation_id,
        ))

    async def log_membership_change(
        self,
        event_type: AuditEventType,
        household_id: str,
        actor_id: str,
        member_id: str,
        description: str,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Log a join, rejoin, invite, leave, removal or status toggle."""
        await self.log(AuditEventBuilder.membership_changed(
            event_type=event_type,
            household_id=household_id,
            actor_id=actor_id,
            member_id=member_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
        ))

    async def log_expense_change(
        self,
        event_type: AuditEventType,
        household_id: str,
        actor_id: str,
        expense_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_changed(
            event_type=event_type,
            household_id=household_id,
            actor_id=actor_id,
            expense_id=expense_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_receipt_upload_failed(
        self,
        household_id: str,
        actor_id: str,
        filename: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_upload_failed(
            household_id=household_id,
            actor_id=actor_id,
            filename=filename,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rollback(
        self,
        operation: str,
        household_id: Optional[str],
        actor_id: str,
        error_message: str,
        undone_steps: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transition_rolled_back(
            operation=operation,
            household_id=household_id,
            actor_id=actor_id,
            error_message=error_message,
            undone_steps=undone_steps,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new member action (e.g., leaving a household).
    Pass it through all subsequent operations.
    """
    return uuid4()
