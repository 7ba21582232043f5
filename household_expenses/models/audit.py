"""
Audit Models for Household Expenses

Every membership change and expense mutation is logged for audit purposes.
This is separate from the system notes shown in a household's feed:
the feed is for members, the audit log is for operators.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from household_expenses.models.household import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Households
    HOUSEHOLD_CREATED = "household_created"
    HOUSEHOLD_DELETED = "household_deleted"

    # Membership
    MEMBER_REGISTERED = "member_registered"
    MEMBER_JOINED = "member_joined"
    MEMBER_REJOINED = "member_rejoined"
    MEMBER_INVITED = "member_invited"
    MEMBER_LEFT = "member_left"
    MEMBER_REMOVED = "member_removed"
    MEMBER_STATUS_TOGGLED = "member_status_toggled"
    ADMIN_REASSIGNED = "admin_reassigned"

    # Expenses
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    RECEIPT_UPLOAD_FAILED = "receipt_upload_failed"

    # Failures
    TRANSITION_ROLLED_BACK = "transition_rolled_back"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    household_id: Optional[str] = None
    actor_id: Optional[str] = Field(
        default=None,
        description="Member who triggered the event"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'household', 'member', 'expense')"
    )
    entity_id: Optional[str] = None

    # Ties together every event of one operation
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "household_id": self.household_id,
            "actor_id": self.actor_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, household_id, actor_id,
         entity_type, entity_id, correlation_id, description, details_json,
         error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.household_id or "",
            self.actor_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.household_created(household_id, actor_id, name, cid)
        event = AuditEventBuilder.membership_changed(AuditEventType.MEMBER_LEFT, ...)
    """

    @staticmethod
    def household_created(
        household_id: str,
        actor_id: str,
        name: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HOUSEHOLD_CREATED,
            household_id=household_id,
            actor_id=actor_id,
            entity_type="household",
            entity_id=household_id,
            correlation_id=correlation_id,
            description=f"Household created: {name}",
            details={"name": name},
        )

    @staticmethod
    def household_deleted(
        household_id: str,
        actor_id: str,
        expenses_deleted: int,
        members_released: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HOUSEHOLD_DELETED,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            actor_id=actor_id,
            entity_type="household",
            entity_id=household_id,
            correlation_id=correlation_id,
            description="Household deleted with all its expenses",
            details={
                "expenses_deleted": expenses_deleted,
                "members_released": members_released,
            },
        )

    @staticmethod
    def membership_changed(
        event_type: AuditEventType,
        household_id: str,
        actor_id: str,
        member_id: str,
        description: str,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            household_id=household_id,
            actor_id=actor_id,
            entity_type="member",
            entity_id=member_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def expense_changed(
        event_type: AuditEventType,
        household_id: str,
        actor_id: str,
        expense_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            household_id=household_id,
            actor_id=actor_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense {verb}: {amount}",
            details={"amount": amount},
        )

    @staticmethod
    def receipt_upload_failed(
        household_id: str,
        actor_id: str,
        filename: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOAD_FAILED,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            actor_id=actor_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt upload failed, saving without receipt: {filename}",
            details={"filename": filename},
            error_message=error_message,
        )

    @staticmethod
    def transition_rolled_back(
        operation: str,
        household_id: Optional[str],
        actor_id: str,
        error_message: str,
        undone_steps: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSITION_ROLLED_BACK,
            severity=AuditSeverity.ERROR,
            household_id=household_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"{operation} failed and was rolled back",
            details={"operation": operation, "undone_steps": undone_steps},
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
