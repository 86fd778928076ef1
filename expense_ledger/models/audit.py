"""
Audit Models for Expense Ledger

Every significant action in the ledger is logged for audit purposes:
1. Expense lifecycle changes (create, update, delete, restore)
2. Categorization attempts and merchant mapping changes
3. Reads that users may want to trace (list queries, dashboards)
4. Failures of collaborators (store, AI provider)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_ledger.models.expense import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every externally visible operation has its own event type.
    """
    # Expense lifecycle
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_RESTORED = "expense_restored"

    # Categorization
    CATEGORIZATION_COMPLETED = "categorization_completed"
    MERCHANT_RESOLUTION_FAILED = "merchant_resolution_failed"
    CATEGORY_CORRECTED = "category_corrected"

    # Merchant mappings
    MAPPING_UPSERTED = "mapping_upserted"
    MAPPING_UPDATED = "mapping_updated"
    MAPPING_DELETED = "mapping_deleted"

    # Reads
    QUERY_EXECUTED = "query_executed"
    SEARCH_DEGRADED = "search_degraded"
    DASHBOARD_COMPUTED = "dashboard_computed"

    # Profile
    PROFILE_UPDATED = "profile_updated"

    # System events
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - who and what is this about?
    user_id: Optional[UUID] = Field(
        default=None,
        description="Owner of the affected data"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'mapping', 'query')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., categorize + create)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.user_id) if self.user_id else "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_created(user_id, expense_id, ...)
        event = AuditEventBuilder.mapping_upserted(user_id, mapping_id, ...)
    """

    @staticmethod
    def expense_created(
        user_id: UUID,
        expense_id: UUID,
        amount: str,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense created: {amount}",
            details={
                "amount": amount,
                "category_id": str(category_id),
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        user_id: UUID,
        expense_id: UUID,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated: {', '.join(sorted(fields))}",
            details={"fields": sorted(fields)},
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense moved to trash",
            is_user_action=True,
        )

    @staticmethod
    def expense_restored(
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_RESTORED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense restored from trash",
            is_user_action=True,
        )

    @staticmethod
    def categorization_completed(
        user_id: UUID,
        outcome_kind: str,
        confidence: Optional[float],
        latency_ms: int,
        error_code: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORIZATION_COMPLETED,
            severity=AuditSeverity.WARNING if error_code else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="categorization",
            correlation_id=correlation_id,
            description=f"Categorization finished as {outcome_kind}",
            details={
                "outcome": outcome_kind,
                "confidence": confidence,
                "latency_ms": latency_ms,
            },
            error_code=error_code,
        )

    @staticmethod
    def merchant_resolution_failed(
        user_id: UUID,
        stage: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MERCHANT_RESOLUTION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="mapping",
            correlation_id=correlation_id,
            description=f"Merchant resolution failed at {stage} stage",
            details={"stage": stage},
            error_code=stage,
            error_message=error_message,
        )

    @staticmethod
    def category_corrected(
        user_id: UUID,
        expense_id: UUID,
        category_id: UUID,
        merchant_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CORRECTED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Category corrected for merchant {merchant_key}",
            details={
                "category_id": str(category_id),
                "merchant_key": merchant_key,
            },
            is_user_action=True,
        )

    @staticmethod
    def mapping_upserted(
        user_id: UUID,
        mapping_id: UUID,
        merchant_key: str,
        was_created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MAPPING_UPSERTED,
            user_id=user_id,
            entity_type="mapping",
            entity_id=mapping_id,
            correlation_id=correlation_id,
            description=(
                f"Merchant mapping {'created' if was_created else 'updated'}: "
                f"{merchant_key}"
            ),
            details={
                "merchant_key": merchant_key,
                "was_created": was_created,
            },
            is_user_action=True,
        )

    @staticmethod
    def mapping_deleted(
        user_id: UUID,
        mapping_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MAPPING_DELETED,
            user_id=user_id,
            entity_type="mapping",
            entity_id=mapping_id,
            correlation_id=correlation_id,
            description="Merchant mapping deleted",
            is_user_action=True,
        )

    @staticmethod
    def query_executed(
        user_id: UUID,
        query_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            user_id=user_id,
            entity_type="query",
            correlation_id=correlation_id,
            description=f"Query executed: {query_type} returned {result_count} results",
            details={
                "query_type": query_type,
                "result_count": result_count,
            },
        )

    @staticmethod
    def search_degraded(
        user_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SEARCH_DEGRADED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="query",
            correlation_id=correlation_id,
            description="Text search unavailable, used substring match",
            error_message=reason,
        )

    @staticmethod
    def dashboard_computed(
        user_id: UUID,
        month: str,
        timezone: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DASHBOARD_COMPUTED,
            user_id=user_id,
            entity_type="dashboard",
            correlation_id=correlation_id,
            description=f"Dashboard computed for {month}",
            details={
                "month": month,
                "timezone": timezone,
            },
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
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
