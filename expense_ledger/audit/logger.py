"""
Audit Logger

DESIGN DECISION: Every significant action in the ledger is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A record of every AI provider call (latency, confidence, timeouts)

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the request if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_ledger.models.categorization import AiLogEntry
from expense_ledger.services.storage import AiLogStorageInterface, AuditStorageInterface


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
    2. The audit store (for persistence and user visibility)

    Provider invocations additionally go to the AI log store.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        ai_log_storage: Optional[AiLogStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for audit events.
                    If None, only logs locally.
            ai_log_storage: Storage backend for provider invocations.
                    If None, only logs locally.
        """
        self._storage = storage
        self._ai_log_storage = ai_log_storage
        self._logger = structlog.get_logger()

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

    async def record_ai_invocation(self, entry: AiLogEntry) -> bool:
        """
        Record one categorization provider call.

        Never raises: a failed write must not change the categorization
        outcome the caller receives.
        """
        log_dict = entry.to_log_dict()
        if entry.timed_out or entry.error_code:
            self._logger.warning("ai_invocation", **log_dict)
        else:
            self._logger.info("ai_invocation", **log_dict)

        if self._ai_log_storage:
            try:
                return await self._ai_log_storage.append_ai_log(entry)
            except Exception as e:
                self._logger.error(
                    "ai_log_storage_failed",
                    error=str(e),
                    ai_log_id=str(entry.id),
                )
                return False

        return True

    async def log_categorization(
        self,
        user_id: UUID,
        outcome_kind: str,
        confidence: Optional[float],
        latency_ms: int,
        error_code: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the terminal state of a categorization."""
        event = AuditEventBuilder.categorization_completed(
            user_id=user_id,
            outcome_kind=outcome_kind,
            confidence=confidence,
            latency_ms=latency_ms,
            error_code=error_code,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_resolution_failed(
        self,
        user_id: UUID,
        stage: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a merchant mapping lookup failure."""
        event = AuditEventBuilder.merchant_resolution_failed(
            user_id=user_id,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_query_executed(
        self,
        user_id: UUID,
        query_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log query execution."""
        event = AuditEventBuilder.query_executed(
            user_id=user_id,
            query_type=query_type,
            result_count=result_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_search_degraded(
        self,
        user_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a fall back from text search to substring matching."""
        event = AuditEventBuilder.search_degraded(
            user_id=user_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
