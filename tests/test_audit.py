"""
Tests for the audit logger.

Audit writes must never fail the request that triggered them.
"""

import asyncio
from uuid import uuid4

from conftest import DINING_ID, seeded_categories
from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from expense_ledger.models.categorization import AiLogEntry
from expense_ledger.services.storage import InMemoryLedgerStorage


class BrokenLogStorage(InMemoryLedgerStorage):
    async def append_event(self, event):
        raise RuntimeError("audit sheet offline")

    async def append_ai_log(self, entry):
        raise RuntimeError("ai log sheet offline")


def ai_entry(user_id):
    return AiLogEntry(user_id=user_id, query_text="Cafe", provider="stub", latency_ms=12)


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_persists_event(self, storage, audit_logger, user_id):
        """Test that events reach the audit store."""
        event = AuditEventBuilder.mapping_deleted(user_id=user_id, mapping_id=uuid4())

        assert asyncio.run(audit_logger.log(event)) is True
        assert storage.audit_events == [event]

    def test_storage_failure_is_swallowed(self, user_id):
        """Test that a failing audit store returns False instead of raising."""
        storage = BrokenLogStorage(seeded_categories())
        logger = AuditLogger(storage, storage)
        event = AuditEventBuilder.mapping_deleted(user_id=user_id, mapping_id=uuid4())

        assert asyncio.run(logger.log(event)) is False
        assert asyncio.run(logger.record_ai_invocation(ai_entry(user_id))) is False

    def test_local_only_logger(self, user_id):
        """Test that a logger without stores still accepts events."""
        logger = AuditLogger()
        event = AuditEventBuilder.mapping_deleted(user_id=user_id, mapping_id=uuid4())

        assert asyncio.run(logger.log(event)) is True
        assert asyncio.run(logger.record_ai_invocation(ai_entry(user_id))) is True

    def test_ai_invocations_go_to_ai_log(self, storage, audit_logger, user_id):
        """Test that provider calls are stored apart from audit events."""
        asyncio.run(audit_logger.record_ai_invocation(ai_entry(user_id)))

        assert len(storage.ai_logs) == 1
        assert storage.audit_events == []

    def test_correlated_events(self, storage, audit_logger, user_id):
        """Test that one correlation id ties a request's events together."""
        correlation_id = create_correlation_id()
        asyncio.run(audit_logger.log_categorization(
            user_id=user_id,
            outcome_kind="timed_out",
            confidence=None,
            latency_ms=400,
            error_code="provider_timeout",
            correlation_id=correlation_id,
        ))
        asyncio.run(audit_logger.log(AuditEventBuilder.expense_created(
            user_id=user_id,
            expense_id=uuid4(),
            amount="4.50",
            category_id=DINING_ID,
            correlation_id=correlation_id,
        )))
        asyncio.run(audit_logger.log_query_executed(user_id, "expense_list", 3))

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))

        assert [e.event_type for e in events] == [
            AuditEventType.CATEGORIZATION_COMPLETED,
            AuditEventType.EXPENSE_CREATED,
        ]
        assert events[0].severity == AuditSeverity.WARNING
        assert events[0].error_code == "provider_timeout"

    def test_search_degraded_is_a_warning(self, storage, audit_logger, user_id):
        """Test the search fallback event."""
        asyncio.run(audit_logger.log_search_degraded(user_id, "text search is disabled"))

        [event] = storage.audit_events
        assert event.event_type == AuditEventType.SEARCH_DEGRADED
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "text search is disabled"
