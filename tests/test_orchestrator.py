"""
End-to-end tests for the application flows.

Components are built by create_app_components against an in-memory
store, with a stub categorization provider.
"""

import asyncio

import pytest

from conftest import DINING_ID, GROCERIES_ID, TRANSPORT_ID, StubProvider
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.categorization import OutcomeKind
from expense_ledger.models.expense import UNCATEGORIZED_CATEGORY_ID, Profile
from expense_ledger.orchestrator import create_app_components
from expense_ledger.services.expenses import ExpenseServiceError, ExpenseServiceErrorCode
from expense_ledger.validation import RequestValidationError, ValidationErrorCode


PAYLOAD = {
    "amount": 18.4,
    "name": "Uber Trip",
    "occurredAt": "2024-03-10T09:30:00Z",
}


@pytest.fixture
def components(storage, profile, suggestion):
    provider = StubProvider([suggestion(TRANSPORT_ID, 0.91), suggestion(DINING_ID, 0.05)])
    return create_app_components(use_storage=False, provider=provider, memory_storage=storage)


class TestExpenseFlow:
    """Tests for creating and correcting expenses."""

    def test_create_auto_categorizes(self, components, storage, user_id):
        """Test that a confident answer is applied to the new expense."""
        expense_flow, _, _, _, sheets_client = components

        result, outcome = asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        assert sheets_client is None
        assert outcome.kind == OutcomeKind.AUTO_APPLIED
        assert result.expense.category_id == TRANSPORT_ID
        assert len(storage.ai_logs) == 1

    def test_explicit_category_skips_categorization(self, components, storage, user_id):
        """Test that a chosen category is kept as is."""
        expense_flow = components[0]

        result, outcome = asyncio.run(expense_flow.create_expense(
            user_id, {**PAYLOAD, "categoryId": str(GROCERIES_ID)},
        ))

        assert outcome is None
        assert result.expense.category_id == GROCERIES_ID
        assert storage.ai_logs == []

    def test_suggestion_leaves_expense_uncategorized(self, storage, profile, user_id, suggestion):
        """Test that a weak answer never changes the category."""
        provider = StubProvider([suggestion(DINING_ID, 0.4)])
        expense_flow = create_app_components(
            use_storage=False, provider=provider, memory_storage=storage,
        )[0]

        result, outcome = asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        assert outcome.kind == OutcomeKind.SUGGESTED
        assert result.expense.category_id == UNCATEGORIZED_CATEGORY_ID

    def test_correction_teaches_mapping(self, components, storage, user_id):
        """Test that after a correction the same merchant maps without AI."""
        expense_flow, mapping_flow, _, _, _ = components
        created, _ = asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        expense, learned = asyncio.run(
            expense_flow.correct_category(user_id, created.expense.id, DINING_ID)
        )
        _, outcome = asyncio.run(
            expense_flow.create_expense(user_id, {**PAYLOAD, "name": "UBER  TRIP"})
        )

        assert expense.category_id == DINING_ID
        assert learned.mapping.merchant_key == "ubertrip"
        assert outcome.kind == OutcomeKind.MAPPED
        assert outcome.auto_applied_category_id == DINING_ID
        assert len(storage.ai_logs) == 1
        assert any(
            e.event_type == AuditEventType.CATEGORY_CORRECTED for e in storage.audit_events
        )

        page = asyncio.run(mapping_flow.list_mappings(user_id, {"limit": "10"}))
        assert [m.merchant_key for m in page.items] == ["ubertrip"]

    def test_invalid_payload_is_rejected_before_categorization(self, components, storage, user_id):
        """Test that a bad body never reaches the provider."""
        expense_flow = components[0]

        with pytest.raises(RequestValidationError):
            asyncio.run(expense_flow.create_expense(user_id, {**PAYLOAD, "amount": 0}))

        assert storage.ai_logs == []
        assert storage.expenses == {}

    def test_missing_profile_fails_before_categorization(self, storage, user_id, suggestion):
        """Test that a user without a profile never reaches the provider."""
        provider = StubProvider([suggestion(TRANSPORT_ID, 0.91)])
        expense_flow = create_app_components(
            use_storage=False, provider=provider, memory_storage=storage,
        )[0]

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        assert exc_info.value.code == ExpenseServiceErrorCode.PROFILE_NOT_FOUND
        assert provider.calls == 0
        assert storage.ai_logs == []

    def test_missing_account_fails_before_categorization(self, storage, user_id, suggestion):
        """Test that no account and no remembered default skips the provider."""
        storage.profiles[user_id] = Profile(id=user_id, timezone="UTC")
        provider = StubProvider([suggestion(TRANSPORT_ID, 0.91)])
        expense_flow = create_app_components(
            use_storage=False, provider=provider, memory_storage=storage,
        )[0]

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        assert exc_info.value.code == ExpenseServiceErrorCode.ACCOUNT_REQUIRED
        assert provider.calls == 0
        assert storage.ai_logs == []
        assert storage.expenses == {}


class TestQueryFlow:
    """Tests for the read side."""

    def test_list_and_dashboard(self, components, user_id):
        """Test listing and the dashboard over created expenses."""
        expense_flow, _, query_flow, _, _ = components
        asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        page = asyncio.run(query_flow.list_expenses(user_id, {"limit": "10"}))
        snapshot = asyncio.run(query_flow.dashboard(user_id, {"month": "2024-03"}))

        assert len(page.items) == 1
        assert float(snapshot.total) == pytest.approx(18.4)
        assert snapshot.top_categories[0].category_id == TRANSPORT_ID

    def test_bad_cursor_never_reaches_store(self, storage, profile, user_id):
        """Test that cursor validation happens before any store access."""
        calls = []

        class CountingStorage(type(storage)):
            async def query_expenses(self, query):
                calls.append(query)
                return await super().query_expenses(query)

        counting = CountingStorage()
        counting.profiles = storage.profiles
        query_flow = create_app_components(
            use_storage=False, provider=StubProvider(), memory_storage=counting,
        )[2]

        with pytest.raises(RequestValidationError) as exc_info:
            asyncio.run(query_flow.list_expenses(user_id, {"cursor": "garbage"}))

        assert exc_info.value.code == ValidationErrorCode.INVALID_CURSOR
        assert calls == []

    def test_list_categories(self, components):
        """Test that the catalogue is exposed."""
        query_flow = components[2]

        categories = asyncio.run(query_flow.list_categories(include_uncategorized=False))

        assert [c.key for c in categories] == ["groceries", "dining", "transport", "shopping"]


class TestFactory:
    """Tests for create_app_components."""

    def test_unconfigured_sheets_falls_back_to_memory(self, monkeypatch):
        """Test that missing Google Sheets settings don't break startup."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        components = create_app_components(use_storage=True, provider=StubProvider())

        assert len(components) == 5
        assert components[4] is None

    def test_unconfigured_provider_disables_ai(self, monkeypatch, user_id, storage, profile):
        """Test that without a Gemini key the AI path reports unavailable."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        expense_flow = create_app_components(use_storage=False, memory_storage=storage)[0]

        _, outcome = asyncio.run(expense_flow.create_expense(user_id, PAYLOAD))

        assert outcome.kind == OutcomeKind.TIMED_OUT
        assert outcome.error_code.value == "provider_unavailable"
