"""
Shared fixtures for Expense Ledger tests.

Everything runs against InMemoryLedgerStorage and stub providers.
No test touches the network.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from expense_ledger.agents import CategorizationProvider, ProviderError, ProviderErrorCode
from expense_ledger.audit import AuditLogger
from expense_ledger.models.categorization import CategorySuggestion
from expense_ledger.models.expense import (
    AccountType,
    Category,
    ExpenseDraft,
    ExpenseRecord,
    Profile,
)
from expense_ledger.services.storage import InMemoryLedgerStorage
from expense_ledger.utils.similarity import SimilarityScorer


GROCERIES_ID = UUID("11111111-1111-1111-1111-111111111111")
DINING_ID = UUID("22222222-2222-2222-2222-222222222222")
TRANSPORT_ID = UUID("33333333-3333-3333-3333-333333333333")
SHOPPING_ID = UUID("44444444-4444-4444-4444-444444444444")


def seeded_categories() -> list[Category]:
    return [
        Category(id=GROCERIES_ID, key="groceries", name="Groceries", sort_order=1),
        Category(id=DINING_ID, key="dining", name="Dining", sort_order=2),
        Category(id=TRANSPORT_ID, key="transport", name="Transport", sort_order=3),
        Category(id=SHOPPING_ID, key="shopping", name="Shopping", sort_order=4),
    ]


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_expense(
    user_id: UUID,
    occurred_at: datetime,
    amount: str = "10.00",
    name: str = "Corner Store",
    description: Optional[str] = None,
    category_id: UUID = GROCERIES_ID,
    account: Optional[AccountType] = AccountType.CARD,
    deleted_at: Optional[datetime] = None,
    expense_id: Optional[UUID] = None,
) -> ExpenseRecord:
    return ExpenseRecord(
        id=expense_id or uuid4(),
        user_id=user_id,
        amount=Decimal(amount),
        name=name,
        description=description,
        occurred_at=occurred_at,
        account=account,
        category_id=category_id,
        deleted_at=deleted_at,
    )


def make_draft(name: str = "Starbucks #1234", **overrides) -> ExpenseDraft:
    data = {
        "amount": Decimal("4.50"),
        "name": name,
        "occurred_at": utc(2024, 3, 10, 9, 30),
        "account": AccountType.CARD,
    }
    data.update(overrides)
    return ExpenseDraft(**data)


class StubProvider(CategorizationProvider):
    """Answers with fixed suggestions after an optional delay."""

    provider_id = "stub"

    def __init__(
        self,
        suggestions: Optional[list[CategorySuggestion]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.model = "stub-model"
        self.suggestions = suggestions or []
        self.delay = delay
        self.error = error
        self.calls = 0

    async def suggest(self, draft, categories):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.suggestions)


class FixedScorer(SimilarityScorer):
    """Returns preset scores per candidate key, 0.0 otherwise."""

    def __init__(self, scores: dict[str, float]):
        self.scores = scores

    def score(self, left: str, right: str) -> float:
        return self.scores.get(right, 0.0)


class FailingMappingStorage(InMemoryLedgerStorage):
    """Mapping reads blow up; everything else works."""

    async def get_mapping_by_key(self, user_id, merchant_key):
        raise RuntimeError("mapping store offline")

    async def list_mappings_for_user(self, user_id):
        raise RuntimeError("mapping store offline")


class FailingExpenseStorage(InMemoryLedgerStorage):
    """Expense reads blow up."""

    async def query_expenses(self, query):
        raise RuntimeError("expense store offline")


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage(categories=seeded_categories())


@pytest.fixture
def audit_logger(storage) -> AuditLogger:
    return AuditLogger(storage, storage)


@pytest.fixture
def profile(storage, user_id) -> Profile:
    profile = Profile(id=user_id, timezone="UTC", last_account=AccountType.CARD)
    storage.profiles[user_id] = profile
    return profile


@pytest.fixture
def suggestion():
    def build(category_id: UUID, confidence: float) -> CategorySuggestion:
        return CategorySuggestion(category_id=category_id, confidence=confidence)
    return build


@pytest.fixture
def provider_error():
    return ProviderError(ProviderErrorCode.PROVIDER_ERROR, "upstream 503")
