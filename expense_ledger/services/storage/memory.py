"""
In-Memory Storage Implementation

Keeps every record kind in plain dicts. Used by the test suite and as
the fallback backend when Google Sheets isn't configured.

Behaves like the other backends: same ordering, same keyset rules,
same upsert semantics. Text search can be switched off to exercise
the substring fallback of the query engine.
"""

import asyncio
from typing import Optional
from uuid import UUID

from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.categorization import AiLogEntry
from expense_ledger.models.expense import (
    Category,
    ExpenseRecord,
    MerchantMapping,
    Profile,
    uncategorized_category,
    utc_now,
)
from expense_ledger.models.query import ExpenseQuery, SearchMode
from expense_ledger.services.storage.filtering import (
    apply_expense_query,
    apply_mapping_page,
)
from expense_ledger.services.storage.interface import (
    AiLogStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    MerchantMappingStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
    SearchUnavailableError,
)
from expense_ledger.utils.cursor import MappingCursor


class InMemoryLedgerStorage(
    ExpenseStorageInterface,
    MerchantMappingStorageInterface,
    CategoryStorageInterface,
    ProfileStorageInterface,
    AiLogStorageInterface,
    AuditStorageInterface,
):
    """
    Single object implementing every storage interface.

    The "uncategorized" category is always present.
    """

    def __init__(
        self,
        categories: Optional[list[Category]] = None,
        text_search_available: bool = True,
    ):
        self.text_search_available = text_search_available
        self.expenses: dict[UUID, ExpenseRecord] = {}
        self.mappings: dict[UUID, MerchantMapping] = {}
        self.categories: dict[UUID, Category] = {}
        self.profiles: dict[UUID, Profile] = {}
        self.ai_logs: list[AiLogEntry] = []
        self.audit_events: list[AuditEvent] = []
        self._mapping_lock = asyncio.Lock()

        for category in [uncategorized_category(), *(categories or [])]:
            self.categories[category.id] = category

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def insert_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        if expense.id in self.expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self.expenses[expense.id] = expense
        return expense

    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        expense = self.expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense

    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        existing = self.expenses.get(expense.id)
        if existing is None or existing.user_id != expense.user_id:
            raise NotFoundError(f"Expense not found: {expense.id}")
        self.expenses[expense.id] = expense
        return expense

    async def query_expenses(self, query: ExpenseQuery) -> list[ExpenseRecord]:
        if (
            query.search
            and query.search_mode == SearchMode.TEXT
            and not self.text_search_available
        ):
            raise SearchUnavailableError("text search is disabled")
        return apply_expense_query(self.expenses.values(), query)

    # -------------------------------------------------------------------------
    # Merchant mappings
    # -------------------------------------------------------------------------

    def _find_mapping(self, user_id: UUID, merchant_key: str) -> Optional[MerchantMapping]:
        key = merchant_key.lower()
        for mapping in self.mappings.values():
            if mapping.user_id == user_id and mapping.merchant_key == key:
                return mapping
        return None

    async def get_mapping_by_key(
        self,
        user_id: UUID,
        merchant_key: str,
    ) -> Optional[MerchantMapping]:
        return self._find_mapping(user_id, merchant_key)

    async def list_mappings_for_user(self, user_id: UUID) -> list[MerchantMapping]:
        return [m for m in self.mappings.values() if m.user_id == user_id]

    async def upsert_mapping(
        self,
        user_id: UUID,
        merchant_key: str,
        category_id: UUID,
    ) -> tuple[MerchantMapping, bool]:
        async with self._mapping_lock:
            existing = self._find_mapping(user_id, merchant_key)
            if existing is None:
                mapping = MerchantMapping(
                    user_id=user_id,
                    merchant_key=merchant_key,
                    category_id=category_id,
                )
                self.mappings[mapping.id] = mapping
                return mapping, True

            if existing.category_id == category_id:
                return existing, False

            updated = existing.model_copy(
                update={"category_id": category_id, "updated_at": utc_now()}
            )
            self.mappings[updated.id] = updated
            return updated, False

    async def get_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
    ) -> Optional[MerchantMapping]:
        mapping = self.mappings.get(mapping_id)
        if mapping is None or mapping.user_id != user_id:
            return None
        return mapping

    async def update_mapping_category(
        self,
        user_id: UUID,
        mapping_id: UUID,
        category_id: UUID,
    ) -> MerchantMapping:
        mapping = await self.get_mapping(user_id, mapping_id)
        if mapping is None:
            raise NotFoundError(f"Mapping not found: {mapping_id}")
        if mapping.category_id == category_id:
            return mapping
        updated = mapping.model_copy(
            update={"category_id": category_id, "updated_at": utc_now()}
        )
        self.mappings[mapping_id] = updated
        return updated

    async def delete_mapping(self, user_id: UUID, mapping_id: UUID) -> bool:
        mapping = await self.get_mapping(user_id, mapping_id)
        if mapping is None:
            return False
        del self.mappings[mapping_id]
        return True

    async def page_mappings(
        self,
        user_id: UUID,
        search: Optional[str] = None,
        after: Optional[MappingCursor] = None,
        limit: int = 50,
    ) -> list[MerchantMapping]:
        return apply_mapping_page(
            await self.list_mappings_for_user(user_id),
            search=search,
            after=after,
            limit=limit,
        )

    # -------------------------------------------------------------------------
    # Categories & profiles
    # -------------------------------------------------------------------------

    async def list_categories(self) -> list[Category]:
        return sorted(self.categories.values(), key=lambda c: (c.sort_order, c.name))

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        return self.categories.get(category_id)

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        return self.profiles.get(user_id)

    async def save_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.id] = profile
        return profile

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------

    async def append_ai_log(self, entry: AiLogEntry) -> bool:
        self.ai_logs.append(entry)
        return True

    async def append_event(self, event: AuditEvent) -> bool:
        self.audit_events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.audit_events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)
