"""
Main Orchestrator for Expense Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Expenses (draft -> categorize -> persist -> correct/edit/trash/restore)
2. Merchant mappings (the user's learned merchant -> category overrides)
3. Queries (paginated expense lists and the monthly dashboard)

DESIGN DECISION: The flows enforce the boundaries:
- Raw parameters are validated before any store access
- A user correction always feeds the learning loop
- Every step is audited under one correlation id per request

This is the "glue" that callers (an HTTP layer, a CLI, tests) talk to.
"""

from typing import Any, Mapping, Optional, Union
from uuid import UUID

import structlog

from expense_ledger.agents import CategorizationProvider, GeminiCategorizationProvider
from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.categorization import CategorizationOrchestrator, MappingResolver
from expense_ledger.config import get_settings
from expense_ledger.models.audit import AuditEventBuilder
from expense_ledger.models.categorization import CategorizationOutcome, MappingMatch
from expense_ledger.models.expense import (
    UNCATEGORIZED_CATEGORY_ID,
    Category,
    CreateExpenseCommand,
    CreateExpenseResult,
    DeleteExpenseResult,
    ExpenseDraft,
    ExpenseRecord,
    MappingPage,
    MappingUpsertResult,
    MerchantMapping,
    RestoreExpenseResult,
    UpdateExpenseCommand,
)
from expense_ledger.models.query import DashboardSnapshot, ExpensePage
from expense_ledger.queries import DashboardAggregator, ExpenseQueryEngine
from expense_ledger.services.expenses import ExpenseService
from expense_ledger.services.mappings import MerchantMappingService
from expense_ledger.services.profiles import CategoryService, ProfileService
from expense_ledger.services.storage import (
    GoogleSheetsAiLogStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsMappingStorage,
    GoogleSheetsProfileStorage,
    InMemoryLedgerStorage,
)
from expense_ledger.validation import RequestValidator
from expense_ledger.validation.validator import parse_limit

logger = structlog.get_logger()


class ExpenseFlow:
    """
    Orchestrates the expense lifecycle.

    Flow for a new expense:
    1. Draft arrives (validated payload or command); profile and account
       are checked before anything else
    2. No category given -> CategorizationOrchestrator decides
       (mapping, auto-applied AI, or left uncategorized with suggestions)
    3. ExpenseService persists it
    4. A later user correction updates the expense AND teaches the mapping
    """

    def __init__(
        self,
        expense_service: ExpenseService,
        categorizer: CategorizationOrchestrator,
        resolver: MappingResolver,
        validator: Optional[RequestValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._expenses = expense_service
        self._categorizer = categorizer
        self._resolver = resolver
        self._validator = validator or RequestValidator()
        self._audit_logger = audit_logger or AuditLogger()

    async def resolve_merchant(self, user_id: UUID, merchant_name: str) -> Optional[MappingMatch]:
        """Mapping lookup only; no AI call."""
        return await self._resolver.resolve(user_id, merchant_name)

    async def categorize(
        self,
        user_id: UUID,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> CategorizationOutcome:
        correlation_id = correlation_id or create_correlation_id()
        return await self._categorizer.categorize(user_id, draft, correlation_id=correlation_id)

    async def create_expense(
        self,
        user_id: UUID,
        payload: Union[CreateExpenseCommand, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[CreateExpenseResult, Optional[CategorizationOutcome]]:
        """
        Create an expense, categorizing it first when no category was chosen.

        Returns:
            (result, outcome) - outcome is None when the caller named a category
        """
        correlation_id = correlation_id or create_correlation_id()
        command = (
            payload if isinstance(payload, CreateExpenseCommand)
            else self._validator.parse_expense_draft(payload)
        )

        # Fail on profile/account before paying for a provider call
        profile = await self._expenses.prepare_create(user_id, command)

        outcome = None
        if command.category_id is None:
            outcome = await self._categorizer.categorize(
                user_id, command, correlation_id=correlation_id
            )
            category_id = (
                outcome.auto_applied_category_id if outcome.applied
                else UNCATEGORIZED_CATEGORY_ID
            )
            command = command.model_copy(update={"category_id": category_id})

        result = await self._expenses.create_expense(
            user_id, command, correlation_id=correlation_id, profile=profile
        )
        return result, outcome

    async def correct_category(
        self,
        user_id: UUID,
        expense_id: UUID,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[ExpenseRecord, MappingUpsertResult]:
        """
        The user picked a category for an expense.

        The expense is updated, then the choice is remembered for the
        merchant so the next expense there is MAPPED.
        """
        correlation_id = correlation_id or create_correlation_id()

        expense = await self._expenses.update_expense(
            user_id,
            expense_id,
            UpdateExpenseCommand(category_id=category_id),
            correlation_id=correlation_id,
        )
        learned = await self._categorizer.learn_from_correction(
            user_id, expense.name, category_id, correlation_id=correlation_id
        )

        await self._audit_logger.log(
            AuditEventBuilder.category_corrected(
                user_id=user_id,
                expense_id=expense.id,
                category_id=category_id,
                merchant_key=learned.mapping.merchant_key,
                correlation_id=correlation_id,
            )
        )
        return expense, learned

    async def get_expense(self, user_id: UUID, expense_id: UUID) -> ExpenseRecord:
        return await self._expenses.get_expense(user_id, expense_id)

    async def update_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        command: UpdateExpenseCommand,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseRecord:
        correlation_id = correlation_id or create_correlation_id()
        return await self._expenses.update_expense(
            user_id, expense_id, command, correlation_id=correlation_id
        )

    async def delete_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> DeleteExpenseResult:
        correlation_id = correlation_id or create_correlation_id()
        return await self._expenses.soft_delete_expense(
            user_id, expense_id, correlation_id=correlation_id
        )

    async def restore_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> RestoreExpenseResult:
        correlation_id = correlation_id or create_correlation_id()
        return await self._expenses.restore_expense(
            user_id, expense_id, correlation_id=correlation_id
        )


class MerchantMappingFlow:
    """Settings-screen management of merchant overrides."""

    def __init__(self, mapping_service: MerchantMappingService):
        self._mappings = mapping_service
        self._settings = get_settings().app

    async def upsert_mapping(
        self,
        user_id: UUID,
        merchant_name: str,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MappingUpsertResult:
        correlation_id = correlation_id or create_correlation_id()
        return await self._mappings.upsert_mapping(
            user_id, merchant_name, category_id, correlation_id=correlation_id
        )

    async def list_mappings(
        self,
        user_id: UUID,
        params: Optional[Mapping[str, Any]] = None,
    ) -> MappingPage:
        """Raw params: search, cursor, limit."""
        params = params or {}
        limit = parse_limit(
            params.get("limit"),
            self._settings.default_mapping_page_size,
            self._settings.max_mapping_page_size,
        )
        return await self._mappings.list_mappings(
            user_id,
            search=params.get("search"),
            cursor=params.get("cursor"),
            limit=limit,
        )

    async def update_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MerchantMapping:
        correlation_id = correlation_id or create_correlation_id()
        return await self._mappings.update_mapping(
            user_id, mapping_id, category_id, correlation_id=correlation_id
        )

    async def delete_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        await self._mappings.delete_mapping(
            user_id, mapping_id, correlation_id=correlation_id
        )


class QueryFlow:
    """
    Orchestrates the read side.

    CRITICAL BOUNDARY: raw parameters are validated first. A malformed
    cursor or filter never reaches the store.
    """

    def __init__(
        self,
        query_engine: ExpenseQueryEngine,
        dashboard: DashboardAggregator,
        category_service: CategoryService,
        validator: Optional[RequestValidator] = None,
    ):
        self._engine = query_engine
        self._dashboard = dashboard
        self._categories = category_service
        self._validator = validator or RequestValidator()

    async def list_expenses(
        self,
        user_id: UUID,
        params: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ExpensePage:
        correlation_id = correlation_id or create_correlation_id()
        filters = self._validator.parse_expense_list_query(params or {})
        return await self._engine.list(user_id, filters, correlation_id=correlation_id)

    async def dashboard(
        self,
        user_id: UUID,
        params: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DashboardSnapshot:
        correlation_id = correlation_id or create_correlation_id()
        query = self._validator.parse_dashboard_query(params or {})
        return await self._dashboard.aggregate(
            user_id,
            month=query.month,
            account=query.account,
            category_ids=query.category_ids,
            correlation_id=correlation_id,
        )

    async def list_categories(self, include_uncategorized: bool = True) -> list[Category]:
        return await self._categories.list_categories(include_uncategorized)


def create_app_components(
    use_storage: bool = True,
    provider: Optional[CategorizationProvider] = None,
    memory_storage: Optional[InMemoryLedgerStorage] = None,
) -> tuple[ExpenseFlow, MerchantMappingFlow, QueryFlow, ProfileService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.
        provider: Categorization provider override. When None, Gemini is
                  used if configured; otherwise the AI path is disabled.
        memory_storage: In-memory store used when Google Sheets is not.
                  A fresh empty one is created when None.

    Returns:
        (expense_flow, mapping_flow, query_flow, profile_service, sheets_client)
    """
    sheets_client = None
    memory = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            expense_storage = GoogleSheetsExpenseStorage(sheets_client)
            mapping_storage = GoogleSheetsMappingStorage(sheets_client)
            category_storage = GoogleSheetsCategoryStorage(sheets_client)
            profile_storage = GoogleSheetsProfileStorage(sheets_client)
            audit_logger = AuditLogger(
                GoogleSheetsAuditStorage(sheets_client),
                GoogleSheetsAiLogStorage(sheets_client),
            )
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            memory = memory_storage or InMemoryLedgerStorage()
    else:
        memory = memory_storage or InMemoryLedgerStorage()

    if memory is not None:
        expense_storage = mapping_storage = category_storage = profile_storage = memory
        audit_logger = AuditLogger(memory, memory)

    if provider is None:
        try:
            provider = GeminiCategorizationProvider()
        except Exception as e:
            logger.warning("categorization_provider_not_configured", error=str(e))
            provider = None

    mapping_service = MerchantMappingService(mapping_storage, category_storage, audit_logger)
    resolver = MappingResolver(mapping_storage)
    categorizer = CategorizationOrchestrator(
        resolver,
        category_storage,
        provider=provider,
        mapping_service=mapping_service,
        audit_logger=audit_logger,
    )
    validator = RequestValidator()

    expense_flow = ExpenseFlow(
        expense_service=ExpenseService(
            expense_storage, profile_storage, category_storage, audit_logger
        ),
        categorizer=categorizer,
        resolver=resolver,
        validator=validator,
        audit_logger=audit_logger,
    )
    mapping_flow = MerchantMappingFlow(mapping_service)
    query_flow = QueryFlow(
        query_engine=ExpenseQueryEngine(expense_storage, profile_storage, audit_logger),
        dashboard=DashboardAggregator(
            expense_storage, profile_storage, category_storage, audit_logger
        ),
        category_service=CategoryService(category_storage),
        validator=validator,
    )
    profile_service = ProfileService(profile_storage, audit_logger)

    return expense_flow, mapping_flow, query_flow, profile_service, sheets_client
