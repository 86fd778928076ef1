"""
Expense Query Engine

DESIGN DECISION: Listing is keyset-paginated, never offset-paginated.

Canonical order is (occurred_at DESC, id DESC) - a total order, since
ids are unique. A page resumes strictly after the (occurred_at, id) of
the last row the caller saw, so rows are never repeated or skipped
between pages, even while new expenses are being inserted.

Each call fetches limit + 1 rows. The extra row is never returned; its
presence is what sets has_more.

Free-text search prefers word matching on the precomputed search_text.
If the store can't do that, we re-run the same query with substring
matching instead of failing the request.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.models.query import (
    ExpenseListFilters,
    ExpensePage,
    ExpenseQuery,
    SearchMode,
)
from expense_ledger.services.storage import (
    ExpenseStorageInterface,
    ProfileStorageInterface,
    SearchUnavailableError,
)
from expense_ledger.utils.cursor import encode_cursor
from expense_ledger.utils.timezone import named_window_bounds, resolve_zone

logger = structlog.get_logger()


class ExpenseQueryErrorCode(str, Enum):
    TIMEZONE_LOOKUP_FAILED = "timezone_lookup_failed"
    QUERY_FAILED = "query_failed"


class ExpenseQueryError(Exception):
    """A store failure while listing; distinct from an empty page."""

    def __init__(self, code: ExpenseQueryErrorCode, message: str):
        self.code = code
        super().__init__(message)


class ExpenseQueryEngine:
    """
    Builds and runs filtered, ordered, paginated expense reads.

    Filters arrive already validated (see RequestValidator); this class
    only turns them into a store query and a page.
    """

    def __init__(
        self,
        storage: ExpenseStorageInterface,
        profile_storage: ProfileStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._profiles = profile_storage
        self._audit = audit_logger or AuditLogger()

    async def _user_timezone(self, user_id: UUID) -> Optional[str]:
        try:
            profile = await self._profiles.get_profile(user_id)
        except Exception as e:
            raise ExpenseQueryError(
                ExpenseQueryErrorCode.TIMEZONE_LOOKUP_FAILED,
                "Unable to load user timezone",
            ) from e
        return profile.timezone if profile else None

    async def build_query(
        self,
        user_id: UUID,
        filters: ExpenseListFilters,
        now: Optional[datetime] = None,
    ) -> ExpenseQuery:
        """Translate caller filters into a store query for limit + 1 rows."""
        occurred_from = filters.date_from
        occurred_to = filters.date_to
        occurred_before = None

        if filters.time_range is not None:
            zone = resolve_zone(await self._user_timezone(user_id))
            occurred_from, occurred_before = named_window_bounds(
                filters.time_range, zone, now
            )

        return ExpenseQuery(
            user_id=user_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            occurred_before=occurred_before,
            category_ids=filters.category_ids,
            account=filters.account,
            include_deleted=filters.include_deleted,
            search=filters.search,
            search_mode=SearchMode.TEXT,
            after=filters.cursor,
            limit=filters.limit + 1,
        )

    async def _fetch(self, query: ExpenseQuery, correlation_id: Optional[UUID]):
        try:
            return await self._storage.query_expenses(query), query.search_mode
        except SearchUnavailableError as e:
            logger.warning("text_search_unavailable", error=str(e))
            await self._audit.log_search_degraded(
                user_id=query.user_id,
                reason=str(e),
                correlation_id=correlation_id,
            )
        except Exception as e:
            raise ExpenseQueryError(
                ExpenseQueryErrorCode.QUERY_FAILED,
                "Unable to load expenses",
            ) from e

        fallback = query.with_search_mode(SearchMode.SUBSTRING)
        try:
            return await self._storage.query_expenses(fallback), fallback.search_mode
        except Exception as e:
            raise ExpenseQueryError(
                ExpenseQueryErrorCode.QUERY_FAILED,
                "Unable to load expenses",
            ) from e

    async def list(
        self,
        user_id: UUID,
        filters: ExpenseListFilters,
        correlation_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> ExpensePage:
        """
        One page of expenses.

        An empty page is a successful result.

        Raises:
            ExpenseQueryError: If the profile or expense store fails
        """
        query = await self.build_query(user_id, filters, now)
        rows, search_mode = await self._fetch(query, correlation_id)

        has_more = len(rows) > filters.limit
        items = rows[:filters.limit]
        next_cursor = (
            encode_cursor(items[-1].occurred_at, items[-1].id)
            if has_more else None
        )

        await self._audit.log_query_executed(
            user_id=user_id,
            query_type="expense_list",
            result_count=len(items),
            correlation_id=correlation_id,
        )

        return ExpensePage(
            items=items,
            next_cursor=next_cursor,
            has_more=has_more,
            search_mode=search_mode if filters.search else None,
        )
