"""
Query Models

Filters, pages and analytics snapshots for the read side of the ledger.

Two layers:
1. Caller-facing filters (ExpenseListFilters, DashboardQuery) - what
   the caller asked for, already validated
2. Store-facing ExpenseQuery - absolute UTC bounds, keyset position,
   search mode. This is the only shape storage backends interpret.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from expense_ledger.config import get_settings
from expense_ledger.models.expense import (
    AccountType,
    ExpenseRecord,
    Money,
    ResponseModel,
    ensure_utc,
)
from expense_ledger.utils.cursor import ExpenseCursor
from expense_ledger.utils.timezone import TimeWindow


DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 50


def _dedupe(ids: list[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


def _cap(ids: list[UUID], maximum: int) -> list[UUID]:
    if len(ids) > maximum:
        raise ValueError(f"at most {maximum} category ids are allowed")
    return ids


class SearchMode(str, Enum):
    """
    How the free-text term is matched against search_text.

    TEXT      - word-prefix match on every term (full-text style)
    SUBSTRING - plain containment, the fallback when TEXT is unavailable
    """
    TEXT = "text"
    SUBSTRING = "substring"


class ExpenseListFilters(BaseModel):
    """
    Validated filters for one expense list request.

    CRITICAL: time_range and an explicit date range are mutually exclusive.
    """
    time_range: Optional[TimeWindow] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    category_ids: list[UUID] = Field(default_factory=list)
    account: Optional[AccountType] = None
    search: Optional[str] = Field(default=None, max_length=200)
    include_deleted: bool = False
    cursor: Optional[ExpenseCursor] = None
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)

    @field_validator('date_from', 'date_to')
    @classmethod
    def normalize_bounds(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @field_validator('category_ids')
    @classmethod
    def dedupe_categories(cls, v: list[UUID]) -> list[UUID]:
        return _cap(_dedupe(v), get_settings().app.max_list_category_filters)

    @field_validator('search')
    @classmethod
    def blank_search_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode='after')
    def validate_range(self) -> 'ExpenseListFilters':
        if self.time_range and (self.date_from or self.date_to):
            raise ValueError("time_range cannot be combined with from/to")
        if (self.date_from is None) != (self.date_to is None):
            raise ValueError("from and to must be provided together")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("from must be before or equal to to")
        return self


class ExpenseQuery(BaseModel):
    """
    Declarative read request issued against expense storage.

    Bounds: occurred_from and occurred_to are inclusive, occurred_before
    is exclusive. Any of them may be None.

    Ordering is always (occurred_at DESC, id DESC). When `after` is set
    only rows strictly after that position in this order are returned.
    """
    user_id: UUID
    occurred_from: Optional[datetime] = None
    occurred_to: Optional[datetime] = None
    occurred_before: Optional[datetime] = None
    category_ids: list[UUID] = Field(default_factory=list)
    account: Optional[AccountType] = None
    include_deleted: bool = False
    search: Optional[str] = None
    search_mode: SearchMode = SearchMode.TEXT
    after: Optional[ExpenseCursor] = None
    limit: Optional[int] = Field(default=None, ge=1)

    def with_search_mode(self, mode: SearchMode) -> 'ExpenseQuery':
        return self.model_copy(update={"search_mode": mode})


class ExpensePage(BaseModel):
    """One page of a keyset-paginated expense list."""
    items: list[ExpenseRecord] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    search_mode: Optional[SearchMode] = None

    def to_response(self) -> dict[str, Any]:
        return {
            "items": [item.to_response() for item in self.items],
            "nextCursor": self.next_cursor,
            "hasMore": self.has_more,
        }


# =============================================================================
# DASHBOARD
# =============================================================================

class DashboardQuery(BaseModel):
    """
    Validated dashboard request.

    account=None means all accounts.
    """
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    account: Optional[AccountType] = None
    category_ids: list[UUID] = Field(default_factory=list)

    @field_validator('category_ids')
    @classmethod
    def dedupe_categories(cls, v: list[UUID]) -> list[UUID]:
        return _cap(_dedupe(v), get_settings().app.max_dashboard_category_filters)


class DailyTotal(ResponseModel):
    day: date = Field(..., alias="date")
    total: Money


class CategoryShare(ResponseModel):
    category_id: UUID
    key: Optional[str] = None
    name: Optional[str] = None
    total: Money
    percentage: float


class MonthOverMonth(ResponseModel):
    current: Money
    previous: Money
    absolute: Money
    percent: float


class DashboardSnapshot(ResponseModel):
    """Monthly analytics for one user, bucketed by their local calendar."""
    month: str
    timezone: str
    total: Money
    month_over_month: MonthOverMonth
    daily: list[DailyTotal] = Field(default_factory=list)
    top_categories: list[CategoryShare] = Field(default_factory=list)

    @property
    def expense_days(self) -> int:
        return sum(1 for entry in self.daily if entry.total > Decimal("0"))
