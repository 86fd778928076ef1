"""
Dashboard Aggregator

Monthly analytics for one user:
- total spend for the month
- month-over-month delta against the previous month
- one daily total per calendar day (zero days included)
- category breakdown with percentage share

DESIGN DECISION: Months and days are the USER's local calendar, not
the server's. A purchase at 23:30 in Los Angeles on March 31st belongs
to March even though it is stored as April 1st UTC.

Amounts stay Decimal throughout; only percentages are floats.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.config import get_settings
from expense_ledger.models.audit import AuditEventBuilder
from expense_ledger.models.expense import AccountType, ExpenseRecord
from expense_ledger.models.query import (
    CategoryShare,
    DailyTotal,
    DashboardSnapshot,
    ExpenseQuery,
    MonthOverMonth,
)
from expense_ledger.services.storage import (
    CategoryStorageInterface,
    ExpenseStorageInterface,
    ProfileStorageInterface,
)
from expense_ledger.utils.timezone import (
    UTC_NAME,
    current_month,
    local_date,
    month_bounds,
    month_days,
    parse_month,
    previous_month,
    resolve_zone,
)

logger = structlog.get_logger()

ZERO = Decimal("0")
ALL_ACCOUNTS = "all"


class DashboardErrorCode(str, Enum):
    PROFILE_LOOKUP_FAILED = "profile_lookup_failed"
    PROFILE_NOT_FOUND = "profile_not_found"
    METRICS_FAILED = "metrics_failed"
    INVALID_ACCOUNT = "invalid_account"
    TOO_MANY_CATEGORIES = "too_many_categories"


class DashboardError(Exception):
    def __init__(self, code: DashboardErrorCode, message: str):
        self.code = code
        super().__init__(message)


def month_over_month(current: Decimal, previous: Decimal) -> MonthOverMonth:
    """
    Absolute and percent change from previous to current.

    previous == 0 is special-cased: 100% if anything was spent, else 0%.
    """
    if previous == ZERO:
        percent = 100.0 if current > ZERO else 0.0
    else:
        percent = float((current - previous) / previous * 100)
    return MonthOverMonth(
        current=current,
        previous=previous,
        absolute=current - previous,
        percent=percent,
    )


def category_percentage(total: Decimal, grand_total: Decimal) -> float:
    if grand_total == ZERO:
        return 0.0
    return float(total / grand_total * 100)


def daily_series(
    expenses: list[ExpenseRecord],
    month: str,
    zone,
) -> list[DailyTotal]:
    """One entry per day of the month, bucketed by local date."""
    totals: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for expense in expenses:
        totals[local_date(expense.occurred_at, zone)] += expense.amount
    return [DailyTotal(day=day, total=totals[day]) for day in month_days(month)]


class DashboardAggregator:
    """Computes DashboardSnapshot from the user's non-deleted expenses."""

    def __init__(
        self,
        storage: ExpenseStorageInterface,
        profile_storage: ProfileStorageInterface,
        category_storage: CategoryStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._profiles = profile_storage
        self._categories = category_storage
        self._audit = audit_logger or AuditLogger()
        self._settings = get_settings().app

    async def _user_timezone(self, user_id: UUID) -> str:
        try:
            profile = await self._profiles.get_profile(user_id)
        except Exception as e:
            raise DashboardError(
                DashboardErrorCode.PROFILE_LOOKUP_FAILED,
                "Unable to load user timezone",
            ) from e
        if profile is None:
            raise DashboardError(
                DashboardErrorCode.PROFILE_NOT_FOUND,
                "Profile not found for user",
            )
        return profile.timezone or UTC_NAME

    async def _month_expenses(
        self,
        user_id: UUID,
        month: str,
        zone,
        account: Optional[AccountType],
        category_ids: list[UUID],
    ) -> list[ExpenseRecord]:
        start, end = month_bounds(month, zone)
        return await self._storage.query_expenses(
            ExpenseQuery(
                user_id=user_id,
                occurred_from=start,
                occurred_before=end,
                account=account,
                category_ids=category_ids,
                include_deleted=False,
            )
        )

    async def _category_shares(
        self,
        expenses: list[ExpenseRecord],
        grand_total: Decimal,
    ) -> list[CategoryShare]:
        totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for expense in expenses:
            totals[expense.category_id] += expense.amount

        catalogue = {c.id: c for c in await self._categories.list_categories()}

        shares = []
        for category_id, total in totals.items():
            if total == ZERO:
                continue
            category = catalogue.get(category_id)
            shares.append(
                CategoryShare(
                    category_id=category_id,
                    key=category.key if category else None,
                    name=category.name if category else None,
                    total=total,
                    percentage=category_percentage(total, grand_total),
                )
            )
        shares.sort(key=lambda share: share.total, reverse=True)
        return shares

    async def aggregate(
        self,
        user_id: UUID,
        month: Optional[str] = None,
        account: Optional[Union[AccountType, str]] = None,
        category_ids: Optional[list[UUID]] = None,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> DashboardSnapshot:
        """
        Build the dashboard for a month (default: the user's current month).

        Raises:
            DashboardError: On an unknown account, too many categories,
                or profile or store failure
            TimezoneError: If month is not a valid YYYY-MM string
        """
        account_filter = None
        if account is not None and account != ALL_ACCOUNTS:
            try:
                account_filter = AccountType(account)
            except ValueError as e:
                raise DashboardError(
                    DashboardErrorCode.INVALID_ACCOUNT,
                    "account must be cash, card or all",
                ) from e
        categories = list(dict.fromkeys(category_ids or []))
        if len(categories) > self._settings.max_dashboard_category_filters:
            raise DashboardError(
                DashboardErrorCode.TOO_MANY_CATEGORIES,
                f"at most {self._settings.max_dashboard_category_filters} category ids are allowed",
            )

        timezone_name = timezone or await self._user_timezone(user_id)
        zone = resolve_zone(timezone_name)

        target_month = month or current_month(zone, now)
        parse_month(target_month)
        prior_month = previous_month(target_month)

        try:
            current = await self._month_expenses(
                user_id, target_month, zone, account_filter, categories
            )
            previous = await self._month_expenses(
                user_id, prior_month, zone, account_filter, categories
            )
            current_total = sum((e.amount for e in current), ZERO)
            previous_total = sum((e.amount for e in previous), ZERO)
            top_categories = await self._category_shares(current, current_total)
        except Exception as e:
            logger.error("dashboard_metrics_failed", user_id=str(user_id), error=str(e))
            raise DashboardError(
                DashboardErrorCode.METRICS_FAILED,
                "Unable to compute dashboard metrics",
            ) from e

        snapshot = DashboardSnapshot(
            month=target_month,
            timezone=zone.key,
            total=current_total,
            month_over_month=month_over_month(current_total, previous_total),
            daily=daily_series(current, target_month, zone),
            top_categories=top_categories,
        )

        await self._audit.log(
            AuditEventBuilder.dashboard_computed(
                user_id=user_id,
                month=target_month,
                timezone=zone.key,
                correlation_id=correlation_id,
            )
        )
        return snapshot
