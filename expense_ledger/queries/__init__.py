"""Expense listing and dashboard analytics."""

from expense_ledger.queries.dashboard import (
    DashboardAggregator,
    DashboardError,
    DashboardErrorCode,
)
from expense_ledger.queries.engine import (
    ExpenseQueryEngine,
    ExpenseQueryError,
    ExpenseQueryErrorCode,
)

__all__ = [
    "DashboardAggregator",
    "DashboardError",
    "DashboardErrorCode",
    "ExpenseQueryEngine",
    "ExpenseQueryError",
    "ExpenseQueryErrorCode",
]
