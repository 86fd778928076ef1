"""
Data Models Package

This package contains all Pydantic models used in the Expense Ledger.
All data flowing through the system must conform to these schemas.
"""

from expense_ledger.models.expense import (
    UNCATEGORIZED_CATEGORY_ID,
    UNCATEGORIZED_CATEGORY_KEY,
    AccountType,
    Category,
    CreateExpenseCommand,
    CreateExpenseResult,
    DeleteExpenseResult,
    ExpenseDraft,
    ExpenseRecord,
    MappingPage,
    MappingUpsertResult,
    MerchantMapping,
    Profile,
    ResponseModel,
    RestoreExpenseResult,
    UpdateExpenseCommand,
    uncategorized_category,
    utc_now,
)
from expense_ledger.models.categorization import (
    AiErrorCode,
    AiLogEntry,
    CategorizationOutcome,
    CategorySuggestion,
    MappingMatch,
    MatchType,
    OutcomeKind,
    rank_suggestions,
)
from expense_ledger.models.query import (
    CategoryShare,
    DailyTotal,
    DashboardQuery,
    DashboardSnapshot,
    ExpenseListFilters,
    ExpensePage,
    ExpenseQuery,
    MonthOverMonth,
    SearchMode,
)
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "UNCATEGORIZED_CATEGORY_ID",
    "UNCATEGORIZED_CATEGORY_KEY",
    "AccountType",
    "Category",
    "CreateExpenseCommand",
    "CreateExpenseResult",
    "DeleteExpenseResult",
    "ExpenseDraft",
    "ExpenseRecord",
    "MappingPage",
    "MappingUpsertResult",
    "MerchantMapping",
    "Profile",
    "ResponseModel",
    "RestoreExpenseResult",
    "UpdateExpenseCommand",
    "uncategorized_category",
    "utc_now",
    # Categorization models
    "AiErrorCode",
    "AiLogEntry",
    "CategorizationOutcome",
    "CategorySuggestion",
    "MappingMatch",
    "MatchType",
    "OutcomeKind",
    "rank_suggestions",
    # Query models
    "CategoryShare",
    "DailyTotal",
    "DashboardQuery",
    "DashboardSnapshot",
    "ExpenseListFilters",
    "ExpensePage",
    "ExpenseQuery",
    "MonthOverMonth",
    "SearchMode",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
