"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory backend serves
tests and unconfigured environments.
"""

from expense_ledger.services.storage.interface import (
    AiLogStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    MerchantMappingStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
    SearchUnavailableError,
    StorageError,
)
from expense_ledger.services.storage.memory import InMemoryLedgerStorage
from expense_ledger.services.storage.google_sheets import (
    GoogleSheetsAiLogStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsMappingStorage,
    GoogleSheetsProfileStorage,
)

__all__ = [
    # Interfaces
    "AiLogStorageInterface",
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "ExpenseStorageInterface",
    "MerchantMappingStorageInterface",
    "ProfileStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "SearchUnavailableError",
    "StorageError",
    # In-memory implementation
    "InMemoryLedgerStorage",
    # Google Sheets implementation
    "GoogleSheetsAiLogStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsCategoryStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "GoogleSheetsMappingStorage",
    "GoogleSheetsProfileStorage",
]
