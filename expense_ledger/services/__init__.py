"""
Services package.

Storage backends are re-exported here. The expense, mapping and profile
services live in their own modules and are imported from there.
"""

from expense_ledger.services.storage import (
    AiLogStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    GoogleSheetsClient,
    InMemoryLedgerStorage,
    MerchantMappingStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
    SearchUnavailableError,
    StorageError,
)

__all__ = [
    # Storage services
    "AiLogStorageInterface",
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "ExpenseStorageInterface",
    "GoogleSheetsClient",
    "InMemoryLedgerStorage",
    "MerchantMappingStorageInterface",
    "NotFoundError",
    "ProfileStorageInterface",
    "SearchUnavailableError",
    "StorageError",
]
