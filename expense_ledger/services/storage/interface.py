"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The record store is an external collaborator. The ledger only issues
declarative reads (ExpenseQuery), single-row writes and one atomic
upsert keyed on (user, merchant_key). It never manages transactions.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.categorization import AiLogEntry
from expense_ledger.models.expense import (
    Category,
    ExpenseRecord,
    MerchantMapping,
    Profile,
)
from expense_ledger.models.query import ExpenseQuery
from expense_ledger.utils.cursor import MappingCursor


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def insert_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        """
        Persist a new expense.

        Raises:
            DuplicateError: If an expense with this id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        """
        Retrieve one expense owned by the user, deleted or not.

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        """
        Replace an existing expense row.

        Raises:
            NotFoundError: If the expense doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def query_expenses(self, query: ExpenseQuery) -> list[ExpenseRecord]:
        """
        Run a declarative read.

        Rows are ordered by (occurred_at DESC, id DESC) and start strictly
        after query.after when it is set. At most query.limit rows.

        Raises:
            SearchUnavailableError: If query.search is set with TEXT mode
                and the backend cannot do word matching
            StorageError: If the read fails
        """
        pass


class MerchantMappingStorageInterface(ABC):
    """Abstract interface for per-user merchant -> category overrides."""

    @abstractmethod
    async def get_mapping_by_key(
        self,
        user_id: UUID,
        merchant_key: str,
    ) -> Optional[MerchantMapping]:
        """Exact, case-insensitive lookup on (user, merchant_key)."""
        pass

    @abstractmethod
    async def list_mappings_for_user(self, user_id: UUID) -> list[MerchantMapping]:
        """Every mapping the user owns, for the fuzzy similarity scan."""
        pass

    @abstractmethod
    async def upsert_mapping(
        self,
        user_id: UUID,
        merchant_key: str,
        category_id: UUID,
    ) -> tuple[MerchantMapping, bool]:
        """
        Create or update the mapping for (user, merchant_key) atomically.

        Re-applying the category a mapping already has changes nothing.

        Returns:
            (mapping, was_created)
        """
        pass

    @abstractmethod
    async def get_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
    ) -> Optional[MerchantMapping]:
        pass

    @abstractmethod
    async def update_mapping_category(
        self,
        user_id: UUID,
        mapping_id: UUID,
        category_id: UUID,
    ) -> MerchantMapping:
        """
        Point an existing mapping at a different category.

        Raises:
            NotFoundError: If the mapping doesn't exist
        """
        pass

    @abstractmethod
    async def delete_mapping(self, user_id: UUID, mapping_id: UUID) -> bool:
        """
        Remove a mapping.

        Returns:
            True if a mapping was deleted, False if none matched
        """
        pass

    @abstractmethod
    async def page_mappings(
        self,
        user_id: UUID,
        search: Optional[str] = None,
        after: Optional[MappingCursor] = None,
        limit: int = 50,
    ) -> list[MerchantMapping]:
        """
        List mappings ordered by (merchant_key ASC, id ASC).

        Args:
            search: Case-insensitive substring filter on merchant_key
            after: Return only rows strictly after this position
            limit: Maximum number of rows
        """
        pass


class CategoryStorageInterface(ABC):
    """Read-only access to the global category catalogue."""

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        pass


class ProfileStorageInterface(ABC):
    """Per-user profile storage."""

    @abstractmethod
    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        pass

    @abstractmethod
    async def save_profile(self, profile: Profile) -> Profile:
        """Insert or replace the profile row for profile.id."""
        pass


class AiLogStorageInterface(ABC):
    """
    Append-only storage of categorization provider invocations.
    """

    @abstractmethod
    async def append_ai_log(self, entry: AiLogEntry) -> bool:
        """
        Append one provider invocation record.

        Returns:
            True if logged successfully
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID, in chronological order.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SearchUnavailableError(StorageError):
    """The backend cannot run word-based text search right now."""
    pass
