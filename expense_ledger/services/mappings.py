"""
Merchant Mapping Service

Manages a user's merchant -> category overrides:
- upsert (the learning loop and the settings screen both land here)
- keyset-paginated listing with substring search
- category-only updates and deletion

DESIGN DECISION: Create-or-update is a single store-level upsert keyed
on (user, merchant_key). We never read-then-write from here, so two
concurrent corrections can't create duplicate mappings.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.config import get_settings
from expense_ledger.models.audit import AuditEventBuilder, AuditEventType, AuditEvent
from expense_ledger.models.expense import MappingPage, MappingUpsertResult, MerchantMapping
from expense_ledger.services.storage import (
    CategoryStorageInterface,
    MerchantMappingStorageInterface,
    NotFoundError,
)
from expense_ledger.utils.cursor import (
    CursorError,
    decode_mapping_cursor,
    encode_mapping_cursor,
)
from expense_ledger.utils.text import normalize_merchant_name

logger = structlog.get_logger()


class MerchantMappingErrorCode(str, Enum):
    INVALID_MERCHANT_NAME = "invalid_merchant_name"
    CATEGORY_LOOKUP_FAILED = "category_lookup_failed"
    CATEGORY_NOT_FOUND = "category_not_found"
    UPSERT_FAILED = "upsert_failed"
    NOT_FOUND = "not_found"
    UPDATE_FAILED = "update_failed"
    DELETE_FAILED = "delete_failed"
    QUERY_FAILED = "query_failed"
    INVALID_CURSOR = "invalid_cursor"
    INVALID_LIMIT = "invalid_limit"


class MerchantMappingError(Exception):
    def __init__(self, code: MerchantMappingErrorCode, message: str):
        self.code = code
        super().__init__(message)


class MerchantMappingService:
    """CRUD over merchant mappings, scoped to one user per call."""

    def __init__(
        self,
        storage: MerchantMappingStorageInterface,
        category_storage: CategoryStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._categories = category_storage
        self._audit = audit_logger or AuditLogger()
        self._settings = get_settings().app

    async def _ensure_category_exists(self, category_id: UUID) -> None:
        try:
            category = await self._categories.get_category(category_id)
        except Exception as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.CATEGORY_LOOKUP_FAILED,
                "Unable to verify category",
            ) from e
        if category is None:
            raise MerchantMappingError(
                MerchantMappingErrorCode.CATEGORY_NOT_FOUND,
                "Category does not exist",
            )

    async def upsert_mapping(
        self,
        user_id: UUID,
        merchant_name: str,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MappingUpsertResult:
        """
        Create or update the mapping for a merchant label.

        Re-applying the same category is a no-op: the stored row,
        including updated_at, is left untouched.
        """
        merchant_key = normalize_merchant_name(merchant_name)
        if not merchant_key:
            raise MerchantMappingError(
                MerchantMappingErrorCode.INVALID_MERCHANT_NAME,
                "Merchant name must contain at least one letter or digit",
            )

        await self._ensure_category_exists(category_id)

        try:
            mapping, was_created = await self._storage.upsert_mapping(
                user_id, merchant_key, category_id
            )
        except Exception as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.UPSERT_FAILED,
                "Failed to save merchant mapping",
            ) from e

        await self._audit.log(
            AuditEventBuilder.mapping_upserted(
                user_id=user_id,
                mapping_id=mapping.id,
                merchant_key=merchant_key,
                was_created=was_created,
                correlation_id=correlation_id,
            )
        )
        return MappingUpsertResult(mapping=mapping, was_created=was_created)

    async def list_mappings(
        self,
        user_id: UUID,
        search: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> MappingPage:
        """
        One page of mappings ordered by (merchant_key, id) ascending.

        Fetches limit + 1 rows; the extra row only tells us there is more.
        """
        page_size = limit if limit is not None else self._settings.default_mapping_page_size
        if not 1 <= page_size <= self._settings.max_mapping_page_size:
            raise MerchantMappingError(
                MerchantMappingErrorCode.INVALID_LIMIT,
                f"limit must be between 1 and {self._settings.max_mapping_page_size}",
            )

        after = None
        if cursor is not None:
            try:
                after = decode_mapping_cursor(cursor)
            except CursorError as e:
                raise MerchantMappingError(
                    MerchantMappingErrorCode.INVALID_CURSOR,
                    str(e),
                ) from e

        needle = search.strip() if search and search.strip() else None

        try:
            rows = await self._storage.page_mappings(
                user_id,
                search=needle,
                after=after,
                limit=page_size + 1,
            )
        except Exception as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.QUERY_FAILED,
                "Unable to load merchant mappings",
            ) from e

        has_more = len(rows) > page_size
        items = rows[:page_size]
        next_cursor = (
            encode_mapping_cursor(items[-1].merchant_key, items[-1].id)
            if has_more else None
        )
        return MappingPage(items=items, next_cursor=next_cursor, has_more=has_more)

    async def update_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
        category_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MerchantMapping:
        """Point a mapping at a different category. The key never changes."""
        await self._ensure_category_exists(category_id)

        try:
            mapping = await self._storage.update_mapping_category(
                user_id, mapping_id, category_id
            )
        except NotFoundError as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.NOT_FOUND,
                "Merchant mapping not found",
            ) from e
        except Exception as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.UPDATE_FAILED,
                "Failed to update merchant mapping",
            ) from e

        await self._audit.log(
            AuditEvent(
                event_type=AuditEventType.MAPPING_UPDATED,
                user_id=user_id,
                entity_type="mapping",
                entity_id=mapping.id,
                correlation_id=correlation_id,
                description=f"Merchant mapping updated: {mapping.merchant_key}",
                details={"category_id": str(category_id)},
                is_user_action=True,
            )
        )
        return mapping

    async def delete_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Remove an override; future lookups fall through to the AI path."""
        try:
            deleted = await self._storage.delete_mapping(user_id, mapping_id)
        except Exception as e:
            raise MerchantMappingError(
                MerchantMappingErrorCode.DELETE_FAILED,
                "Failed to delete merchant mapping",
            ) from e

        if not deleted:
            raise MerchantMappingError(
                MerchantMappingErrorCode.NOT_FOUND,
                "Merchant mapping not found",
            )

        await self._audit.log(
            AuditEventBuilder.mapping_deleted(
                user_id=user_id,
                mapping_id=mapping_id,
                correlation_id=correlation_id,
            )
        )
