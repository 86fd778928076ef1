"""
Profile and Category Services

Profiles hold the two per-user preferences the ledger reads: the IANA
timezone used for calendar bucketing and the remembered default account.
Categories are a global, read-only catalogue.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.models.audit import AuditEvent, AuditEventType
from expense_ledger.models.expense import AccountType, Category, Profile, utc_now
from expense_ledger.services.storage import (
    CategoryStorageInterface,
    ProfileStorageInterface,
)
from expense_ledger.utils.timezone import is_valid_iana_timezone

logger = structlog.get_logger()


class ProfileErrorCode(str, Enum):
    LOOKUP_FAILED = "lookup_failed"
    NOT_FOUND = "not_found"
    INVALID_TIMEZONE = "invalid_timezone"
    UPDATE_FAILED = "update_failed"


class ProfileError(Exception):
    def __init__(self, code: ProfileErrorCode, message: str):
        self.code = code
        super().__init__(message)


class CategoryErrorCode(str, Enum):
    QUERY_FAILED = "query_failed"


class CategoryError(Exception):
    def __init__(self, code: CategoryErrorCode, message: str):
        self.code = code
        super().__init__(message)


class ProfileService:
    def __init__(
        self,
        storage: ProfileStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def get_profile(self, user_id: UUID) -> Profile:
        try:
            profile = await self._storage.get_profile(user_id)
        except Exception as e:
            raise ProfileError(
                ProfileErrorCode.LOOKUP_FAILED,
                "Unable to load profile",
            ) from e
        if profile is None:
            raise ProfileError(
                ProfileErrorCode.NOT_FOUND,
                "Profile not found for user",
            )
        return profile

    async def update_profile(
        self,
        user_id: UUID,
        timezone: Optional[str] = None,
        last_account: Optional[AccountType] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Profile:
        """
        Change the timezone and/or remembered account.

        Raises:
            ProfileError: INVALID_TIMEZONE for a name the tz database
                doesn't know, UPDATE_FAILED when nothing was given
        """
        changes = {}
        if timezone is not None:
            name = timezone.strip()
            if not is_valid_iana_timezone(name):
                raise ProfileError(
                    ProfileErrorCode.INVALID_TIMEZONE,
                    "Timezone is not a valid IANA identifier",
                )
            changes["timezone"] = name
        if last_account is not None:
            changes["last_account"] = AccountType(last_account)

        if not changes:
            raise ProfileError(
                ProfileErrorCode.UPDATE_FAILED,
                "No fields provided to update",
            )

        profile = await self.get_profile(user_id)
        try:
            saved = await self._storage.save_profile(
                profile.model_copy(update={**changes, "updated_at": utc_now()})
            )
        except Exception as e:
            raise ProfileError(
                ProfileErrorCode.UPDATE_FAILED,
                "Failed to update profile",
            ) from e

        await self._audit.log(
            AuditEvent(
                event_type=AuditEventType.PROFILE_UPDATED,
                user_id=user_id,
                entity_type="profile",
                entity_id=user_id,
                correlation_id=correlation_id,
                description=f"Profile updated: {', '.join(sorted(changes))}",
                details={k: str(v.value if isinstance(v, Enum) else v) for k, v in changes.items()},
                is_user_action=True,
            )
        )
        return saved


class CategoryService:
    def __init__(self, storage: CategoryStorageInterface):
        self._storage = storage

    async def list_categories(self, include_uncategorized: bool = True) -> list[Category]:
        """Catalogue ordered by (sort_order, name)."""
        try:
            categories = await self._storage.list_categories()
        except Exception as e:
            raise CategoryError(
                CategoryErrorCode.QUERY_FAILED,
                "Failed to load categories",
            ) from e

        categories = sorted(categories, key=lambda c: (c.sort_order, c.name))
        if include_uncategorized:
            return categories
        return [c for c in categories if not c.is_uncategorized]
