"""
Expense Lifecycle Service

create -> update* -> soft delete -> (restore within 7 days | purge)

DESIGN DECISION: Expenses are never physically deleted here. A soft
delete sets deleted_at; restore clears it, but only inside the retention
window. Purging expired rows belongs to an external job.

DESIGN DECISION: The account default is an explicit two-step decision.
resolve_account() is a pure function that says which account to use and
whether the profile's remembered account should change. The profile
write is a separate, visible step whose failure never fails the create.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.config import get_settings
from expense_ledger.models.audit import AuditEventBuilder
from expense_ledger.models.expense import (
    UNCATEGORIZED_CATEGORY_ID,
    AccountType,
    CreateExpenseCommand,
    CreateExpenseResult,
    DeleteExpenseResult,
    ExpenseRecord,
    Profile,
    RestoreExpenseResult,
    UpdateExpenseCommand,
    utc_now,
)
from expense_ledger.services.storage import (
    CategoryStorageInterface,
    ExpenseStorageInterface,
    ProfileStorageInterface,
)

logger = structlog.get_logger()


class ExpenseServiceErrorCode(str, Enum):
    PROFILE_LOOKUP_FAILED = "profile_lookup_failed"
    PROFILE_NOT_FOUND = "profile_not_found"
    ACCOUNT_REQUIRED = "account_required"
    CATEGORY_LOOKUP_FAILED = "category_lookup_failed"
    CATEGORY_NOT_FOUND = "category_not_found"
    NOT_FOUND = "not_found"
    QUERY_FAILED = "query_failed"
    INSERT_FAILED = "insert_failed"
    UPDATE_FAILED = "update_failed"
    DELETE_FAILED = "delete_failed"
    RETENTION_WINDOW_EXPIRED = "retention_window_expired"


class ExpenseServiceError(Exception):
    def __init__(self, code: ExpenseServiceErrorCode, message: str):
        self.code = code
        super().__init__(message)


class ContractViolationError(RuntimeError):
    """A store returned a row that breaks a lifecycle invariant."""


def resolve_account(
    explicit: Optional[AccountType],
    profile_default: Optional[AccountType],
) -> tuple[AccountType, bool]:
    """
    Decide the account for a new expense.

    Returns:
        (account, should_persist) - should_persist is True when the
        caller named an account different from the remembered one.

    Raises:
        ExpenseServiceError: ACCOUNT_REQUIRED if neither is available
    """
    if explicit is not None:
        return explicit, explicit != profile_default
    if profile_default is not None:
        return profile_default, False
    raise ExpenseServiceError(
        ExpenseServiceErrorCode.ACCOUNT_REQUIRED,
        "Account must be provided when no profile default is available",
    )


class ExpenseService:
    """Create, read, edit, trash and restore one user's expenses."""

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

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def _load_profile(self, user_id: UUID) -> Profile:
        try:
            profile = await self._profiles.get_profile(user_id)
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.PROFILE_LOOKUP_FAILED,
                "Unable to load profile",
            ) from e
        if profile is None:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.PROFILE_NOT_FOUND,
                "Profile not found for user",
            )
        return profile

    async def _ensure_category_exists(self, category_id: UUID) -> None:
        if category_id == UNCATEGORIZED_CATEGORY_ID:
            return
        try:
            category = await self._categories.get_category(category_id)
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.CATEGORY_LOOKUP_FAILED,
                "Unable to verify category",
            ) from e
        if category is None:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.CATEGORY_NOT_FOUND,
                "Category does not exist",
            )

    async def _load_expense(self, user_id: UUID, expense_id: UUID) -> ExpenseRecord:
        try:
            expense = await self._storage.get_expense(user_id, expense_id)
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.QUERY_FAILED,
                "Unable to retrieve expense",
            ) from e
        if expense is None:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.NOT_FOUND,
                "Expense not found",
            )
        return expense

    async def _remember_account(self, profile: Profile, account: AccountType) -> bool:
        try:
            await self._profiles.save_profile(
                profile.model_copy(update={"last_account": account, "updated_at": utc_now()})
            )
        except Exception as e:
            logger.warning(
                "profile_account_update_failed",
                user_id=str(profile.id),
                error=str(e),
            )
            return False
        return True

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def prepare_create(self, user_id: UUID, command: CreateExpenseCommand) -> Profile:
        """
        Run the checks create_expense would fail on before any write.

        Raises:
            ExpenseServiceError: PROFILE_NOT_FOUND, PROFILE_LOOKUP_FAILED,
                ACCOUNT_REQUIRED
        """
        profile = await self._load_profile(user_id)
        resolve_account(command.account, profile.last_account)
        return profile

    async def create_expense(
        self,
        user_id: UUID,
        command: CreateExpenseCommand,
        correlation_id: Optional[UUID] = None,
        profile: Optional[Profile] = None,
    ) -> CreateExpenseResult:
        """
        Persist a new expense.

        Order matters: profile, account decision, category check, insert,
        and only then the profile's remembered account. A profile already
        loaded by prepare_create() can be passed in.
        """
        if profile is None or profile.id != user_id:
            profile = await self._load_profile(user_id)
        account, should_persist = resolve_account(command.account, profile.last_account)

        category_id = command.category_id or UNCATEGORIZED_CATEGORY_ID
        await self._ensure_category_exists(category_id)

        record = ExpenseRecord(
            user_id=user_id,
            amount=command.amount,
            name=command.name,
            description=command.description,
            occurred_at=command.occurred_at,
            account=account,
            category_id=category_id,
        )
        try:
            saved = await self._storage.insert_expense(record)
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.INSERT_FAILED,
                "Failed to create expense",
            ) from e

        profile_account_updated = False
        if should_persist:
            profile_account_updated = await self._remember_account(profile, account)

        await self._audit.log(
            AuditEventBuilder.expense_created(
                user_id=user_id,
                expense_id=saved.id,
                amount=str(saved.amount),
                category_id=saved.category_id,
                correlation_id=correlation_id,
            )
        )
        return CreateExpenseResult(
            expense=saved,
            profile_account_updated=profile_account_updated,
        )

    async def get_expense(self, user_id: UUID, expense_id: UUID) -> ExpenseRecord:
        """A single expense, including soft-deleted ones."""
        return await self._load_expense(user_id, expense_id)

    async def update_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        command: UpdateExpenseCommand,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseRecord:
        """
        Apply a partial update to a live expense.

        Trashed expenses can't be edited; restore them first.
        """
        existing = await self._load_expense(user_id, expense_id)
        if existing.deleted:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.NOT_FOUND,
                "Expense not found",
            )

        changes = command.changes()
        if "category_id" in changes:
            await self._ensure_category_exists(changes["category_id"])

        updated = existing.with_changes(**changes, updated_at=utc_now())
        try:
            saved = await self._storage.update_expense(updated)
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.UPDATE_FAILED,
                "Failed to update expense",
            ) from e

        await self._audit.log(
            AuditEventBuilder.expense_updated(
                user_id=user_id,
                expense_id=expense_id,
                fields=list(changes),
                correlation_id=correlation_id,
            )
        )
        return saved

    async def soft_delete_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> DeleteExpenseResult:
        """Move an expense to the trash. Already-trashed counts as not found."""
        existing = await self._load_expense(user_id, expense_id)
        if existing.deleted:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.NOT_FOUND,
                "Expense not found",
            )

        deleted_at = now or utc_now()
        try:
            saved = await self._storage.update_expense(
                existing.with_changes(deleted_at=deleted_at, updated_at=deleted_at)
            )
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.DELETE_FAILED,
                "Failed to delete expense",
            ) from e

        if saved.deleted_at is None:
            raise ContractViolationError("deleted_at must be set after soft-delete")

        await self._audit.log(
            AuditEventBuilder.expense_deleted(
                user_id=user_id,
                expense_id=expense_id,
                correlation_id=correlation_id,
            )
        )
        return DeleteExpenseResult(id=saved.id, deleted_at=saved.deleted_at)

    async def restore_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> RestoreExpenseResult:
        """
        Bring a trashed expense back.

        Raises:
            ExpenseServiceError: NOT_FOUND if the expense isn't trashed,
                RETENTION_WINDOW_EXPIRED after the retention window
        """
        existing = await self._load_expense(user_id, expense_id)
        if not existing.deleted:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.NOT_FOUND,
                "Expense not found",
            )

        restored_at = now or utc_now()
        retention = timedelta(days=self._settings.restore_retention_days)
        if restored_at - existing.deleted_at > retention:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.RETENTION_WINDOW_EXPIRED,
                f"Expense cannot be restored after {self._settings.restore_retention_days} days",
            )

        try:
            saved = await self._storage.update_expense(
                existing.with_changes(deleted_at=None, updated_at=restored_at)
            )
        except Exception as e:
            raise ExpenseServiceError(
                ExpenseServiceErrorCode.UPDATE_FAILED,
                "Failed to restore expense",
            ) from e

        if saved.deleted_at is not None:
            raise ContractViolationError("deleted_at must be null after restore")

        await self._audit.log(
            AuditEventBuilder.expense_restored(
                user_id=user_id,
                expense_id=expense_id,
                correlation_id=correlation_id,
            )
        )
        return RestoreExpenseResult(id=saved.id, restored_at=saved.updated_at)
