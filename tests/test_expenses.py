"""
Tests for the expense lifecycle service.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import DINING_ID, GROCERIES_ID, utc
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.expense import (
    UNCATEGORIZED_CATEGORY_ID,
    AccountType,
    CreateExpenseCommand,
    Profile,
    UpdateExpenseCommand,
)
from expense_ledger.services.expenses import (
    ExpenseService,
    ExpenseServiceError,
    ExpenseServiceErrorCode,
    resolve_account,
)


def command(**overrides) -> CreateExpenseCommand:
    data = {
        "amount": Decimal("12.50"),
        "name": "Corner Store",
        "occurred_at": utc(2024, 3, 10, 9),
        "category_id": GROCERIES_ID,
    }
    data.update(overrides)
    return CreateExpenseCommand(**data)


@pytest.fixture
def service(storage, audit_logger):
    return ExpenseService(storage, storage, storage, audit_logger)


def create(service, user_id, **overrides):
    return asyncio.run(service.create_expense(user_id, command(**overrides)))


class TestResolveAccount:
    """Tests for the account default decision."""

    def test_explicit_matching_default(self):
        """Test that naming the remembered account changes nothing."""
        assert resolve_account(AccountType.CARD, AccountType.CARD) == (AccountType.CARD, False)

    def test_explicit_different_from_default(self):
        """Test that a new explicit account should be remembered."""
        assert resolve_account(AccountType.CASH, AccountType.CARD) == (AccountType.CASH, True)

    def test_explicit_without_default(self):
        """Test that a first explicit account is remembered."""
        assert resolve_account(AccountType.CASH, None) == (AccountType.CASH, True)

    def test_default_used_when_omitted(self):
        """Test falling back to the remembered account."""
        assert resolve_account(None, AccountType.CASH) == (AccountType.CASH, False)

    def test_neither_available(self):
        """Test that some account is required."""
        with pytest.raises(ExpenseServiceError) as exc_info:
            resolve_account(None, None)
        assert exc_info.value.code == ExpenseServiceErrorCode.ACCOUNT_REQUIRED


class TestCreateExpense:
    """Tests for create_expense."""

    def test_uses_profile_default_account(self, service, storage, user_id, profile):
        """Test that an omitted account comes from the profile."""
        result = create(service, user_id)

        assert result.expense.account == AccountType.CARD
        assert result.profile_account_updated is False
        assert result.expense.id in storage.expenses

    def test_new_account_is_remembered(self, service, storage, user_id, profile):
        """Test that an explicit new account updates the profile."""
        result = create(service, user_id, account=AccountType.CASH)

        assert result.profile_account_updated is True
        assert storage.profiles[user_id].last_account == AccountType.CASH

    def test_missing_category_is_uncategorized(self, service, user_id, profile):
        """Test that no category lands in the uncategorized bucket."""
        result = create(service, user_id, category_id=None)

        assert result.expense.category_id == UNCATEGORIZED_CATEGORY_ID

    def test_derived_fields(self, service, user_id, profile):
        """Test that merchant key and search text come from the name."""
        result = create(service, user_id, name="  Joe's   Café ", description="Flat white")

        assert result.expense.name == "Joe's Café"
        assert result.expense.merchant_key == "joescaf"
        assert result.expense.search_text == "joe's cafe flat white"

    def test_profile_not_found(self, service, user_id):
        """Test that a user without a profile can't create expenses."""
        with pytest.raises(ExpenseServiceError) as exc_info:
            create(service, user_id)
        assert exc_info.value.code == ExpenseServiceErrorCode.PROFILE_NOT_FOUND

    def test_account_required(self, service, storage, user_id):
        """Test a profile with no remembered account and no explicit one."""
        storage.profiles[user_id] = Profile(id=user_id)

        with pytest.raises(ExpenseServiceError) as exc_info:
            create(service, user_id)
        assert exc_info.value.code == ExpenseServiceErrorCode.ACCOUNT_REQUIRED

    def test_unknown_category(self, service, storage, user_id, profile):
        """Test that the category must exist; nothing is inserted."""
        with pytest.raises(ExpenseServiceError) as exc_info:
            create(service, user_id, category_id=uuid4())

        assert exc_info.value.code == ExpenseServiceErrorCode.CATEGORY_NOT_FOUND
        assert storage.expenses == {}

    def test_audited(self, service, storage, user_id, profile):
        """Test that creation writes an expense_created event."""
        result = create(service, user_id)

        [event] = [
            e for e in storage.audit_events
            if e.event_type == AuditEventType.EXPENSE_CREATED
        ]
        assert event.entity_id == result.expense.id


class TestUpdateExpense:
    """Tests for update_expense."""

    def test_partial_update(self, service, user_id, profile):
        """Test that only the given fields change."""
        created = create(service, user_id).expense

        updated = asyncio.run(service.update_expense(
            user_id, created.id,
            UpdateExpenseCommand(name="Farmers Market", category_id=DINING_ID),
        ))

        assert updated.name == "Farmers Market"
        assert updated.merchant_key == "farmersmarket"
        assert updated.category_id == DINING_ID
        assert updated.amount == created.amount
        assert updated.updated_at >= created.updated_at

    def test_unknown_category(self, service, user_id, profile):
        """Test that a changed category is re-validated."""
        created = create(service, user_id).expense

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.update_expense(
                user_id, created.id, UpdateExpenseCommand(category_id=uuid4()),
            ))
        assert exc_info.value.code == ExpenseServiceErrorCode.CATEGORY_NOT_FOUND

    def test_other_users_expense(self, service, user_id, profile):
        """Test that another user's expense is not found."""
        created = create(service, user_id).expense

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.update_expense(
                uuid4(), created.id, UpdateExpenseCommand(name="Hijack"),
            ))
        assert exc_info.value.code == ExpenseServiceErrorCode.NOT_FOUND

    def test_trashed_expense(self, service, user_id, profile):
        """Test that a soft-deleted expense can't be edited."""
        created = create(service, user_id).expense
        asyncio.run(service.soft_delete_expense(user_id, created.id))

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.update_expense(
                user_id, created.id, UpdateExpenseCommand(name="Edited"),
            ))
        assert exc_info.value.code == ExpenseServiceErrorCode.NOT_FOUND


class TestDeleteAndRestore:
    """Tests for soft delete and restore."""

    def test_soft_delete_then_restore(self, service, storage, user_id, profile):
        """Test the round trip inside the retention window."""
        created = create(service, user_id).expense
        deleted_at = utc(2024, 3, 11, 9)

        deleted = asyncio.run(service.soft_delete_expense(user_id, created.id, now=deleted_at))
        assert deleted.deleted is True
        assert deleted.deleted_at == deleted_at
        assert storage.expenses[created.id].deleted is True

        restored = asyncio.run(service.restore_expense(
            user_id, created.id, now=deleted_at + timedelta(days=7),
        ))
        assert restored.deleted is False
        assert restored.restored_at == deleted_at + timedelta(days=7)
        assert storage.expenses[created.id].deleted_at is None

    def test_delete_twice(self, service, user_id, profile):
        """Test that deleting a trashed expense is not found."""
        created = create(service, user_id).expense
        asyncio.run(service.soft_delete_expense(user_id, created.id))

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.soft_delete_expense(user_id, created.id))
        assert exc_info.value.code == ExpenseServiceErrorCode.NOT_FOUND

    def test_restore_after_retention_window(self, service, user_id, profile):
        """Test that restores past seven days are refused."""
        created = create(service, user_id).expense
        deleted_at = utc(2024, 3, 11, 9)
        asyncio.run(service.soft_delete_expense(user_id, created.id, now=deleted_at))

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.restore_expense(
                user_id, created.id, now=deleted_at + timedelta(days=7, seconds=1),
            ))
        assert exc_info.value.code == ExpenseServiceErrorCode.RETENTION_WINDOW_EXPIRED

    def test_restore_live_expense(self, service, user_id, profile):
        """Test that restoring a live expense is not found."""
        created = create(service, user_id).expense

        with pytest.raises(ExpenseServiceError) as exc_info:
            asyncio.run(service.restore_expense(user_id, created.id))
        assert exc_info.value.code == ExpenseServiceErrorCode.NOT_FOUND

    def test_get_includes_trashed(self, service, user_id, profile):
        """Test that get_expense still returns trashed rows."""
        created = create(service, user_id).expense
        asyncio.run(service.soft_delete_expense(user_id, created.id))

        fetched = asyncio.run(service.get_expense(user_id, created.id))

        assert fetched.deleted is True
