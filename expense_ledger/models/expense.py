"""
Core Data Models for Expense Ledger

These models define the strict schemas for every record the ledger
reads and writes:
1. ExpenseRecord - one spending entry, owned by a single user
2. MerchantMapping - a per-user merchant -> category override
3. Category - global, read-only catalogue entry
4. Profile - per-user preferences (timezone, last used account)

DESIGN DECISION: Derived fields (merchant_key, search_text, deleted) are
computed from their source fields by pure functions every time a record
is built. They can never drift from name/description/deleted_at because
they are never stored independently of them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from expense_ledger.utils.text import (
    build_search_text,
    normalize_merchant_name,
    squeeze_whitespace,
)


# =============================================================================
# SHARED TYPES
# =============================================================================

UNCATEGORIZED_CATEGORY_ID = UUID("00000000-0000-0000-0000-000000000000")
UNCATEGORIZED_CATEGORY_KEY = "uncategorized"

NAME_MAX_LENGTH = 64
DESCRIPTION_MAX_LENGTH = 200

# Amounts stay Decimal in Python and become plain numbers on the wire.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Reject naive datetimes and normalize aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError("timestamp must include a timezone offset")
    return value.astimezone(timezone.utc)


class ResponseModel(BaseModel):
    """
    Base for models that cross the boundary.

    Fields are snake_case in Python and camelCase on the wire.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Where the money came from."""
    CASH = "cash"
    CARD = "card"


# =============================================================================
# CATALOGUE & PROFILE
# =============================================================================

class Category(ResponseModel):
    """
    A spending category.

    Categories are seeded once and read-only for the ledger. The
    "uncategorized" category is the universal default and always exists.
    """
    id: UUID
    key: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=64)
    sort_order: int = 0

    @property
    def is_uncategorized(self) -> bool:
        return self.id == UNCATEGORIZED_CATEGORY_ID


def uncategorized_category() -> Category:
    return Category(
        id=UNCATEGORIZED_CATEGORY_ID,
        key=UNCATEGORIZED_CATEGORY_KEY,
        name="Uncategorized",
        sort_order=999,
    )


class Profile(ResponseModel):
    """Per-user preferences the ledger needs."""
    id: UUID = Field(..., description="Owning user id")
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone; None means UTC"
    )
    last_account: Optional[AccountType] = Field(
        default=None,
        description="Account used when a new expense doesn't name one"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# =============================================================================
# EXPENSE MODELS
# =============================================================================

def _clean_name(value: str) -> str:
    cleaned = squeeze_whitespace(value)
    if not cleaned:
        raise ValueError("name cannot be blank")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValueError(f"name must be at most {NAME_MAX_LENGTH} characters")
    return cleaned


def _clean_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = squeeze_whitespace(value)
    if not cleaned:
        raise ValueError("description cannot be blank")
    if len(cleaned) > DESCRIPTION_MAX_LENGTH:
        raise ValueError(
            f"description must be at most {DESCRIPTION_MAX_LENGTH} characters"
        )
    return cleaned


class ExpenseDraft(BaseModel):
    """
    The fields of an expense before it is persisted.

    This is the shape the categorization provider sees.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Money = Field(
        ...,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Positive amount with at most two decimals"
    )
    name: str = Field(..., description="Display name, usually the merchant")
    description: Optional[str] = None
    occurred_at: datetime = Field(..., description="When the spend happened")
    account: Optional[AccountType] = None

    @field_validator('name')
    @classmethod
    def clean_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator('description')
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_description(v)

    @field_validator('occurred_at')
    @classmethod
    def normalize_occurred_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @computed_field
    @property
    def merchant_key(self) -> str:
        return normalize_merchant_name(self.name)


class CreateExpenseCommand(ExpenseDraft):
    """A draft plus the category the caller settled on (None = uncategorized)."""
    category_id: Optional[UUID] = None


class UpdateExpenseCommand(BaseModel):
    """
    Partial update of an expense.

    Only fields explicitly provided are changed. Passing description=None
    explicitly clears the description.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Money] = Field(
        default=None,
        gt=0,
        max_digits=12,
        decimal_places=2,
    )
    name: Optional[str] = None
    description: Optional[str] = None
    occurred_at: Optional[datetime] = None
    account: Optional[AccountType] = None
    category_id: Optional[UUID] = None

    @field_validator('name')
    @classmethod
    def clean_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v) if v is not None else None

    @field_validator('description')
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_description(v)

    @field_validator('occurred_at')
    @classmethod
    def normalize_occurred_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode='after')
    def require_changes(self) -> 'UpdateExpenseCommand':
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        for field_name in ('amount', 'name', 'occurred_at', 'account', 'category_id'):
            if field_name in self.model_fields_set and getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """The explicitly provided fields, ready to merge into a record."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class ExpenseRecord(ResponseModel):
    """
    A persisted expense.

    CRITICAL: category_id is never None - records without a chosen
    category point at the "uncategorized" category.
    """

    # Identity
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID

    # What was spent
    amount: Money = Field(..., gt=0, max_digits=12, decimal_places=2)
    name: str
    description: Optional[str] = None
    occurred_at: datetime
    account: Optional[AccountType] = None
    category_id: UUID = Field(default=UNCATEGORIZED_CATEGORY_ID)

    # Lifecycle
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('name')
    @classmethod
    def clean_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator('description')
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_description(v)

    @field_validator('occurred_at', 'deleted_at', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @computed_field
    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None

    @computed_field
    @property
    def merchant_key(self) -> str:
        return normalize_merchant_name(self.name)

    @computed_field
    @property
    def search_text(self) -> str:
        return build_search_text(self.name, self.description)

    def with_changes(self, **changes: Any) -> 'ExpenseRecord':
        """Return a re-validated copy with the given fields replaced."""
        data = self.model_dump(exclude={'deleted', 'merchant_key', 'search_text'})
        data.update(changes)
        return type(self).model_validate(data)

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True,
            mode="json",
            exclude={'user_id', 'merchant_key', 'search_text'},
        )


class MerchantMapping(ResponseModel):
    """
    A user's override: expenses at this merchant go to this category.

    The key is immutable once created; corrections only change category_id.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    merchant_key: str = Field(
        ...,
        min_length=1,
        max_length=128,
        pattern=r"^[a-z0-9]+$",
    )
    category_id: UUID
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('updated_at')
    @classmethod
    def normalize_updated_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={'user_id'})


# =============================================================================
# SERVICE RESULTS
# =============================================================================

class CreateExpenseResult(ResponseModel):
    expense: ExpenseRecord
    profile_account_updated: bool = False

    def to_response(self) -> dict[str, Any]:
        return {
            "expense": self.expense.to_response(),
            "profileAccountUpdated": self.profile_account_updated,
        }


class DeleteExpenseResult(ResponseModel):
    id: UUID
    deleted: bool = True
    deleted_at: datetime


class RestoreExpenseResult(ResponseModel):
    id: UUID
    deleted: bool = False
    restored_at: datetime


class MappingUpsertResult(ResponseModel):
    mapping: MerchantMapping
    was_created: bool

    def to_response(self) -> dict[str, Any]:
        return {
            "mapping": self.mapping.to_response(),
            "wasCreated": self.was_created,
        }


class MappingPage(BaseModel):
    items: list[MerchantMapping] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False

    def to_response(self) -> dict[str, Any]:
        return {
            "items": [item.to_response() for item in self.items],
            "nextCursor": self.next_cursor,
            "hasMore": self.has_more,
        }
