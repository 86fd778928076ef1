"""
Request Validation

DESIGN DECISION: Raw request parameters (query strings, JSON bodies) are
validated here, BEFORE any store access. Everything downstream receives
typed pydantic models and never has to re-check shape.

Query-string inputs arrive as strings, so this layer also does the
string -> typed coercion (booleans, limits, comma-separated id lists).

IMPORTANT: Validation NEVER silently fixes issues. Whitespace is trimmed
and duplicate category ids are collapsed, but anything malformed is
rejected with a RequestValidationError naming the offending field.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from expense_ledger.config import get_settings
from expense_ledger.models.expense import AccountType, CreateExpenseCommand
from expense_ledger.models.query import DashboardQuery, ExpenseListFilters
from expense_ledger.utils.cursor import CursorError, decode_cursor
from expense_ledger.utils.timezone import TimeWindow, TimezoneError, parse_month

ALL_ACCOUNTS = "all"
SEARCH_MAX_LENGTH = 200


class ValidationErrorCode(str, Enum):
    TIME_RANGE_CONFLICT = "time_range_conflict"
    INVALID_RANGE = "invalid_range"
    TOO_MANY_CATEGORIES = "too_many_categories"
    INVALID_CATEGORY_ID = "invalid_category_id"
    INVALID_CURSOR = "invalid_cursor"
    INVALID_LIMIT = "invalid_limit"
    INVALID_ACCOUNT = "invalid_account"
    INVALID_MONTH = "invalid_month"
    INVALID_TIMESTAMP = "invalid_timestamp"
    INVALID_BOOLEAN = "invalid_boolean"
    INVALID_PAYLOAD = "invalid_payload"


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(..., description="Field with the issue")
    code: ValidationErrorCode
    message: str = Field(..., description="Human-readable description of the issue")


class RequestValidationError(ValueError):
    """A request was rejected before reaching any store."""

    def __init__(
        self,
        code: ValidationErrorCode,
        message: str,
        field: Optional[str] = None,
        issues: Optional[list[ValidationIssue]] = None,
    ):
        self.code = code
        self.field = field
        self.issues = issues or [
            ValidationIssue(field=field or "request", code=code, message=message)
        ]
        super().__init__(message)


def _as_text(value: Any, field: str, code: ValidationErrorCode) -> str:
    if not isinstance(value, str):
        raise RequestValidationError(code, f"{field} must be a string", field)
    return value.strip()


def parse_utc_timestamp(value: Any, field: str) -> datetime:
    """ISO-8601 strings ending in Z only; offsets and naive values are rejected."""
    text = _as_text(value, field, ValidationErrorCode.INVALID_TIMESTAMP)
    if not text:
        raise RequestValidationError(
            ValidationErrorCode.INVALID_TIMESTAMP,
            f"{field} cannot be blank",
            field,
        )
    if not text.endswith("Z"):
        raise RequestValidationError(
            ValidationErrorCode.INVALID_TIMESTAMP,
            f"{field} must be a UTC ISO string ending with Z",
            field,
        )
    try:
        parsed = datetime.fromisoformat(text[:-1] + "+00:00")
    except ValueError as e:
        raise RequestValidationError(
            ValidationErrorCode.INVALID_TIMESTAMP,
            f"{field} must be a valid ISO timestamp",
            field,
        ) from e
    return parsed.astimezone(timezone.utc)


def parse_boolean(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = _as_text(value, field, ValidationErrorCode.INVALID_BOOLEAN).lower()
    if text == "true":
        return True
    if text in ("false", ""):
        return False
    raise RequestValidationError(
        ValidationErrorCode.INVALID_BOOLEAN,
        f"{field} must be 'true' or 'false'",
        field,
    )


def parse_limit(value: Any, default: int, maximum: int, field: str = "limit") -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise RequestValidationError(
            ValidationErrorCode.INVALID_LIMIT, f"{field} must be a number", field
        )
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError as e:
            raise RequestValidationError(
                ValidationErrorCode.INVALID_LIMIT, f"{field} must be a number", field
            ) from e
    elif isinstance(value, (int, float)):
        number = value
    else:
        raise RequestValidationError(
            ValidationErrorCode.INVALID_LIMIT, f"{field} must be a number", field
        )

    if not math.isfinite(number) or number != int(number):
        raise RequestValidationError(
            ValidationErrorCode.INVALID_LIMIT, f"{field} must be an integer", field
        )
    if not 1 <= number <= maximum:
        raise RequestValidationError(
            ValidationErrorCode.INVALID_LIMIT,
            f"{field} must be between 1 and {maximum}",
            field,
        )
    return int(number)


def parse_category_ids(value: Any, maximum: int, field: str = "categoryIds") -> list[UUID]:
    """
    Accepts a list or a comma-separated string.

    Blank entries are dropped and duplicates collapsed (first wins)
    BEFORE the size limit is checked.
    """
    if value is None:
        return []
    if isinstance(value, str):
        raw_items = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw_items = list(value)
    else:
        raise RequestValidationError(
            ValidationErrorCode.INVALID_CATEGORY_ID,
            f"{field} must be a comma-separated list",
            field,
        )

    items = []
    for item in raw_items:
        if isinstance(item, UUID):
            items.append(item)
            continue
        if not isinstance(item, str):
            raise RequestValidationError(
                ValidationErrorCode.INVALID_CATEGORY_ID,
                f"{field} must contain valid UUIDs",
                field,
            )
        text = item.strip()
        if not text:
            continue
        try:
            items.append(UUID(text))
        except ValueError as e:
            raise RequestValidationError(
                ValidationErrorCode.INVALID_CATEGORY_ID,
                f"{field} must contain valid UUIDs",
                field,
            ) from e

    unique = list(dict.fromkeys(items))
    if len(unique) > maximum:
        raise RequestValidationError(
            ValidationErrorCode.TOO_MANY_CATEGORIES,
            f"{field} cannot contain more than {maximum} values",
            field,
        )
    return unique


def _pydantic_issues(error: ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(part) for part in issue["loc"]) or "request",
            code=ValidationErrorCode.INVALID_PAYLOAD,
            message=issue["msg"],
        )
        for issue in error.errors()
    ]


class RequestValidator:
    """
    Turns raw request parameters into validated filter and command models.

    Every parse_* method raises RequestValidationError on the first
    structural problem it meets.
    """

    def __init__(self):
        self._settings = get_settings().app

    def parse_expense_list_query(self, params: Mapping[str, Any]) -> ExpenseListFilters:
        """
        Validate expense list parameters.

        Keys follow the wire names: timeRange, from, to, categoryIds,
        account, search, includeDeleted, cursor, limit.
        """
        time_range = None
        raw_range = params.get("timeRange")
        if raw_range not in (None, ""):
            try:
                time_range = TimeWindow(raw_range)
            except ValueError as e:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_RANGE,
                    "timeRange must be one of: "
                    + ", ".join(window.value for window in TimeWindow),
                    "timeRange",
                ) from e

        date_from = (
            parse_utc_timestamp(params["from"], "from")
            if params.get("from") is not None else None
        )
        date_to = (
            parse_utc_timestamp(params["to"], "to")
            if params.get("to") is not None else None
        )

        if time_range is not None and (date_from or date_to):
            raise RequestValidationError(
                ValidationErrorCode.TIME_RANGE_CONFLICT,
                "timeRange cannot be combined with from/to",
                "timeRange",
            )
        if (date_from is None) != (date_to is None):
            raise RequestValidationError(
                ValidationErrorCode.INVALID_RANGE,
                "from and to must be provided together",
                "from" if date_from is None else "to",
            )
        if date_from and date_to and date_from > date_to:
            raise RequestValidationError(
                ValidationErrorCode.INVALID_RANGE,
                "from must be earlier than or equal to to",
                "from",
            )

        category_ids = parse_category_ids(
            params.get("categoryIds"), self._settings.max_list_category_filters
        )

        account = None
        raw_account = params.get("account")
        if raw_account not in (None, ""):
            try:
                account = AccountType(raw_account)
            except ValueError as e:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_ACCOUNT,
                    "account must be one of: cash, card",
                    "account",
                ) from e

        search = None
        if params.get("search") is not None:
            search = _as_text(params["search"], "search", ValidationErrorCode.INVALID_PAYLOAD)
            if len(search) > SEARCH_MAX_LENGTH:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_PAYLOAD,
                    f"search must be at most {SEARCH_MAX_LENGTH} characters",
                    "search",
                )
            search = search or None

        include_deleted = (
            parse_boolean(params["includeDeleted"], "includeDeleted")
            if params.get("includeDeleted") is not None else False
        )

        cursor = None
        if params.get("cursor") is not None:
            try:
                cursor = decode_cursor(params["cursor"])
            except CursorError as e:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_CURSOR, str(e), "cursor"
                ) from e

        limit = parse_limit(
            params.get("limit"),
            self._settings.default_page_size,
            self._settings.max_page_size,
        )

        return ExpenseListFilters(
            time_range=time_range,
            date_from=date_from,
            date_to=date_to,
            category_ids=category_ids,
            account=account,
            search=search,
            include_deleted=include_deleted,
            cursor=cursor,
            limit=limit,
        )

    def parse_dashboard_query(self, params: Mapping[str, Any]) -> DashboardQuery:
        """Validate dashboard parameters: month, account (cash/card/all), categoryIds."""
        month = None
        if params.get("month") is not None:
            month = _as_text(params["month"], "month", ValidationErrorCode.INVALID_MONTH)
            try:
                parse_month(month)
            except TimezoneError as e:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_MONTH, str(e), "month"
                ) from e

        account = None
        raw_account = params.get("account")
        if raw_account not in (None, "", ALL_ACCOUNTS):
            try:
                account = AccountType(raw_account)
            except ValueError as e:
                raise RequestValidationError(
                    ValidationErrorCode.INVALID_ACCOUNT,
                    "account must be one of: cash, card, all",
                    "account",
                ) from e

        category_ids = parse_category_ids(
            params.get("categoryIds"), self._settings.max_dashboard_category_filters
        )
        return DashboardQuery(month=month, account=account, category_ids=category_ids)

    def parse_expense_draft(self, payload: Mapping[str, Any]) -> CreateExpenseCommand:
        """
        Validate a create-expense body.

        occurredAt must be a UTC ISO string ending with Z; every other
        rule (amount precision, name/description limits) lives on the model.
        """
        if not isinstance(payload, Mapping):
            raise RequestValidationError(
                ValidationErrorCode.INVALID_PAYLOAD, "payload must be an object"
            )

        data = dict(payload)
        if "occurredAt" in data:
            data["occurredAt"] = parse_utc_timestamp(data["occurredAt"], "occurredAt")
        if isinstance(data.get("amount"), bool):
            raise RequestValidationError(
                ValidationErrorCode.INVALID_PAYLOAD, "amount must be a number", "amount"
            )
        if isinstance(data.get("amount"), float):
            # str() keeps 12.5 from turning into 12.4999... as a Decimal
            data["amount"] = str(data["amount"])

        try:
            return CreateExpenseCommand.model_validate(
                {
                    "amount": data.get("amount"),
                    "name": data.get("name"),
                    "description": data.get("description"),
                    "occurred_at": data.get("occurredAt"),
                    "account": data.get("account"),
                    "category_id": data.get("categoryId"),
                }
            )
        except ValidationError as e:
            issues = _pydantic_issues(e)
            raise RequestValidationError(
                ValidationErrorCode.INVALID_PAYLOAD,
                issues[0].message if issues else "invalid payload",
                issues[0].field if issues else None,
                issues=issues,
            ) from e
