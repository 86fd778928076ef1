"""
Opaque pagination tokens for keyset pagination.

Expense cursor format:  "<ISO-8601 UTC timestamp>|<uuid>"
Mapping cursor format:  "<merchant_key>|<uuid>"

DESIGN DECISION: "|" can never appear inside an ISO timestamp, a UUID
or a normalized merchant key, so a token always splits into exactly
two segments. A token that doesn't is rejected loudly - we never fall
back to "first page", because that silently repeats rows for the caller.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

CURSOR_DELIMITER = "|"
MERCHANT_KEY_PATTERN = re.compile(r"[a-z0-9]+")


class CursorErrorCode(str, Enum):
    """Why a cursor token was rejected."""
    BLANK = "blank"
    SEGMENT_COUNT = "segment_count"
    EMPTY_SEGMENT = "empty_segment"
    INVALID_TIMESTAMP = "invalid_timestamp"
    INVALID_ID = "invalid_id"
    INVALID_KEY = "invalid_key"


class CursorError(ValueError):
    """A cursor token is structurally invalid."""

    def __init__(self, code: CursorErrorCode, message: str):
        self.code = code
        super().__init__(message)


class ExpenseCursor(BaseModel):
    """Position of the last returned row in the (occurred_at, id) DESC order."""

    model_config = ConfigDict(frozen=True)

    occurred_at: datetime
    id: UUID


class MappingCursor(BaseModel):
    """Position of the last returned row in the (merchant_key, id) ASC order."""

    model_config = ConfigDict(frozen=True)

    merchant_key: str
    id: UUID


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("cursor timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _split(token: str) -> tuple[str, str]:
    if not isinstance(token, str) or not token.strip():
        raise CursorError(CursorErrorCode.BLANK, "cursor cannot be blank")

    segments = token.strip().split(CURSOR_DELIMITER)
    if len(segments) != 2:
        raise CursorError(
            CursorErrorCode.SEGMENT_COUNT,
            "cursor must contain exactly two segments",
        )

    first, second = (segment.strip() for segment in segments)
    if not first or not second:
        raise CursorError(
            CursorErrorCode.EMPTY_SEGMENT,
            "cursor segments must not be empty",
        )
    return first, second


def _parse_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError:
        raise CursorError(CursorErrorCode.INVALID_ID, "cursor id must be a UUID")


def encode_cursor(occurred_at: datetime, expense_id: UUID) -> str:
    """Encode the sort key of a row into an expense cursor."""
    return f"{_format_timestamp(occurred_at)}{CURSOR_DELIMITER}{expense_id}"


def decode_cursor(token: str) -> ExpenseCursor:
    """
    Decode and validate an expense cursor.

    Raises:
        CursorError: If the token is not exactly "<timestamp>|<uuid>"
    """
    raw_occurred_at, raw_id = _split(token)

    try:
        occurred_at = datetime.fromisoformat(raw_occurred_at.replace("Z", "+00:00"))
    except ValueError:
        raise CursorError(
            CursorErrorCode.INVALID_TIMESTAMP,
            "cursor occurredAt must be a valid ISO timestamp",
        )
    if occurred_at.tzinfo is None:
        raise CursorError(
            CursorErrorCode.INVALID_TIMESTAMP,
            "cursor occurredAt must carry a UTC offset",
        )

    return ExpenseCursor(
        occurred_at=occurred_at.astimezone(timezone.utc),
        id=_parse_id(raw_id),
    )


def encode_mapping_cursor(merchant_key: str, mapping_id: UUID) -> str:
    """Encode the sort key of a merchant mapping row."""
    return f"{merchant_key}{CURSOR_DELIMITER}{mapping_id}"


def decode_mapping_cursor(token: str) -> MappingCursor:
    """Decode and validate a merchant mapping cursor."""
    merchant_key, raw_id = _split(token)

    if not MERCHANT_KEY_PATTERN.fullmatch(merchant_key):
        raise CursorError(
            CursorErrorCode.INVALID_KEY,
            "cursor merchant key must be a normalized merchant key",
        )

    return MappingCursor(merchant_key=merchant_key, id=_parse_id(raw_id))
