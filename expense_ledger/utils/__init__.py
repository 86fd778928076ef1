"""Pure helpers shared by the categorization, query and dashboard code."""

from expense_ledger.utils.cursor import (
    CursorError,
    CursorErrorCode,
    decode_cursor,
    decode_mapping_cursor,
    encode_cursor,
    encode_mapping_cursor,
)
from expense_ledger.utils.similarity import SimilarityScorer, TrigramSimilarityScorer
from expense_ledger.utils.text import (
    build_search_text,
    fold_accents,
    normalize_merchant_name,
    squeeze_whitespace,
)
from expense_ledger.utils.timezone import (
    TimezoneError,
    TimezoneErrorCode,
    TimeWindow,
    is_valid_iana_timezone,
    resolve_zone,
)

__all__ = [
    "CursorError",
    "CursorErrorCode",
    "SimilarityScorer",
    "TimeWindow",
    "TimezoneError",
    "TimezoneErrorCode",
    "TrigramSimilarityScorer",
    "build_search_text",
    "decode_cursor",
    "decode_mapping_cursor",
    "encode_cursor",
    "encode_mapping_cursor",
    "fold_accents",
    "is_valid_iana_timezone",
    "normalize_merchant_name",
    "resolve_zone",
    "squeeze_whitespace",
]
