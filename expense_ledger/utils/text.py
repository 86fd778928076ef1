"""
Text normalization for merchant labels and search.

DESIGN DECISION: Merchant keys follow one literal rule - lowercase,
then drop everything outside [a-z0-9]. No stop words are removed, so
"The Coffee Shop" becomes "thecoffeeshop", not "coffeeshop".
Accented letters are dropped from keys too ("Café" -> "caf"); only the
search text folds accents.
"""

import re
import unicodedata
from typing import Optional

_NON_KEY_CHARS = re.compile(r"[^a-z0-9]")
_WHITESPACE = re.compile(r"\s+")


def normalize_merchant_name(raw: str) -> str:
    """
    Canonical lookup key for a merchant label.

    Examples:
        "Starbucks #1234" -> "starbucks1234"
        "McDonald's Restaurant" -> "mcdonaldsrestaurant"
        "H&M Store" -> "hmstore"
    """
    return _NON_KEY_CHARS.sub("", raw.lower())


def squeeze_whitespace(value: str) -> str:
    """Collapse whitespace runs to a single space and trim the ends."""
    return _WHITESPACE.sub(" ", value).strip()


def fold_accents(value: str) -> str:
    """Lowercase and strip diacritics ("Crème Brûlée" -> "creme brulee")."""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def build_search_text(name: str, description: Optional[str]) -> str:
    """Searchable concatenation of name and description."""
    return fold_accents(f"{name} {description or ''}".strip())
