"""
In-process evaluation of ExpenseQuery.

Backends without a query engine (memory, Google Sheets) load rows and
apply the same predicate, ordering and keyset logic here, so both
behave identically.
"""

import re
from typing import Iterable, Optional

from expense_ledger.models.expense import ExpenseRecord, MerchantMapping
from expense_ledger.models.query import ExpenseQuery, SearchMode
from expense_ledger.utils.cursor import ExpenseCursor, MappingCursor
from expense_ledger.utils.text import fold_accents

WORD_PATTERN = re.compile(r"\w+")


def expense_sort_key(expense: ExpenseRecord):
    return (expense.occurred_at, expense.id)


def is_after_cursor(expense: ExpenseRecord, cursor: Optional[ExpenseCursor]) -> bool:
    """True if the row sorts strictly after the cursor in DESC order."""
    if cursor is None:
        return True
    return (expense.occurred_at, expense.id) < (cursor.occurred_at, cursor.id)


def matches_text(search_text: str, term: str) -> bool:
    """Every word of the term must prefix some word of the searchable text."""
    words = WORD_PATTERN.findall(search_text)
    terms = WORD_PATTERN.findall(fold_accents(term))
    if not terms:
        return True
    return all(any(word.startswith(t) for word in words) for t in terms)


def matches_substring(search_text: str, term: str) -> bool:
    return fold_accents(term).strip() in search_text


def matches_query(expense: ExpenseRecord, query: ExpenseQuery) -> bool:
    if expense.user_id != query.user_id:
        return False
    if not query.include_deleted and expense.deleted:
        return False
    if query.occurred_from and expense.occurred_at < query.occurred_from:
        return False
    if query.occurred_to and expense.occurred_at > query.occurred_to:
        return False
    if query.occurred_before and expense.occurred_at >= query.occurred_before:
        return False
    if query.category_ids and expense.category_id not in query.category_ids:
        return False
    if query.account and expense.account != query.account:
        return False
    if query.search:
        if query.search_mode == SearchMode.TEXT:
            return matches_text(expense.search_text, query.search)
        return matches_substring(expense.search_text, query.search)
    return True


def apply_expense_query(
    expenses: Iterable[ExpenseRecord],
    query: ExpenseQuery,
) -> list[ExpenseRecord]:
    """Filter, order (occurred_at DESC, id DESC), resume after cursor, limit."""
    selected = [
        expense for expense in expenses
        if matches_query(expense, query) and is_after_cursor(expense, query.after)
    ]
    selected.sort(key=expense_sort_key, reverse=True)
    if query.limit is not None:
        return selected[:query.limit]
    return selected


def apply_mapping_page(
    mappings: Iterable[MerchantMapping],
    search: Optional[str],
    after: Optional[MappingCursor],
    limit: int,
) -> list[MerchantMapping]:
    """Order (merchant_key ASC, id ASC), substring search, resume, limit."""
    needle = search.strip().lower() if search else ""
    selected = []
    for mapping in mappings:
        if needle and needle not in mapping.merchant_key.lower():
            continue
        if after and (mapping.merchant_key, mapping.id) <= (after.merchant_key, after.id):
            continue
        selected.append(mapping)
    selected.sort(key=lambda m: (m.merchant_key, m.id))
    return selected[:limit]
