"""
Tests for the expense query engine.

Keyset pagination, filters, named windows in the user's timezone and
the substring fallback for search.
"""

import asyncio
from uuid import UUID

import pytest

from conftest import (
    DINING_ID,
    GROCERIES_ID,
    TRANSPORT_ID,
    FailingExpenseStorage,
    make_expense,
    seeded_categories,
    utc,
)
from expense_ledger.audit import AuditLogger
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.expense import AccountType, Profile
from expense_ledger.models.query import ExpenseListFilters, SearchMode
from expense_ledger.queries import ExpenseQueryEngine, ExpenseQueryError, ExpenseQueryErrorCode
from expense_ledger.services.storage import InMemoryLedgerStorage
from expense_ledger.utils.cursor import decode_cursor
from expense_ledger.utils.timezone import TimeWindow


def engine_for(storage):
    return ExpenseQueryEngine(storage, storage, AuditLogger(storage, storage))


def add(storage, expense):
    asyncio.run(storage.insert_expense(expense))
    return expense


def list_page(engine, user_id, **filters):
    now = filters.pop("now", None)
    return asyncio.run(engine.list(user_id, ExpenseListFilters(**filters), now=now))


class TestKeysetPagination:
    """Tests for ordering and cursors."""

    def test_pages_resume_after_last_returned_row(self, storage, user_id):
        """Test the two-page walk over three expenses sharing a timestamp."""
        e1 = add(storage, make_expense(
            user_id, utc(2024, 3, 10, 12),
            expense_id=UUID("00000000-0000-0000-0000-0000000000e3"),
        ))
        e2 = add(storage, make_expense(
            user_id, utc(2024, 3, 10, 12),
            expense_id=UUID("00000000-0000-0000-0000-0000000000e2"),
        ))
        e3 = add(storage, make_expense(user_id, utc(2024, 3, 9, 8)))
        engine = engine_for(storage)

        first = list_page(engine, user_id, limit=2)

        assert [e.id for e in first.items] == [e1.id, e2.id]
        assert first.has_more is True
        cursor = decode_cursor(first.next_cursor)
        assert cursor.id == e2.id
        assert cursor.occurred_at == e2.occurred_at

        second = list_page(engine, user_id, limit=2, cursor=cursor)

        assert [e.id for e in second.items] == [e3.id]
        assert second.has_more is False
        assert second.next_cursor is None

    def test_exact_page_size_has_no_more(self, storage, user_id):
        """Test that a full final page does not report more rows."""
        for day in (1, 2):
            add(storage, make_expense(user_id, utc(2024, 3, day, 10)))

        page = list_page(engine_for(storage), user_id, limit=2)

        assert len(page.items) == 2
        assert page.has_more is False
        assert page.next_cursor is None

    def test_empty_result_is_a_page(self, storage, user_id):
        """Test that no rows is a successful empty page."""
        page = list_page(engine_for(storage), user_id)

        assert page.items == []
        assert page.has_more is False

    def test_other_users_are_invisible(self, storage, user_id):
        """Test that rows of another owner never appear."""
        from uuid import uuid4

        add(storage, make_expense(uuid4(), utc(2024, 3, 1, 10)))
        mine = add(storage, make_expense(user_id, utc(2024, 3, 1, 9)))

        page = list_page(engine_for(storage), user_id)

        assert [e.id for e in page.items] == [mine.id]


class TestFilters:
    """Tests for category, account, range and deletion filters."""

    def test_category_filter(self, storage, user_id):
        """Test that only the requested categories come back."""
        add(storage, make_expense(user_id, utc(2024, 3, 1), category_id=GROCERIES_ID))
        dining = add(storage, make_expense(user_id, utc(2024, 3, 2), category_id=DINING_ID))
        transport = add(storage, make_expense(user_id, utc(2024, 3, 3), category_id=TRANSPORT_ID))

        page = list_page(engine_for(storage), user_id, category_ids=[DINING_ID, TRANSPORT_ID])

        assert [e.id for e in page.items] == [transport.id, dining.id]

    def test_account_filter(self, storage, user_id):
        """Test filtering on the paying account."""
        cash = add(storage, make_expense(user_id, utc(2024, 3, 1), account=AccountType.CASH))
        add(storage, make_expense(user_id, utc(2024, 3, 2), account=AccountType.CARD))

        page = list_page(engine_for(storage), user_id, account=AccountType.CASH)

        assert [e.id for e in page.items] == [cash.id]

    def test_explicit_range_is_inclusive(self, storage, user_id):
        """Test that both ends of from/to are included."""
        start = add(storage, make_expense(user_id, utc(2024, 3, 1)))
        end = add(storage, make_expense(user_id, utc(2024, 3, 31)))
        add(storage, make_expense(user_id, utc(2024, 4, 1)))

        page = list_page(
            engine_for(storage), user_id,
            date_from=utc(2024, 3, 1), date_to=utc(2024, 3, 31),
        )

        assert [e.id for e in page.items] == [end.id, start.id]

    def test_deleted_rows_hidden_by_default(self, storage, user_id):
        """Test that trashed expenses need include_deleted."""
        live = add(storage, make_expense(user_id, utc(2024, 3, 1)))
        trashed = add(storage, make_expense(
            user_id, utc(2024, 3, 2), deleted_at=utc(2024, 3, 5),
        ))
        engine = engine_for(storage)

        default = list_page(engine, user_id)
        everything = list_page(engine, user_id, include_deleted=True)

        assert [e.id for e in default.items] == [live.id]
        assert [e.id for e in everything.items] == [trashed.id, live.id]


class TestTimeWindows:
    """Tests for named windows resolved in the profile's timezone."""

    def test_this_month_uses_local_calendar(self, storage, user_id):
        """Test that March in Los Angeles starts at 08:00 UTC on March 1."""
        storage.profiles[user_id] = Profile(id=user_id, timezone="America/Los_Angeles")
        add(storage, make_expense(user_id, utc(2024, 3, 1, 7, 30)))
        inside = add(storage, make_expense(user_id, utc(2024, 3, 1, 8, 30)))

        page = list_page(
            engine_for(storage), user_id,
            time_range=TimeWindow.THIS_MONTH, now=utc(2024, 3, 15, 12),
        )

        assert [e.id for e in page.items] == [inside.id]

    def test_last_7_days_covers_today_and_six_before(self, storage, user_id, profile):
        """Test the seven local days ending today."""
        add(storage, make_expense(user_id, utc(2024, 3, 8, 23, 59)))
        first_day = add(storage, make_expense(user_id, utc(2024, 3, 9, 0, 0)))
        today = add(storage, make_expense(user_id, utc(2024, 3, 15, 18)))

        page = list_page(
            engine_for(storage), user_id,
            time_range=TimeWindow.LAST_7_DAYS, now=utc(2024, 3, 15, 12),
        )

        assert [e.id for e in page.items] == [today.id, first_day.id]

    def test_last_month_without_profile_is_utc(self, storage, user_id):
        """Test that a missing profile buckets in UTC."""
        february = add(storage, make_expense(user_id, utc(2024, 2, 29, 23)))
        add(storage, make_expense(user_id, utc(2024, 3, 1, 0)))

        page = list_page(
            engine_for(storage), user_id,
            time_range=TimeWindow.LAST_MONTH, now=utc(2024, 3, 15),
        )

        assert [e.id for e in page.items] == [february.id]


class TestSearch:
    """Tests for free-text search and its fallback."""

    def test_word_prefix_search(self, storage, user_id):
        """Test that search terms match word prefixes, accent-insensitively."""
        hit = add(storage, make_expense(
            user_id, utc(2024, 3, 1), name="Café Central", description="Morning latte",
        ))
        add(storage, make_expense(user_id, utc(2024, 3, 2), name="Hardware Store"))

        page = list_page(engine_for(storage), user_id, search="cafe lat")

        assert [e.id for e in page.items] == [hit.id]
        assert page.search_mode == SearchMode.TEXT

    def test_falls_back_to_substring(self, user_id):
        """Test that an unavailable text search degrades instead of failing."""
        storage = InMemoryLedgerStorage(seeded_categories(), text_search_available=False)
        hit = add(storage, make_expense(user_id, utc(2024, 3, 1), name="Supermarket"))

        page = list_page(engine_for(storage), user_id, search="market")

        assert [e.id for e in page.items] == [hit.id]
        assert page.search_mode == SearchMode.SUBSTRING
        assert any(
            e.event_type == AuditEventType.SEARCH_DEGRADED for e in storage.audit_events
        )

    def test_search_mode_absent_without_search(self, storage, user_id):
        """Test that plain listings don't report a search mode."""
        page = list_page(engine_for(storage), user_id)

        assert page.search_mode is None


class TestFailures:
    """Tests for store errors."""

    def test_store_failure_is_query_failed(self, user_id):
        """Test that a broken store is an error, never an empty page."""
        storage = FailingExpenseStorage(seeded_categories())

        with pytest.raises(ExpenseQueryError) as exc_info:
            list_page(engine_for(storage), user_id)

        assert exc_info.value.code == ExpenseQueryErrorCode.QUERY_FAILED

    def test_query_asks_for_one_extra_row(self, storage, user_id):
        """Test that the store is asked for limit + 1 rows."""
        engine = engine_for(storage)

        query = asyncio.run(engine.build_query(user_id, ExpenseListFilters(limit=10)))

        assert query.limit == 11
        assert query.search_mode == SearchMode.TEXT
