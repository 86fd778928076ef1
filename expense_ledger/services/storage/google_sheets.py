"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the persistent backend because:
1. Users can view and export their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No transactions: the mapping upsert is read-then-write, not atomic
- No query engine: filtering, ordering and keyset pagination happen
  in Python (see filtering.py)
- No word-based text search: TEXT mode raises SearchUnavailableError
  and the query engine falls back to substring matching

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL later without changing business logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.config import get_settings
from expense_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_ledger.models.categorization import AiLogEntry
from expense_ledger.models.expense import (
    AccountType,
    Category,
    ExpenseRecord,
    MerchantMapping,
    Profile,
    uncategorized_category,
    utc_now,
)
from expense_ledger.models.query import ExpenseQuery, SearchMode
from expense_ledger.services.storage.filtering import (
    apply_expense_query,
    apply_mapping_page,
)
from expense_ledger.services.storage.interface import (
    AiLogStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    MerchantMappingStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
    SearchUnavailableError,
    StorageError,
)
from expense_ledger.utils.cursor import MappingCursor


EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "name",
    "description",
    "occurred_at",
    "account",
    "category_id",
    "merchant_key",
    "search_text",
    "deleted_at",
    "created_at",
    "updated_at",
]

MAPPING_COLUMNS = [
    "id",
    "user_id",
    "merchant_key",
    "category_id",
    "updated_at",
]

CATEGORY_COLUMNS = [
    "id",
    "key",
    "name",
    "sort_order",
]

PROFILE_COLUMNS = [
    "id",
    "timezone",
    "last_account",
    "created_at",
    "updated_at",
]

AI_LOG_COLUMNS = [
    "id",
    "user_id",
    "expense_id",
    "query_text",
    "ai_category_id",
    "confidence",
    "suggestions_json",
    "provider",
    "model",
    "latency_ms",
    "timed_out",
    "error_code",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]


def _row_getter(row: list) -> Callable[[int, str], str]:
    # Handle missing columns gracefully
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _parse_dt(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.expenses_sheet_name, EXPENSE_COLUMNS)

    def get_mappings_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(
            self._settings.merchant_mappings_sheet_name, MAPPING_COLUMNS
        )

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.categories_sheet_name, CATEGORY_COLUMNS)

    def get_profiles_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.profiles_sheet_name, PROFILE_COLUMNS)

    def get_ai_logs_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(
            self._settings.ai_logs_sheet_name, AI_LOG_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _replace_row(sheet: gspread.Worksheet, row_number: int, values: list) -> None:
    sheet.update(range_name=f"A{row_number}", values=[values], value_input_option="RAW")


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Expenses stored one per row.

    merchant_key and search_text are written for people reading the
    sheet; they are recomputed from name/description when rows load.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: ExpenseRecord) -> list:
        return [
            str(expense.id),
            str(expense.user_id),
            str(expense.amount),
            expense.name,
            expense.description or "",
            _iso(expense.occurred_at),
            expense.account.value if expense.account else "",
            str(expense.category_id),
            expense.merchant_key,
            expense.search_text,
            _iso(expense.deleted_at),
            _iso(expense.created_at),
            _iso(expense.updated_at),
        ]

    def _row_to_expense(self, row: list) -> ExpenseRecord:
        safe_get = _row_getter(row)
        return ExpenseRecord(
            id=UUID(safe_get(0)),
            user_id=UUID(safe_get(1)),
            amount=Decimal(safe_get(2)),
            name=safe_get(3),
            description=safe_get(4) or None,
            occurred_at=datetime.fromisoformat(safe_get(5)),
            account=AccountType(safe_get(6)) if safe_get(6) else None,
            category_id=UUID(safe_get(7)),
            deleted_at=_parse_dt(safe_get(10)),
            created_at=datetime.fromisoformat(safe_get(11)),
            updated_at=datetime.fromisoformat(safe_get(12)),
        )

    def _load(self) -> list[ExpenseRecord]:
        sheet = self._client.get_expenses_sheet()
        expenses = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            expenses.append(self._row_to_expense(row))
        return expenses

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def insert_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        try:
            sheet = self._client.get_expenses_sheet()
            if any(row and row[0] == str(expense.id) for row in sheet.get_all_values()[1:]):
                raise DuplicateError(f"Expense already exists: {expense.id}")
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
            return expense
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        try:
            sheet = self._client.get_expenses_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(expense_id):
                    expense = self._row_to_expense(row)
                    return expense if expense.user_id == user_id else None
            return None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()

            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(expense.id) and row[1] == str(expense.user_id):
                    _replace_row(sheet, idx, self._expense_to_row(expense))
                    return expense

            raise NotFoundError(f"Expense not found: {expense.id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def query_expenses(self, query: ExpenseQuery) -> list[ExpenseRecord]:
        if query.search and query.search_mode == SearchMode.TEXT:
            raise SearchUnavailableError("Google Sheets has no text search")
        try:
            return apply_expense_query(self._load(), query)
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")


class GoogleSheetsMappingStorage(MerchantMappingStorageInterface):
    """Merchant mappings stored one per row."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _mapping_to_row(self, mapping: MerchantMapping) -> list:
        return [
            str(mapping.id),
            str(mapping.user_id),
            mapping.merchant_key,
            str(mapping.category_id),
            _iso(mapping.updated_at),
        ]

    def _row_to_mapping(self, row: list) -> MerchantMapping:
        safe_get = _row_getter(row)
        return MerchantMapping(
            id=UUID(safe_get(0)),
            user_id=UUID(safe_get(1)),
            merchant_key=safe_get(2),
            category_id=UUID(safe_get(3)),
            updated_at=datetime.fromisoformat(safe_get(4)),
        )

    def _indexed(self, sheet: gspread.Worksheet, user_id: UUID) -> list[tuple[int, MerchantMapping]]:
        rows = []
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] and len(row) > 1 and row[1] == str(user_id):
                rows.append((idx, self._row_to_mapping(row)))
        return rows

    async def get_mapping_by_key(
        self,
        user_id: UUID,
        merchant_key: str,
    ) -> Optional[MerchantMapping]:
        key = merchant_key.lower()
        for mapping in await self.list_mappings_for_user(user_id):
            if mapping.merchant_key == key:
                return mapping
        return None

    async def list_mappings_for_user(self, user_id: UUID) -> list[MerchantMapping]:
        try:
            sheet = self._client.get_mappings_sheet()
            return [mapping for _, mapping in self._indexed(sheet, user_id)]
        except Exception as e:
            raise StorageError(f"Failed to list mappings: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_mapping(
        self,
        user_id: UUID,
        merchant_key: str,
        category_id: UUID,
    ) -> tuple[MerchantMapping, bool]:
        """
        Insert or update the (user, merchant_key) row.

        NOT atomic: the sheet is read and then written. gspread is
        synchronous, so nothing interleaves inside one event loop, but two
        processes writing the same sheet can both insert a row for one key.
        Run a single writer process against a spreadsheet.
        """
        try:
            sheet = self._client.get_mappings_sheet()
            for idx, mapping in self._indexed(sheet, user_id):
                if mapping.merchant_key != merchant_key:
                    continue
                if mapping.category_id == category_id:
                    return mapping, False
                updated = mapping.model_copy(
                    update={"category_id": category_id, "updated_at": utc_now()}
                )
                _replace_row(sheet, idx, self._mapping_to_row(updated))
                return updated, False

            mapping = MerchantMapping(
                user_id=user_id,
                merchant_key=merchant_key,
                category_id=category_id,
            )
            sheet.append_row(self._mapping_to_row(mapping), value_input_option="RAW")
            return mapping, True
        except Exception as e:
            raise StorageError(f"Failed to upsert mapping: {e}")

    async def get_mapping(
        self,
        user_id: UUID,
        mapping_id: UUID,
    ) -> Optional[MerchantMapping]:
        for mapping in await self.list_mappings_for_user(user_id):
            if mapping.id == mapping_id:
                return mapping
        return None

    async def update_mapping_category(
        self,
        user_id: UUID,
        mapping_id: UUID,
        category_id: UUID,
    ) -> MerchantMapping:
        try:
            sheet = self._client.get_mappings_sheet()
            for idx, mapping in self._indexed(sheet, user_id):
                if mapping.id != mapping_id:
                    continue
                if mapping.category_id == category_id:
                    return mapping
                updated = mapping.model_copy(
                    update={"category_id": category_id, "updated_at": utc_now()}
                )
                _replace_row(sheet, idx, self._mapping_to_row(updated))
                return updated
            raise NotFoundError(f"Mapping not found: {mapping_id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update mapping: {e}")

    async def delete_mapping(self, user_id: UUID, mapping_id: UUID) -> bool:
        try:
            sheet = self._client.get_mappings_sheet()
            for idx, mapping in self._indexed(sheet, user_id):
                if mapping.id == mapping_id:
                    sheet.delete_rows(idx)
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to delete mapping: {e}")

    async def page_mappings(
        self,
        user_id: UUID,
        search: Optional[str] = None,
        after: Optional[MappingCursor] = None,
        limit: int = 50,
    ) -> list[MerchantMapping]:
        return apply_mapping_page(
            await self.list_mappings_for_user(user_id),
            search=search,
            after=after,
            limit=limit,
        )


class GoogleSheetsCategoryStorage(CategoryStorageInterface):
    """
    Read-only category catalogue.

    The uncategorized category is served even if the sheet lacks it.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_category(self, row: list) -> Category:
        safe_get = _row_getter(row)
        return Category(
            id=UUID(safe_get(0)),
            key=safe_get(1),
            name=safe_get(2),
            sort_order=int(safe_get(3, "0")),
        )

    async def list_categories(self) -> list[Category]:
        try:
            sheet = self._client.get_categories_sheet()
            categories = {
                category.id: category
                for category in (
                    self._row_to_category(row)
                    for row in sheet.get_all_values()[1:]
                    if row and row[0]
                )
            }
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")

        default = uncategorized_category()
        categories.setdefault(default.id, default)
        return sorted(categories.values(), key=lambda c: (c.sort_order, c.name))

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        for category in await self.list_categories():
            if category.id == category_id:
                return category
        return None


class GoogleSheetsProfileStorage(ProfileStorageInterface):
    """User profiles stored one per row, keyed by user id."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _profile_to_row(self, profile: Profile) -> list:
        return [
            str(profile.id),
            profile.timezone or "",
            profile.last_account.value if profile.last_account else "",
            _iso(profile.created_at),
            _iso(profile.updated_at),
        ]

    def _row_to_profile(self, row: list) -> Profile:
        safe_get = _row_getter(row)
        return Profile(
            id=UUID(safe_get(0)),
            timezone=safe_get(1) or None,
            last_account=AccountType(safe_get(2)) if safe_get(2) else None,
            created_at=datetime.fromisoformat(safe_get(3)),
            updated_at=datetime.fromisoformat(safe_get(4)),
        )

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        try:
            sheet = self._client.get_profiles_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(user_id):
                    return self._row_to_profile(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get profile: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_profile(self, profile: Profile) -> Profile:
        try:
            sheet = self._client.get_profiles_sheet()
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == str(profile.id):
                    _replace_row(sheet, idx, self._profile_to_row(profile))
                    return profile
            sheet.append_row(self._profile_to_row(profile), value_input_option="RAW")
            return profile
        except Exception as e:
            raise StorageError(f"Failed to save profile: {e}")


class GoogleSheetsAiLogStorage(AiLogStorageInterface):
    """Append-only log of categorization provider calls."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _entry_to_row(self, entry: AiLogEntry) -> list:
        return [
            str(entry.id),
            str(entry.user_id),
            str(entry.expense_id) if entry.expense_id else "",
            entry.query_text,
            str(entry.ai_category_id) if entry.ai_category_id else "",
            "" if entry.confidence is None else str(entry.confidence),
            json.dumps([s.model_dump(mode="json") for s in entry.suggestions]),
            entry.provider,
            entry.model or "",
            str(entry.latency_ms),
            str(entry.timed_out),
            entry.error_code.value if entry.error_code else "",
            _iso(entry.created_at),
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_ai_log(self, entry: AiLogEntry) -> bool:
        try:
            sheet = self._client.get_ai_logs_sheet()
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write AI log: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _row_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=UUID(safe_get(4)) if safe_get(4) else None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    def _load(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        return [
            self._row_to_event(row)
            for row in sheet.get_all_values()[1:]
            if row and row[0]
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._load() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return sorted(events, key=lambda e: e.timestamp)
