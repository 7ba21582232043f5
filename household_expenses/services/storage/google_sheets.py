"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted document store because:
1. Household members can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each collection (`users`, `households`, `transactions`, audit log) is one
worksheet with one document per row. List-valued fields are JSON-encoded.

TRADEOFFS:
- No transactions. The household compare-and-swap re-reads the row right
  before writing it, which narrows but does not close the race window
  between processes. Within one process the membership manager's
  per-household lock serializes transitions.
- No push notifications. Subscribers are notified after writes made
  through this process only.
- Limited query capabilities (we filter in Python)
"""

import json
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_expenses.config import get_settings
from household_expenses.models.audit import AuditEvent, AuditEventType, AuditSeverity
from household_expenses.models.household import Expense, Household, Member
from household_expenses.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    ConcurrentModificationError,
    ConnectionError,
    DocumentNotFoundError,
    DuplicateError,
    ExpenseStorageInterface,
    HouseholdStorageInterface,
    MemberStorageInterface,
    StorageError,
    Unsubscribe,
)
from household_expenses.services.storage.notifier import ChangeNotifier


USER_COLUMNS = [
    "id",
    "email",
    "name",
    "householdId",
    "isAdmin",
    "isActive",
    "createdAt",
]

HOUSEHOLD_COLUMNS = [
    "id",
    "name",
    "code",
    "admin",
    "members_json",
    "createdAt",
]

TRANSACTION_COLUMNS = [
    "id",
    "userId",
    "userName",
    "householdId",
    "amount",
    "note",
    "receiptUrl",
    "timestamp",
    "month",
    "type",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "household_id",
    "actor_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# Domain outcomes, not transient failures: never retried
_NOT_RETRIED = (ConcurrentModificationError, DuplicateError, DocumentNotFoundError)

write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type(_NOT_RETRIED),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and lazily creates one worksheet per collection.
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

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.users_sheet_name, USER_COLUMNS)

    def get_households_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.households_sheet_name, HOUSEHOLD_COLUMNS
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _find_row(sheet: gspread.Worksheet, doc_id: str) -> tuple[Optional[int], Optional[list]]:
    """Locate a document row by id. Returns (1-based row index, row)."""
    all_rows = sheet.get_all_values()
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
        if row and row[0] == doc_id:
            return idx, row
    return None, None


def _write_row(sheet: gspread.Worksheet, idx: int, row: list) -> None:
    sheet.update(
        range_name=f"A{idx}",
        values=[row],
        value_input_option="RAW",
    )


class GoogleSheetsStorage(
    MemberStorageInterface,
    HouseholdStorageInterface,
    ExpenseStorageInterface,
):
    """
    Google Sheets implementation of the document store.

    Documents are stored as rows; conversions go through the models'
    to_document()/from_document() so the field contract is identical to
    every other backend.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._notifier = notifier or ChangeNotifier()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _member_to_row(member: Member) -> list:
        doc = member.to_document()
        return [
            doc["id"],
            doc["email"],
            doc["name"],
            doc["householdId"] or "",
            str(doc["isAdmin"]),
            str(doc["isActive"]),
            doc["createdAt"],
        ]

    @staticmethod
    def _row_to_member(row: list) -> Member:
        return Member.from_document({
            "id": _safe_get(row, 0),
            "email": _safe_get(row, 1),
            "name": _safe_get(row, 2),
            "householdId": _safe_get(row, 3) or None,
            "isAdmin": _safe_get(row, 4).lower() == "true",
            "isActive": _safe_get(row, 5, "True").lower() == "true",
            "createdAt": _safe_get(row, 6) or None,
        })

    @staticmethod
    def _household_to_row(household: Household) -> list:
        doc = household.to_document()
        return [
            doc["id"],
            doc["name"],
            doc["code"],
            doc["admin"],
            json.dumps(doc["members"]),
            doc["createdAt"],
        ]

    @staticmethod
    def _row_to_household(row: list) -> Household:
        return Household.from_document({
            "id": _safe_get(row, 0),
            "name": _safe_get(row, 1),
            "code": _safe_get(row, 2),
            "admin": _safe_get(row, 3),
            "members": json.loads(_safe_get(row, 4, "[]")),
            "createdAt": _safe_get(row, 5) or None,
        })

    @staticmethod
    def _expense_to_row(expense: Expense) -> list:
        doc = expense.to_document()
        return [
            expense.id,
            doc.get("userId") or "",
            doc["userName"],
            doc["householdId"],
            str(expense.amount),
            doc["note"] or "",
            doc["receiptUrl"] or "",
            doc["timestamp"],
            doc["month"],
            doc["type"],
        ]

    @staticmethod
    def _row_to_expense(row: list) -> Expense:
        return Expense.from_document(_safe_get(row, 0), {
            "userId": _safe_get(row, 1) or None,
            "userName": _safe_get(row, 2),
            "householdId": _safe_get(row, 3),
            "amount": _safe_get(row, 4, "0"),
            "note": _safe_get(row, 5) or None,
            "receiptUrl": _safe_get(row, 6) or None,
            "timestamp": _safe_get(row, 7),
            "month": _safe_get(row, 8),
            "type": _safe_get(row, 9) or None,
        })

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def get_member(self, member_id: str) -> Optional[Member]:
        try:
            _, row = _find_row(self._client.get_users_sheet(), member_id)
            return self._row_to_member(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get member: {e}")

    async def find_member_by_email(self, email: str) -> Optional[Member]:
        try:
            all_rows = self._client.get_users_sheet().get_all_values()[1:]
            for row in all_rows:
                if row and _safe_get(row, 1) == email:
                    return self._row_to_member(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to find member: {e}")

    async def list_members(self, member_ids: list[str]) -> list[Member]:
        try:
            all_rows = self._client.get_users_sheet().get_all_values()[1:]
            by_id = {row[0]: row for row in all_rows if row and row[0]}
            return [
                self._row_to_member(by_id[member_id])
                for member_id in member_ids
                if member_id in by_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to list members: {e}")

    @write_retry
    async def save_member(self, member: Member) -> bool:
        try:
            sheet = self._client.get_users_sheet()
            idx, _ = _find_row(sheet, member.id)
            row = self._member_to_row(member)
            if idx is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                _write_row(sheet, idx, row)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save member: {e}")

    # -------------------------------------------------------------------------
    # Households
    # -------------------------------------------------------------------------

    async def get_household(self, household_id: str) -> Optional[Household]:
        try:
            _, row = _find_row(self._client.get_households_sheet(), household_id)
            return self._row_to_household(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get household: {e}")

    async def find_household_by_code(self, code: str) -> Optional[Household]:
        try:
            all_rows = self._client.get_households_sheet().get_all_values()[1:]
            for row in all_rows:
                if row and _safe_get(row, 2) == code:
                    return self._row_to_household(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to find household: {e}")

    @write_retry
    async def create_household(self, household: Household) -> bool:
        try:
            sheet = self._client.get_households_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and (row[0] == household.id or _safe_get(row, 2) == household.code):
                    raise DuplicateError(f"Household id or code already in use: {household.code}")
            sheet.append_row(self._household_to_row(household), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to create household: {e}")

    @write_retry
    async def replace_household(
        self,
        household: Household,
        expected: Household,
    ) -> bool:
        try:
            sheet = self._client.get_households_sheet()
            idx, row = _find_row(sheet, household.id)
            if idx is None:
                raise ConcurrentModificationError(f"Household no longer exists: {household.id}")
            current = self._row_to_household(row)
            if current.members != expected.members or current.admin != expected.admin:
                raise ConcurrentModificationError(f"Household changed concurrently: {household.id}")
            _write_row(sheet, idx, self._household_to_row(household))
            return True
        except ConcurrentModificationError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update household: {e}")

    @write_retry
    async def delete_household(self, household_id: str) -> bool:
        try:
            sheet = self._client.get_households_sheet()
            idx, _ = _find_row(sheet, household_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete household: {e}")

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @write_retry
    async def save_expense(self, expense: Expense) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")
        await self._notifier.notify(expense.household_id)
        return True

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        try:
            _, row = _find_row(self._client.get_transactions_sheet(), expense_id)
            return self._row_to_expense(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    @write_retry
    async def update_expense(self, expense: Expense) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            idx, _ = _find_row(sheet, expense.id)
            if idx is None:
                raise DocumentNotFoundError(f"Expense not found: {expense.id}")
            _write_row(sheet, idx, self._expense_to_row(expense))
        except DocumentNotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")
        await self._notifier.notify(expense.household_id)
        return True

    @write_retry
    async def delete_expense(self, expense_id: str) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            idx, row = _find_row(sheet, expense_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")
        await self._notifier.notify(_safe_get(row, 3))
        return True

    async def list_expenses(
        self,
        household_id: str,
        month: Optional[str] = None,
    ) -> list[Expense]:
        try:
            all_rows = self._client.get_transactions_sheet().get_all_values()[1:]

            expenses = []
            for row in all_rows:
                if not row or not row[0]:  # Skip empty rows
                    continue
                if _safe_get(row, 3) != household_id:
                    continue
                if month is not None and _safe_get(row, 8) != month:
                    continue
                expenses.append(self._row_to_expense(row))

            expenses.sort(key=lambda e: e.timestamp, reverse=True)
            return expenses
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

    @write_retry
    async def delete_expenses_for_household(self, household_id: str) -> list[Expense]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            deleted = []
            # Bottom-up so earlier row indexes stay valid while deleting
            for idx in range(len(all_rows), 1, -1):
                row = all_rows[idx - 1]
                if row and _safe_get(row, 3) == household_id:
                    deleted.append(self._row_to_expense(row))
                    sheet.delete_rows(idx)
        except Exception as e:
            raise StorageError(f"Failed to delete household expenses: {e}")

        if deleted:
            await self._notifier.notify(household_id)
        deleted.sort(key=lambda e: e.timestamp, reverse=True)
        return deleted

    def subscribe_expenses(
        self,
        household_id: str,
        callback: ChangeCallback,
    ) -> Unsubscribe:
        return self._notifier.subscribe(household_id, callback)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _row_to_event(row: list) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=_safe_get(row, 1),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            household_id=_safe_get(row, 4) or None,
            actor_id=_safe_get(row, 5) or None,
            entity_type=_safe_get(row, 6) or None,
            entity_id=_safe_get(row, 7) or None,
            correlation_id=UUID(_safe_get(row, 8)) if _safe_get(row, 8) else None,
            description=_safe_get(row, 9),
            details=json.loads(_safe_get(row, 10)) if _safe_get(row, 10) else {},
            error_message=_safe_get(row, 11) or None,
        )

    @write_retry
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_recent_events(
        self,
        household_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]

            events = []
            for row in all_rows:
                if not row or not row[0]:
                    continue
                if household_id is not None and _safe_get(row, 4) != household_id:
                    continue
                events.append(self._row_to_event(row))

            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
