"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the shared storage backend because:
1. The treasurer can view and export the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Every entity gets its own worksheet ("<prefix>funds", "<prefix>receipts",
...). The first row holds the column names (the model's field names);
every following row is one record with each value written as text.

TRADEOFFS:
- Not suitable for high-volume data (one organization is fine)
- No transactions (the engines write in a careful order and clean up)
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.exceptions import APIError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fundledger.config import GoogleSheetsSettings, get_settings
from fundledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from fundledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    StorageError,
)
from fundledger.services.storage.tables import TableLedgerStorage, TableSpec

logger = structlog.get_logger(__name__)

# Column mappings for the audit sheet
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
]

# Transient API failures (quota, 5xx) are retried; everything else surfaces
sheets_retry = retry(
    retry=retry_if_exception_type(APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _to_cell(value: Any) -> str:
    """Render one field value as sheet text. None becomes an empty cell."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def record_to_row(table: TableSpec, record: BaseModel) -> list[str]:
    return [_to_cell(getattr(record, column)) for column in table.columns]


def row_to_record(table: TableSpec, header: list[str], row: list[str]) -> BaseModel:
    """
    Parse a sheet row back into its model.

    Empty cells are left out so the model's defaults apply; text is coerced
    by pydantic (UUIDs, Decimals, ISO dates, booleans).
    """
    data = {
        column: value
        for column, value in zip(header, row)
        if value != "" and column in table.model.model_fields
    }
    try:
        return table.model.model_validate(data)
    except PydanticValidationError as e:
        raise StorageError(f"Malformed row in {table.name}: {e}")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication, worksheet lookup and retry logic for API calls.
    A ready spreadsheet object can be injected instead of credentials.
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        spreadsheet: Optional[gspread.Spreadsheet] = None,
    ):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet = spreadsheet
        if settings is None and spreadsheet is None:
            settings = get_settings().google_sheets
        self._settings = settings
        self._worksheets: dict[str, gspread.Worksheet] = {}

    @property
    def worksheet_prefix(self) -> str:
        return self._settings.worksheet_prefix if self._settings else ""

    @property
    def audit_sheet_name(self) -> str:
        return self._settings.audit_sheet_name if self._settings else "AuditLog"

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

    @sheets_retry
    def worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        if title not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(
                    title=title,
                    rows=rows,
                    cols=len(columns),
                )
                sheet.append_row(columns, value_input_option="RAW")
            self._worksheets[title] = sheet
        return self._worksheets[title]

    def table_sheet(self, table: TableSpec) -> gspread.Worksheet:
        return self.worksheet(f"{self.worksheet_prefix}{table.name}", table.columns)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for the audit log
        return self.worksheet(self.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    @sheets_retry
    def read_all(self, sheet: gspread.Worksheet) -> list[list[str]]:
        return sheet.get_all_values()

    @sheets_retry
    def append_rows(self, sheet: gspread.Worksheet, rows: list[list[str]]) -> None:
        sheet.append_rows(rows, value_input_option="RAW")

    @sheets_retry
    def update_row(self, sheet: gspread.Worksheet, row_number: int, row: list[str]) -> None:
        sheet.update(
            range_name=f"A{row_number}",
            values=[row],
            value_input_option="RAW",
        )

    @sheets_retry
    def delete_row(self, sheet: gspread.Worksheet, row_number: int) -> None:
        sheet.delete_rows(row_number)


class GoogleSheetsLedgerStorage(TableLedgerStorage):
    """
    Google Sheets implementation of the ledger storage.

    Each table is a worksheet with one record per row. Rows of every tenant
    share the worksheet; reads filter on the user_id column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _rows(self, table: TableSpec) -> tuple[gspread.Worksheet, list[str], list[list[str]]]:
        """Return the sheet, its header and its data rows (header excluded)."""
        sheet = self._client.table_sheet(table)
        values = self._client.read_all(sheet)
        if not values:
            return sheet, table.columns, []
        return sheet, values[0], values[1:]

    @staticmethod
    def _cell(header: list[str], row: list[str], column: str) -> str:
        try:
            return row[header.index(column)]
        except (ValueError, IndexError):
            return ""

    async def _insert(self, table: TableSpec, records: list[BaseModel]) -> None:
        try:
            sheet, header, rows = self._rows(table)
            existing = {self._cell(header, row, "id") for row in rows}
            for record in records:
                if str(record.id) in existing:
                    raise DuplicateError(f"{table.name} row already exists: {record.id}")
            self._client.append_rows(sheet, [record_to_row(table, r) for r in records])
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {table.name}: {e}")

    async def _load(self, table: TableSpec, user_id: str) -> list[BaseModel]:
        try:
            _, header, rows = self._rows(table)
        except Exception as e:
            raise StorageError(f"Failed to read {table.name}: {e}")

        return [
            row_to_record(table, header, row)
            for row in rows
            if row and self._cell(header, row, "id")
            and self._cell(header, row, "user_id") == user_id
        ]

    async def _replace(self, table: TableSpec, record: BaseModel) -> bool:
        try:
            sheet, header, rows = self._rows(table)
            # Row 1 is the header
            for row_number, row in enumerate(rows, start=2):
                if (
                    self._cell(header, row, "id") == str(record.id)
                    and self._cell(header, row, "user_id") == record.user_id
                ):
                    self._client.update_row(sheet, row_number, record_to_row(table, record))
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to update {table.name}: {e}")

    async def _remove(self, table: TableSpec, ids: set[UUID], user_id: str) -> int:
        wanted = {str(record_id) for record_id in ids}
        try:
            sheet, header, rows = self._rows(table)
            row_numbers = [
                row_number
                for row_number, row in enumerate(rows, start=2)
                if self._cell(header, row, "id") in wanted
                and self._cell(header, row, "user_id") == user_id
            ]
            # Bottom-up so earlier deletions do not shift later row numbers
            for row_number in sorted(row_numbers, reverse=True):
                self._client.delete_row(sheet, row_number)
            return len(row_numbers)
        except Exception as e:
            raise StorageError(f"Failed to delete from {table.name}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _event_to_row(self, event: AuditEvent) -> list:
        """Convert an AuditEvent to a spreadsheet row."""
        return [
            str(event.event_id),
            event.timestamp.isoformat(),
            event.event_type.value,
            event.severity.value,
            event.user_id or "",
            event.entity_type or "",
            str(event.entity_id) if event.entity_id else "",
            str(event.correlation_id) if event.correlation_id else "",
            event.description,
            json.dumps(event.details, default=str) if event.details else "",
            event.error_code or "",
            event.error_message or "",
        ]

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = self._client.read_all(sheet)[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, PydanticValidationError) as e:
                logger.warning("malformed_audit_row", event_id=row[0], error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            self._client.append_rows(sheet, [self._event_to_row(event)])
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning(
                "audit_storage_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = [e for e in self._read_events() if user_id is None or e.user_id == user_id]
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
