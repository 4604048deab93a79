"""
Google Sheets Storage Implementation

DESIGN DECISION: the ledger can live in a spreadsheet the owner already
shares with their accountant. Two worksheets are used: one key/value
row per ledger collection, and an append-only audit log.

TRADEOFFS:
- Each key is one row holding a JSON document, so very large ledgers
  hit the per-cell size limit (use the json_file backend for those)
- No transactions (the orchestrator computes the whole new state
  before the first write)

The implementation follows the abstract interface, so the engine never
knows which backend holds its data.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_engine.config import GoogleSheetsSettings, get_settings
from ledger_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_engine.models.ledger import utc_now
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    KeyValueStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for the key/value sheet
STORE_COLUMNS = [
    "key",
    "value_json",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

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

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
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

    def get_store_sheet(self) -> gspread.Worksheet:
        """Get or create the key/value worksheet."""
        return self._get_or_create_sheet(
            self._settings.store_sheet_name, STORE_COLUMNS, rows=100
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsKeyValueStore(KeyValueStoreInterface):
    """
    Google Sheets implementation of the key-value store.

    One row per key; the value is JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> tuple[Optional[int], Optional[list]]:
        all_rows = sheet.get_all_values()
        # Row 1 is the header
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == key:
                return idx, row
        return None, None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def load(self, key: str, default: Any = None) -> Any:
        try:
            sheet = self._client.get_store_sheet()
            _, row = self._find_row(sheet, key)
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load key '{key}': {e}")

        if row is None or len(row) < 2 or not row[1]:
            return default
        try:
            return json.loads(row[1])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt JSON stored under key '{key}': {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def save(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        new_row = [key, payload, utc_now().isoformat()]
        try:
            sheet = self._client.get_store_sheet()
            idx, _ = self._find_row(sheet, key)
            if idx is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{idx}:C{idx}",
                    values=[new_row],
                    value_input_option="RAW",
                )
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save key '{key}': {e}")
        logger.debug("sheets_store_saved", key=key, size=len(payload))

    def keys(self) -> list[str]:
        try:
            sheet = self._client.get_store_sheet()
            return [row[0] for row in sheet.get_all_values()[1:] if row and row[0]]
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

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
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError) as e:
                logger.warning("audit_row_skipped", error=str(e), event_id=row[0])
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning(
                "audit_append_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
