"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted record store because:
1. Users can view and fix their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: each interface call maps to one API write where the
  Sheets API allows it (append_rows, batch_update), and the orchestrator
  compensates across calls
- Limited query capabilities (we filter in Python)

Every table is one worksheet, one record per row, header in row 1.
List-valued fields are stored as JSON.
"""

import json
from contextlib import contextmanager
from typing import Optional, Type, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import BaseModel, ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from finledger.config import get_settings
from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Category,
    Expense,
    Income,
    InstallmentPlan,
    RecurringService,
    ServicePayment,
    UserPreferences,
)
from finledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger("finledger.storage.google_sheets")

ModelT = TypeVar("ModelT", bound=BaseModel)


EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "amount",
    "description",
    "expense_date",
    "financial_type",
    "status",
    "category_ids",
    "service_id",
    "debt_id",
    "payment_group_id",
    "credit_card_id",
    "is_parent",
    "total_amount",
    "installments",
    "parent_expense_id",
    "installment_number",
]

INCOME_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "amount",
    "description",
    "income_type",
    "income_date",
    "is_recurring",
    "recurring_day",
    "recurring_frequency",
]

SERVICE_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "name",
    "estimated_amount",
    "day_of_month",
    "category_id",
    "is_active",
]

PAYMENT_COLUMNS = [
    "id",
    "service_id",
    "expense_id",
    "payment_date",
    "amount",
    "month",
    "year",
    "status",
    "created_at",
]

CATEGORY_COLUMNS = [
    "id",
    "user_id",
    "name",
    "financial_type",
    "usage_count",
]

PREFERENCE_COLUMNS = [
    "user_id",
    "last_closed_month",
    "carryover_amount",
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
    "error_message",
    "is_user_action",
]

JSON_COLUMNS = {"category_ids"}


def _to_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def model_to_row(model: BaseModel, columns: list[str]) -> list[str]:
    """Convert a record to a spreadsheet row in column order."""
    data = model.model_dump(mode="json")
    return [_to_cell(data.get(column)) for column in columns]


def row_to_model(model_cls: Type[ModelT], row: list, columns: list[str]) -> ModelT:
    """
    Convert a spreadsheet row back to a record.
    
    Empty cells become missing fields so model defaults apply. Raises
    pydantic.ValidationError for rows that do not form a valid record.
    """
    data = {}
    for index, column in enumerate(columns):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        data[column] = json.loads(value) if column in JSON_COLUMNS else value
    return model_cls.model_validate(data)


@contextmanager
def storage_errors(operation: str):
    """Re-raise anything but our own storage errors as StorageError."""
    try:
        yield
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to {operation}: {e}") from e


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.
    
    Handles authentication and retries establishing the connection.
    Writes are never retried automatically.
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
    
    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet
    
    def expenses_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=5000)
    
    def incomes_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.incomes_sheet_name, INCOME_COLUMNS)
    
    def services_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.services_sheet_name, SERVICE_COLUMNS)
    
    def payments_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.payments_sheet_name, PAYMENT_COLUMNS, rows=5000)
    
    def categories_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.categories_sheet_name, CATEGORY_COLUMNS)
    
    def preferences_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.preferences_sheet_name, PREFERENCE_COLUMNS)
    
    def audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


def _data_rows(sheet: gspread.Worksheet) -> list[tuple[int, list]]:
    """(sheet row number, values) for every non-empty data row."""
    return [
        (index, row)
        for index, row in enumerate(sheet.get_all_values()[1:], start=2)
        if row and row[0]
    ]


def _parse_rows(
    sheet: gspread.Worksheet,
    model_cls: Type[ModelT],
    columns: list[str],
) -> list[ModelT]:
    records = []
    for index, row in _data_rows(sheet):
        try:
            records.append(row_to_model(model_cls, row, columns))
        except (ValidationError, ValueError) as e:
            logger.warning(
                "skipping_malformed_row",
                worksheet=sheet.title,
                row=index,
                error=str(e),
            )
    return records


def _row_index(sheet: gspread.Worksheet, record_id: str) -> Optional[int]:
    for index, row in _data_rows(sheet):
        if row[0] == record_id:
            return index
    return None


def _update_row(sheet: gspread.Worksheet, index: int, row: list[str]) -> None:
    sheet.update(range_name=f"A{index}", values=[row], value_input_option="RAW")


def _delete_row_numbers(sheet: gspread.Worksheet, numbers: list[int]) -> None:
    # Bottom-up so earlier deletions do not shift later row numbers
    for number in sorted(numbers, reverse=True):
        sheet.delete_rows(number)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.
    
    One worksheet per table. Records are filtered by user in Python.
    """
    
    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
    
    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------
    
    async def list_expenses(self, user_id: str) -> list[Expense]:
        with storage_errors("list expenses"):
            sheet = self._client.expenses_sheet()
            expenses = [
                e for e in _parse_rows(sheet, Expense, EXPENSE_COLUMNS)
                if e.user_id == user_id
            ]
            expenses.sort(key=lambda e: e.expense_date, reverse=True)
            return expenses
    
    async def save_expense(self, expense: Expense) -> Expense:
        with storage_errors("save expense"):
            sheet = self._client.expenses_sheet()
            if _row_index(sheet, str(expense.id)) is not None:
                raise DuplicateError(f"Expense {expense.id} already exists")
            sheet.append_row(model_to_row(expense, EXPENSE_COLUMNS), value_input_option="RAW")
            return expense
    
    async def update_expenses(self, expenses: list[Expense]) -> None:
        with storage_errors("update expenses"):
            sheet = self._client.expenses_sheet()
            positions = {row[0]: index for index, row in _data_rows(sheet)}
            missing = [e.id for e in expenses if str(e.id) not in positions]
            if missing:
                raise NotFoundError(f"Expenses not found: {missing}")
            sheet.batch_update(
                [
                    {
                        "range": f"A{positions[str(e.id)]}",
                        "values": [model_to_row(e, EXPENSE_COLUMNS)],
                    }
                    for e in expenses
                ],
                value_input_option="RAW",
            )
    
    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        with storage_errors("delete expenses"):
            sheet = self._client.expenses_sheet()
            wanted = {str(i) for i in expense_ids}
            numbers = [index for index, row in _data_rows(sheet) if row[0] in wanted]
            _delete_row_numbers(sheet, numbers)
            return len(numbers)
    
    async def save_installment_plan(self, plan: InstallmentPlan) -> InstallmentPlan:
        with storage_errors("save installment plan"):
            sheet = self._client.expenses_sheet()
            rows = [model_to_row(e, EXPENSE_COLUMNS) for e in plan.to_expenses()]
            existing = {row[0] for _, row in _data_rows(sheet)}
            clashes = [row[0] for row in rows if row[0] in existing]
            if clashes:
                raise DuplicateError(f"Expenses already exist: {clashes}")
            sheet.append_rows(rows, value_input_option="RAW")
            return plan
    
    # ------------------------------------------------------------------
    # Incomes
    # ------------------------------------------------------------------
    
    async def list_incomes(self, user_id: str) -> list[Income]:
        with storage_errors("list incomes"):
            sheet = self._client.incomes_sheet()
            return [
                i for i in _parse_rows(sheet, Income, INCOME_COLUMNS)
                if i.user_id == user_id
            ]
    
    async def save_income(self, income: Income) -> Income:
        with storage_errors("save income"):
            sheet = self._client.incomes_sheet()
            if _row_index(sheet, str(income.id)) is not None:
                raise DuplicateError(f"Income {income.id} already exists")
            sheet.append_row(model_to_row(income, INCOME_COLUMNS), value_input_option="RAW")
            return income
    
    async def update_income(self, income: Income) -> Income:
        with storage_errors("update income"):
            sheet = self._client.incomes_sheet()
            index = _row_index(sheet, str(income.id))
            if index is None:
                raise NotFoundError(f"Income {income.id} not found")
            _update_row(sheet, index, model_to_row(income, INCOME_COLUMNS))
            return income
    
    async def delete_income(self, income_id: UUID) -> bool:
        with storage_errors("delete income"):
            sheet = self._client.incomes_sheet()
            index = _row_index(sheet, str(income_id))
            if index is None:
                return False
            sheet.delete_rows(index)
            return True
    
    # ------------------------------------------------------------------
    # Recurring services and their payments
    # ------------------------------------------------------------------
    
    async def list_services(self, user_id: str) -> list[RecurringService]:
        with storage_errors("list services"):
            sheet = self._client.services_sheet()
            services = [
                s for s in _parse_rows(sheet, RecurringService, SERVICE_COLUMNS)
                if s.user_id == user_id
            ]
            services.sort(key=lambda s: s.name)
            return services
    
    async def save_service(self, service: RecurringService) -> RecurringService:
        with storage_errors("save service"):
            sheet = self._client.services_sheet()
            if _row_index(sheet, str(service.id)) is not None:
                raise DuplicateError(f"Service {service.id} already exists")
            sheet.append_row(model_to_row(service, SERVICE_COLUMNS), value_input_option="RAW")
            return service
    
    async def update_service(self, service: RecurringService) -> RecurringService:
        with storage_errors("update service"):
            sheet = self._client.services_sheet()
            index = _row_index(sheet, str(service.id))
            if index is None:
                raise NotFoundError(f"Service {service.id} not found")
            _update_row(sheet, index, model_to_row(service, SERVICE_COLUMNS))
            return service
    
    async def delete_service(self, service_id: UUID) -> bool:
        with storage_errors("delete service"):
            sheet = self._client.services_sheet()
            index = _row_index(sheet, str(service_id))
            if index is None:
                return False
            sheet.delete_rows(index)
            return True
    
    async def list_service_payments(self, service_ids: list[UUID]) -> list[ServicePayment]:
        with storage_errors("list service payments"):
            sheet = self._client.payments_sheet()
            wanted = set(service_ids)
            return [
                p for p in _parse_rows(sheet, ServicePayment, PAYMENT_COLUMNS)
                if p.service_id in wanted
            ]
    
    def _payment_row_index(
        self,
        sheet: gspread.Worksheet,
        service_id: UUID,
        month: int,
        year: int,
    ) -> Optional[int]:
        # service_id, month and year are columns 2, 6 and 7
        for index, row in _data_rows(sheet):
            if (
                len(row) > 6
                and row[1] == str(service_id)
                and row[5] == str(month)
                and row[6] == str(year)
            ):
                return index
        return None
    
    async def upsert_service_payment(self, payment: ServicePayment) -> ServicePayment:
        with storage_errors("upsert service payment"):
            sheet = self._client.payments_sheet()
            index = self._payment_row_index(sheet, payment.service_id, payment.month, payment.year)
            if index is None:
                sheet.append_row(model_to_row(payment, PAYMENT_COLUMNS), value_input_option="RAW")
                return payment
            existing_id = sheet.cell(index, 1).value
            stored = payment.model_copy(update={"id": UUID(existing_id)})
            _update_row(sheet, index, model_to_row(stored, PAYMENT_COLUMNS))
            return stored
    
    async def delete_service_payment(self, service_id: UUID, month: int, year: int) -> bool:
        with storage_errors("delete service payment"):
            sheet = self._client.payments_sheet()
            index = self._payment_row_index(sheet, service_id, month, year)
            if index is None:
                return False
            sheet.delete_rows(index)
            return True
    
    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    
    async def list_categories(self, user_id: str) -> list[Category]:
        with storage_errors("list categories"):
            sheet = self._client.categories_sheet()
            return [
                c for c in _parse_rows(sheet, Category, CATEGORY_COLUMNS)
                if c.user_id in (None, user_id)
            ]
    
    async def increment_category_usage(self, user_id: str, category_ids: list[str]) -> None:
        with storage_errors("increment category usage"):
            sheet = self._client.categories_sheet()
            rows = {row[0]: (index, row) for index, row in _data_rows(sheet)}
            missing = [c for c in category_ids if c not in rows]
            if missing:
                raise NotFoundError(f"Categories not found: {missing}")
            
            usage_column = CATEGORY_COLUMNS.index("usage_count")
            updates = []
            for category_id in category_ids:
                index, row = rows[category_id]
                current = row[usage_column] if len(row) > usage_column else ""
                updates.append({
                    "range": rowcol_to_a1(index, usage_column + 1),
                    "values": [[str(int(current or 0) + 1)]],
                })
            sheet.batch_update(updates, value_input_option="RAW")
    
    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    
    async def get_preferences(self, user_id: str) -> UserPreferences:
        with storage_errors("get preferences"):
            sheet = self._client.preferences_sheet()
            index = _row_index(sheet, user_id)
            if index is None:
                return UserPreferences(user_id=user_id)
            row = sheet.row_values(index)
            return row_to_model(UserPreferences, row, PREFERENCE_COLUMNS)
    
    async def update_preferences(self, preferences: UserPreferences) -> UserPreferences:
        with storage_errors("update preferences"):
            sheet = self._client.preferences_sheet()
            row = model_to_row(preferences, PREFERENCE_COLUMNS)
            index = _row_index(sheet, preferences.user_id)
            if index is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                _update_row(sheet, index, row)
            return preferences


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
            timestamp=safe_get(1),
            event_type=safe_get(2),
            severity=safe_get(3),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )
    
    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.audit_sheet()
        events = []
        for index, row in _data_rows(sheet):
            try:
                events.append(self._row_to_event(row))
            except (ValidationError, ValueError) as e:
                logger.warning("skipping_malformed_audit_row", row=index, error=str(e))
        return events
    
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are reported, never raised."""
        try:
            sheet = self._client.audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            logger.warning(
                "audit_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False
    
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with storage_errors("get audit events"):
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
    
    async def get_recent_events(
        self,
        limit: int = 100,
        user_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        with storage_errors("get audit events"):
            events = [
                e for e in self._all_events()
                if user_id is None or e.user_id == user_id
            ]
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
