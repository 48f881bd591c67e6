"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the persistent backend because:
1. Users can look at their own synced data directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for one household)
- Limited query capabilities (we filter in Python)
- No multi-document transactions. Every write that must be atomic
  (transaction batches, receipt links, consolidated account updates)
  is sent as ONE values:batchUpdate request, which the Sheets API
  applies all-or-nothing.

gspread is synchronous. Each storage operation runs as one blocking
function in a worker thread (GoogleSheetsClient.run), so the event loop
keeps serving other accounts. The client lock admits one operation at a
time, so the read and the write of one operation never interleave with
another's.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from finlink.config import GoogleSheetsSettings, get_settings
from finlink.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finlink.models.finance import (
    AccountStatus,
    DateRange,
    LinkedAccount,
    Receipt,
    ReceiptLineItem,
    ReceiptStatus,
    Transaction,
)
from finlink.models.outcomes import UpsertResult
from finlink.services.storage.filters import filter_receipts, filter_transactions, sort_newest_first
from finlink.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LinkConflictError,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
    TransactionStorageInterface,
)


ACCOUNT_COLUMNS = [
    "user_id",
    "item_id",
    "access_token",
    "institution_id",
    "institution_name",
    "institution_logo",
    "sync_cursor",
    "last_synced_at",
    "status",
    "last_sync_error",
    "linked_at",
]

TRANSACTION_COLUMNS = [
    "transaction_id",
    "user_id",
    "account_id",
    "item_id",
    "name",
    "merchant_name",
    "amount",
    "currency_code",
    "date",
    "authorized_date",
    "pending",
    "categories_json",
    "payment_channel",
    "transaction_type",
    "pending_transaction_id",
    "linked_receipt_id",
]

RECEIPT_COLUMNS = [
    "receipt_id",
    "user_id",
    "vendor_name",
    "transaction_date",
    "total_amount",
    "currency_code",
    "status",
    "matched_transaction_id",
    "line_items_json",
    "created_at",
    "updated_at",
]

INSIGHT_COLUMNS = [
    "user_id",
    "generated_at",
    "insights_json",
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
]


def _row_getter(columns: list[str], row: list) -> Callable[[str], str]:
    """Column-name accessor over a sheet row; missing cells read as ''."""
    positions = {name: i for i, name in enumerate(columns)}

    def safe_get(name: str) -> str:
        try:
            return row[positions[name]] or ""
        except IndexError:
            return ""

    return safe_get


def _iso(value) -> str:
    return value.isoformat() if value else ""


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication, worksheet creation and the single-request
    batch write every storage class relies on for atomicity.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    async def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run one blocking storage operation in a worker thread, one at a time."""
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

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
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def read_rows(self, sheet: gspread.Worksheet) -> list[list[str]]:
        """All data rows (header excluded)."""
        return sheet.get_all_values()[1:]

    def batch_write(self, writes: list[tuple[gspread.Worksheet, int, list]]) -> None:
        """
        Write whole rows in one values:batchUpdate request.

        Args:
            writes: (worksheet, 1-based row number, row values)

        The grid is grown first when a write lands past the last row.
        Growing the grid adds empty rows only, so the data write itself
        stays a single all-or-nothing request.
        """
        if not writes:
            return

        needed: dict[int, tuple[gspread.Worksheet, int]] = {}
        for sheet, row_number, _ in writes:
            current = needed.get(sheet.id, (sheet, 0))[1]
            needed[sheet.id] = (sheet, max(current, row_number))
        for sheet, last_row in needed.values():
            if last_row > sheet.row_count:
                sheet.add_rows(last_row - sheet.row_count + 100)

        body = {
            "valueInputOption": "RAW",
            "data": [
                {"range": f"'{sheet.title}'!A{row_number}", "values": [values]}
                for sheet, row_number, values in writes
            ],
        }
        self.get_spreadsheet().values_batch_update(body)


class GoogleSheetsAccountStorage(AccountStorageInterface):
    """
    Linked accounts, one row per (user_id, item_id).

    The per-user umbrella record is the set of that user's rows;
    save_linked_accounts rewrites all of them in one request.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _accounts_sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.accounts_sheet_name, ACCOUNT_COLUMNS
        )

    def _insights_sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.insights_sheet_name, INSIGHT_COLUMNS
        )

    def _account_to_row(self, user_id: str, account: LinkedAccount) -> list:
        return [
            user_id,
            account.item_id,
            account.access_token or "",
            account.institution_id or "",
            account.institution_name or "",
            account.institution_logo or "",
            account.sync_cursor or "",
            _iso(account.last_synced_at),
            account.status.value,
            account.last_sync_error or "",
            _iso(account.linked_at),
        ]

    def _row_to_account(self, row: list) -> LinkedAccount:
        safe_get = _row_getter(ACCOUNT_COLUMNS, row)
        return LinkedAccount(
            item_id=safe_get("item_id"),
            access_token=safe_get("access_token") or None,
            institution_id=safe_get("institution_id") or None,
            institution_name=safe_get("institution_name") or None,
            institution_logo=safe_get("institution_logo") or None,
            sync_cursor=safe_get("sync_cursor") or None,
            last_synced_at=(
                datetime.fromisoformat(safe_get("last_synced_at"))
                if safe_get("last_synced_at") else None
            ),
            status=AccountStatus(safe_get("status") or AccountStatus.ACTIVE.value),
            last_sync_error=safe_get("last_sync_error") or None,
            linked_at=datetime.fromisoformat(safe_get("linked_at")),
        )

    def _user_rows(self, sheet: gspread.Worksheet, user_id: str) -> list[tuple[int, list]]:
        """(row number, row) for every account row of a user."""
        return [
            (idx, row)
            for idx, row in enumerate(self._client.read_rows(sheet), start=2)
            if row and row[0] == user_id
        ]

    def _get_linked_accounts(self, user_id: str) -> list[LinkedAccount]:
        try:
            sheet = self._accounts_sheet()
            return [self._row_to_account(row) for _, row in self._user_rows(sheet, user_id)]
        except Exception as e:
            raise StorageError(f"Failed to get linked accounts: {e}")

    async def get_linked_accounts(self, user_id: str) -> list[LinkedAccount]:
        return await self._client.run(self._get_linked_accounts, user_id)

    async def get_linked_account(
        self,
        user_id: str,
        item_id: str,
    ) -> Optional[LinkedAccount]:
        for account in await self.get_linked_accounts(user_id):
            if account.item_id == item_id:
                return account
        return None

    async def add_linked_account(self, user_id: str, account: LinkedAccount) -> bool:
        return await self._client.run(self._add_linked_account, user_id, account)

    def _add_linked_account(self, user_id: str, account: LinkedAccount) -> bool:
        try:
            sheet = self._accounts_sheet()
            rows = self._client.read_rows(sheet)
            if any(row and row[0] == user_id and row[1] == account.item_id for row in rows):
                raise DuplicateError(f"Item {account.item_id} is already linked")
            sheet.append_row(self._account_to_row(user_id, account), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to add linked account: {e}")

    async def save_linked_accounts(
        self,
        user_id: str,
        accounts: list[LinkedAccount],
    ) -> bool:
        return await self._client.run(self._save_linked_accounts, user_id, accounts)

    def _save_linked_accounts(self, user_id: str, accounts: list[LinkedAccount]) -> bool:
        try:
            sheet = self._accounts_sheet()
            updates = {a.item_id: a for a in accounts}
            writes = [
                (sheet, idx, self._account_to_row(user_id, updates[row[1]]))
                for idx, row in self._user_rows(sheet, user_id)
                if row[1] in updates
            ]
            self._client.batch_write(writes)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save linked accounts: {e}")

    async def remove_linked_account(self, user_id: str, item_id: str) -> bool:
        return await self._client.run(self._remove_linked_account, user_id, item_id)

    def _remove_linked_account(self, user_id: str, item_id: str) -> bool:
        try:
            sheet = self._accounts_sheet()
            for idx, row in self._user_rows(sheet, user_id):
                if row[1] == item_id:
                    sheet.delete_rows(idx)
                    return True
            raise NotFoundError(f"Linked account {item_id} not found")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to remove linked account: {e}")

    async def save_insights(self, user_id: str, insights: list[str]) -> bool:
        return await self._client.run(self._save_insights, user_id, insights)

    def _save_insights(self, user_id: str, insights: list[str]) -> bool:
        try:
            sheet = self._insights_sheet()
            rows = self._client.read_rows(sheet)
            row_number = next(
                (idx for idx, row in enumerate(rows, start=2) if row and row[0] == user_id),
                len(rows) + 2,
            )
            values = [user_id, datetime.utcnow().isoformat(), json.dumps(insights)]
            self._client.batch_write([(sheet, row_number, values)])
            return True
        except Exception as e:
            raise StorageError(f"Failed to save insights: {e}")

    async def get_insights(self, user_id: str) -> list[str]:
        return await self._client.run(self._get_insights, user_id)

    def _get_insights(self, user_id: str) -> list[str]:
        try:
            sheet = self._insights_sheet()
            for row in self._client.read_rows(sheet):
                if row and row[0] == user_id:
                    safe_get = _row_getter(INSIGHT_COLUMNS, row)
                    return json.loads(safe_get("insights_json") or "[]")
            return []
        except Exception as e:
            raise StorageError(f"Failed to get insights: {e}")


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Transactions, one row per transaction_id.

    Categories are JSON-serialized; amounts are written as exact
    decimal strings.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    @staticmethod
    def transaction_to_row(txn: Transaction) -> list:
        return [
            txn.transaction_id,
            txn.user_id,
            txn.account_id,
            txn.item_id or "",
            txn.name,
            txn.merchant_name,
            str(txn.amount),
            txn.currency_code,
            txn.date.isoformat(),
            _iso(txn.authorized_date),
            str(txn.pending),
            json.dumps(txn.categories),
            txn.payment_channel or "",
            txn.transaction_type or "",
            txn.pending_transaction_id or "",
            txn.linked_receipt_id or "",
        ]

    @staticmethod
    def row_to_transaction(row: list) -> Transaction:
        safe_get = _row_getter(TRANSACTION_COLUMNS, row)
        return Transaction(
            transaction_id=safe_get("transaction_id"),
            user_id=safe_get("user_id"),
            account_id=safe_get("account_id"),
            item_id=safe_get("item_id") or None,
            name=safe_get("name"),
            merchant_name=safe_get("merchant_name"),
            amount=Decimal(safe_get("amount") or "0"),
            currency_code=safe_get("currency_code") or "USD",
            date=date.fromisoformat(safe_get("date")),
            authorized_date=(
                date.fromisoformat(safe_get("authorized_date"))
                if safe_get("authorized_date") else None
            ),
            pending=safe_get("pending") == "True",
            categories=json.loads(safe_get("categories_json") or "[]"),
            payment_channel=safe_get("payment_channel") or None,
            transaction_type=safe_get("transaction_type") or None,
            pending_transaction_id=safe_get("pending_transaction_id") or None,
            linked_receipt_id=safe_get("linked_receipt_id") or None,
        )

    def _load(self) -> tuple[gspread.Worksheet, list[list[str]]]:
        sheet = self._sheet()
        return sheet, self._client.read_rows(sheet)

    async def upsert_transactions(self, transactions: list[Transaction]) -> UpsertResult:
        if not transactions:
            return UpsertResult()
        return await self._client.run(self._upsert_transactions, transactions)

    def _upsert_transactions(self, transactions: list[Transaction]) -> UpsertResult:
        try:
            sheet, rows = self._load()
            positions = {row[0]: (idx, row) for idx, row in enumerate(rows, start=2) if row}
            next_row = len(rows) + 2

            staged: dict[str, tuple[int, Transaction]] = {}
            created = updated = 0
            for txn in transactions:
                record = txn.model_copy()
                if txn.transaction_id in staged:
                    row_number = staged[txn.transaction_id][0]
                elif txn.transaction_id in positions:
                    row_number = positions[txn.transaction_id][0]
                    updated += 1
                else:
                    row_number = next_row
                    next_row += 1
                    created += 1
                if txn.transaction_id in positions:
                    existing = self.row_to_transaction(positions[txn.transaction_id][1])
                    record.linked_receipt_id = existing.linked_receipt_id
                staged[txn.transaction_id] = (row_number, record)

            self._client.batch_write(
                [(sheet, row_number, self.transaction_to_row(t)) for row_number, t in staged.values()]
            )
            return UpsertResult(written=len(staged), created=created, updated=updated)
        except Exception as e:
            raise StorageError(f"Failed to upsert transactions: {e}")

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._client.run(self._get_transaction, transaction_id)

    def _get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        try:
            _, rows = self._load()
            for row in rows:
                if row and row[0] == transaction_id:
                    return self.row_to_transaction(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def get_transactions_by_ids(self, transaction_ids: list[str]) -> list[Transaction]:
        return await self._client.run(self._get_transactions_by_ids, transaction_ids)

    def _get_transactions_by_ids(self, transaction_ids: list[str]) -> list[Transaction]:
        wanted = set(transaction_ids)
        try:
            _, rows = self._load()
            found = [self.row_to_transaction(row) for row in rows if row and row[0] in wanted]
            return sort_newest_first(found)
        except Exception as e:
            raise StorageError(f"Failed to get transactions: {e}")

    async def list_transactions(
        self,
        user_id: str,
        date_range: Optional[DateRange] = None,
        category: Optional[str] = None,
        merchant: Optional[str] = None,
        unlinked_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        return await self._client.run(
            self._list_transactions, user_id, date_range, category, merchant, unlinked_only, limit
        )

    def _list_transactions(
        self,
        user_id: str,
        date_range: Optional[DateRange],
        category: Optional[str],
        merchant: Optional[str],
        unlinked_only: bool,
        limit: Optional[int],
    ) -> list[Transaction]:
        try:
            _, rows = self._load()
            user_rows = (self.row_to_transaction(row) for row in rows if len(row) > 1 and row[1] == user_id)
            return filter_transactions(
                user_rows,
                user_id=user_id,
                date_range=date_range,
                category=category,
                merchant=merchant,
                unlinked_only=unlinked_only,
                limit=limit,
            )
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")


class GoogleSheetsReceiptStorage(ReceiptStorageInterface):
    """
    Receipts, one row per receipt. Line items are JSON-serialized.

    Linking writes the receipt row and the transaction row in the same
    batch request.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.receipts_sheet_name, RECEIPT_COLUMNS
        )

    def _transactions_sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def _receipt_to_row(self, receipt: Receipt) -> list:
        return [
            receipt.receipt_id,
            receipt.user_id,
            receipt.vendor_name or "",
            _iso(receipt.transaction_date),
            str(receipt.total_amount) if receipt.total_amount is not None else "",
            receipt.currency_code or "",
            receipt.status.value,
            receipt.matched_transaction_id or "",
            json.dumps([item.model_dump(mode="json") for item in receipt.line_items]),
            _iso(receipt.created_at),
            _iso(receipt.updated_at),
        ]

    def _row_to_receipt(self, row: list) -> Receipt:
        safe_get = _row_getter(RECEIPT_COLUMNS, row)
        items_json = safe_get("line_items_json")
        line_items = [ReceiptLineItem(**item) for item in json.loads(items_json)] if items_json else []
        return Receipt(
            receipt_id=safe_get("receipt_id"),
            user_id=safe_get("user_id"),
            vendor_name=safe_get("vendor_name") or None,
            transaction_date=(
                date.fromisoformat(safe_get("transaction_date"))
                if safe_get("transaction_date") else None
            ),
            total_amount=Decimal(safe_get("total_amount")) if safe_get("total_amount") else None,
            currency_code=safe_get("currency_code") or None,
            status=ReceiptStatus(safe_get("status") or ReceiptStatus.PROCESSED.value),
            matched_transaction_id=safe_get("matched_transaction_id") or None,
            line_items=line_items,
            created_at=datetime.fromisoformat(safe_get("created_at")),
            updated_at=(
                datetime.fromisoformat(safe_get("updated_at"))
                if safe_get("updated_at") else None
            ),
        )

    async def save_receipt(self, receipt: Receipt) -> bool:
        return await self._client.run(self._save_receipt, receipt)

    def _save_receipt(self, receipt: Receipt) -> bool:
        try:
            sheet = self._sheet()
            if any(row and row[0] == receipt.receipt_id for row in self._client.read_rows(sheet)):
                raise DuplicateError(f"Receipt {receipt.receipt_id} already exists")
            sheet.append_row(self._receipt_to_row(receipt), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save receipt: {e}")

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        return await self._client.run(self._get_receipt, receipt_id)

    def _get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        try:
            for row in self._client.read_rows(self._sheet()):
                if row and row[0] == receipt_id:
                    return self._row_to_receipt(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get receipt: {e}")

    async def list_receipts(
        self,
        user_id: str,
        status: Optional[ReceiptStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[Receipt]:
        return await self._client.run(self._list_receipts, user_id, status, date_range)

    def _list_receipts(
        self,
        user_id: str,
        status: Optional[ReceiptStatus],
        date_range: Optional[DateRange],
    ) -> list[Receipt]:
        try:
            rows = self._client.read_rows(self._sheet())
            receipts = (self._row_to_receipt(row) for row in rows if len(row) > 1 and row[1] == user_id)
            return filter_receipts(receipts, user_id=user_id, status=status, date_range=date_range)
        except Exception as e:
            raise StorageError(f"Failed to list receipts: {e}")

    async def link_receipt_to_transaction(
        self,
        receipt_id: str,
        transaction_id: str,
    ) -> Receipt:
        return await self._client.run(self._link_receipt_to_transaction, receipt_id, transaction_id)

    def _link_receipt_to_transaction(self, receipt_id: str, transaction_id: str) -> Receipt:
        try:
            receipt_sheet = self._sheet()
            txn_sheet = self._transactions_sheet()

            receipt_hit = next(
                ((idx, row) for idx, row in enumerate(self._client.read_rows(receipt_sheet), start=2)
                 if row and row[0] == receipt_id),
                None,
            )
            txn_hit = next(
                ((idx, row) for idx, row in enumerate(self._client.read_rows(txn_sheet), start=2)
                 if row and row[0] == transaction_id),
                None,
            )
            if receipt_hit is None:
                raise NotFoundError(f"Receipt {receipt_id} not found")
            if txn_hit is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")

            receipt = self._row_to_receipt(receipt_hit[1])
            txn = GoogleSheetsTransactionStorage.row_to_transaction(txn_hit[1])
            if receipt.is_matched:
                raise LinkConflictError(f"Receipt {receipt_id} is already matched")
            if txn.is_linked:
                raise LinkConflictError(f"Transaction {transaction_id} is already linked")

            linked_receipt = receipt.mark_matched(transaction_id)
            txn.linked_receipt_id = receipt_id
            self._client.batch_write([
                (receipt_sheet, receipt_hit[0], self._receipt_to_row(linked_receipt)),
                (txn_sheet, txn_hit[0], GoogleSheetsTransactionStorage.transaction_to_row(txn)),
            ])
            return linked_receipt
        except (NotFoundError, LinkConflictError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to link receipt: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit logs are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        safe_get = _row_getter(AUDIT_COLUMNS, row)
        details_json = safe_get("details_json")
        return AuditEvent(
            event_id=UUID(safe_get("event_id")),
            timestamp=datetime.fromisoformat(safe_get("timestamp")),
            event_type=AuditEventType(safe_get("event_type")),
            severity=AuditSeverity(safe_get("severity")),
            user_id=safe_get("user_id") or None,
            entity_type=safe_get("entity_type") or None,
            entity_id=safe_get("entity_id") or None,
            correlation_id=UUID(safe_get("correlation_id")) if safe_get("correlation_id") else None,
            description=safe_get("description"),
            details=json.loads(details_json) if details_json else {},
            error_code=safe_get("error_code") or None,
            error_message=safe_get("error_message") or None,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        return await self._client.run(self._append_event, event)

    def _append_event(self, event: AuditEvent) -> bool:
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._client.run(self._get_events_by_correlation_id, correlation_id)

    def _get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        try:
            rows = self._client.read_rows(self._sheet())
            events = [
                self._row_to_event(row)
                for row in rows
                if len(row) > 7 and row[7] == str(correlation_id)
            ]
            return sorted(events, key=lambda e: e.timestamp)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return await self._client.run(self._get_recent_events, limit)

    def _get_recent_events(self, limit: int) -> list[AuditEvent]:
        try:
            rows = self._client.read_rows(self._sheet())
            events = [self._row_to_event(row) for row in rows[-limit:] if row]
            return list(reversed(events))
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
