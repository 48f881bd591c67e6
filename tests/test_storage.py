"""
Tests for the storage backends.

The Google Sheets classes run against FakeSheetsClient, an in-process
stand-in for GoogleSheetsClient that keeps worksheets as lists of rows.
"""

import asyncio
import threading
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from finlink.models.finance import AccountStatus, DateRange, ReceiptLineItem, ReceiptStatus
from finlink.services.storage import (
    DuplicateError,
    GoogleSheetsAccountStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
    GoogleSheetsTransactionStorage,
    InMemoryStorage,
    LinkConflictError,
    NotFoundError,
)

from tests.conftest import USER_ID, make_account, make_receipt, make_transaction


class FakeWorksheet:
    def __init__(self, sheet_id: int, title: str, columns: list[str]):
        self.id = sheet_id
        self.title = title
        self.rows: list[list[str]] = [list(columns)]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def delete_rows(self, index: int):
        del self.rows[index - 1]


class FakeSheetsClient(GoogleSheetsClient):
    """GoogleSheetsClient with worksheets held in memory; run() is the real one."""

    def __init__(self):
        super().__init__(SimpleNamespace(
            accounts_sheet_name="Accounts",
            transactions_sheet_name="Transactions",
            receipts_sheet_name="Receipts",
            insights_sheet_name="Insights",
            audit_sheet_name="AuditLog",
        ))
        self.sheets: dict[str, FakeWorksheet] = {}
        self.batch_calls = 0
        self.read_threads: set[int] = set()

    def get_worksheet(self, title, columns, rows=1000):
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(len(self.sheets), title, columns)
        return self.sheets[title]

    def read_rows(self, sheet):
        self.read_threads.add(threading.get_ident())
        return [list(row) for row in sheet.rows[1:]]

    def batch_write(self, writes):
        self.batch_calls += 1
        for sheet, row_number, values in writes:
            while len(sheet.rows) < row_number:
                sheet.rows.append([])
            sheet.rows[row_number - 1] = [str(v) for v in values]


@pytest.fixture
def sheets():
    return FakeSheetsClient()


class TestInMemoryStorage:
    """Tests for the in-memory backend."""

    @pytest.mark.asyncio
    async def test_save_accounts_merges_by_item(self):
        """Test saving accounts updates only the listed items and adds none."""
        storage = InMemoryStorage()
        await storage.add_linked_account(USER_ID, make_account("item-a", cursor="a0"))
        await storage.add_linked_account(USER_ID, make_account("item-b", cursor="b0"))

        await storage.save_linked_accounts(USER_ID, [
            make_account("item-b", cursor="b1"),
            make_account("item-gone", cursor="x"),
        ])

        cursors = {a.item_id: a.sync_cursor for a in await storage.get_linked_accounts(USER_ID)}
        assert cursors == {"item-a": "a0", "item-b": "b1"}

    @pytest.mark.asyncio
    async def test_duplicate_account(self):
        """Test the same item cannot be linked twice for a user."""
        storage = InMemoryStorage()
        await storage.add_linked_account(USER_ID, make_account())
        with pytest.raises(DuplicateError):
            await storage.add_linked_account(USER_ID, make_account())

    @pytest.mark.asyncio
    async def test_records_are_copies(self):
        """Test mutating a returned record does not change storage."""
        storage = InMemoryStorage()
        await storage.upsert_transactions([make_transaction("t1")])
        txn = await storage.get_transaction("t1")
        txn.linked_receipt_id = "r-stolen"
        assert (await storage.get_transaction("t1")).linked_receipt_id is None

    @pytest.mark.asyncio
    async def test_list_filters(self):
        """Test date, category, merchant and link filters combine."""
        storage = InMemoryStorage()
        await storage.upsert_transactions([
            make_transaction("t1", day=date(2025, 4, 1), categories=["Shops"], merchant_name="Target"),
            make_transaction("t2", day=date(2025, 4, 2), categories=["Shops"], merchant_name="Costco"),
            make_transaction("t3", day=date(2025, 5, 1), categories=["Shops"], merchant_name="Target"),
            make_transaction("t4", day=date(2025, 4, 3), linked_receipt_id="r1", merchant_name="Target"),
        ])
        april = DateRange(start=date(2025, 4, 1), end=date(2025, 5, 1))

        by_merchant = await storage.list_transactions(USER_ID, date_range=april, merchant="target")
        by_category = await storage.list_transactions(USER_ID, category="SHOPS", limit=2)
        unlinked = await storage.list_transactions(USER_ID, date_range=april, unlinked_only=True)

        assert [t.transaction_id for t in by_merchant] == ["t4", "t1"]
        assert [t.transaction_id for t in by_category] == ["t3", "t2"]
        assert [t.transaction_id for t in unlinked] == ["t2", "t1"]

    @pytest.mark.asyncio
    async def test_link_conflicts(self):
        """Test neither side of an existing link can be linked again."""
        storage = InMemoryStorage()
        await storage.upsert_transactions([make_transaction("t1"), make_transaction("t2")])
        first, second = make_receipt(), make_receipt()
        await storage.save_receipt(first)
        await storage.save_receipt(second)
        await storage.link_receipt_to_transaction(first.receipt_id, "t1")

        with pytest.raises(LinkConflictError):
            await storage.link_receipt_to_transaction(first.receipt_id, "t2")
        with pytest.raises(LinkConflictError):
            await storage.link_receipt_to_transaction(second.receipt_id, "t1")
        with pytest.raises(NotFoundError):
            await storage.link_receipt_to_transaction(second.receipt_id, "t404")


class TestGoogleSheetsStorage:
    """Tests for the Sheets backend against a fake client."""

    @pytest.mark.asyncio
    async def test_transaction_rows_round_trip(self, sheets):
        """Test a transaction survives being written as a row."""
        storage = GoogleSheetsTransactionStorage(sheets)
        txn = make_transaction("t1", amount="15.80", categories=["Food and Drink", "Coffee Shop"])

        await storage.upsert_transactions([txn])

        assert await storage.get_transaction("t1") == txn

    @pytest.mark.asyncio
    async def test_upsert_is_one_batch_and_keeps_link(self, sheets):
        """Test an upsert is a single batch and preserves linked_receipt_id."""
        storage = GoogleSheetsTransactionStorage(sheets)
        await storage.upsert_transactions([make_transaction("t1", linked_receipt_id="r1")])
        calls_before = sheets.batch_calls

        result = await storage.upsert_transactions([
            make_transaction("t1", amount="20.00"),
            make_transaction("t2"),
        ])

        assert sheets.batch_calls == calls_before + 1
        assert (result.created, result.updated) == (1, 1)
        stored = await storage.get_transaction("t1")
        assert stored.amount == Decimal("20.00")
        assert stored.linked_receipt_id == "r1"
        assert len(sheets.sheets["Transactions"].rows) == 3

    @pytest.mark.asyncio
    async def test_accounts(self, sheets):
        """Test accounts are added, saved in place and removed."""
        storage = GoogleSheetsAccountStorage(sheets)
        await storage.add_linked_account(USER_ID, make_account("item-a"))
        await storage.add_linked_account(USER_ID, make_account("item-b"))
        await storage.add_linked_account("user-2", make_account("item-a"))

        account = await storage.get_linked_account(USER_ID, "item-b")
        updated = account.model_copy(update={
            "sync_cursor": "c9",
            "status": AccountStatus.ERROR,
            "last_sync_error": "boom",
        })
        await storage.save_linked_accounts(USER_ID, [updated])
        await storage.remove_linked_account(USER_ID, "item-a")

        remaining = await storage.get_linked_accounts(USER_ID)
        assert [(a.item_id, a.sync_cursor, a.status) for a in remaining] == [
            ("item-b", "c9", AccountStatus.ERROR),
        ]
        assert remaining[0].access_token == "access-1"
        assert len(await storage.get_linked_accounts("user-2")) == 1
        with pytest.raises(DuplicateError):
            await storage.add_linked_account(USER_ID, make_account("item-b"))

    @pytest.mark.asyncio
    async def test_insights(self, sheets):
        """Test insights are replaced per user."""
        storage = GoogleSheetsAccountStorage(sheets)
        await storage.save_insights(USER_ID, ["first"])
        await storage.save_insights(USER_ID, ["second", "third"])
        assert await storage.get_insights(USER_ID) == ["second", "third"]
        assert len(sheets.sheets["Insights"].rows) == 2

    @pytest.mark.asyncio
    async def test_link_receipt(self, sheets):
        """Test linking updates both rows in one batch."""
        transactions = GoogleSheetsTransactionStorage(sheets)
        receipts = GoogleSheetsReceiptStorage(sheets)
        await transactions.upsert_transactions([make_transaction("t1")])
        receipt = make_receipt(line_items=[
            ReceiptLineItem(description="Latte", price=Decimal("7.90"), category="Food > Coffee"),
        ])
        await receipts.save_receipt(receipt)
        calls_before = sheets.batch_calls

        linked = await receipts.link_receipt_to_transaction(receipt.receipt_id, "t1")

        assert sheets.batch_calls == calls_before + 1
        assert linked.status == ReceiptStatus.MATCHED
        stored = await receipts.get_receipt(receipt.receipt_id)
        assert stored.matched_transaction_id == "t1"
        assert stored.line_items[0].price == Decimal("7.90")
        assert (await transactions.get_transaction("t1")).linked_receipt_id == receipt.receipt_id
        with pytest.raises(LinkConflictError):
            await receipts.link_receipt_to_transaction(receipt.receipt_id, "t1")

    @pytest.mark.asyncio
    async def test_concurrent_upserts_off_the_loop(self, sheets):
        """Test concurrent upserts run in worker threads without claiming the same row."""
        storage = GoogleSheetsTransactionStorage(sheets)

        await asyncio.gather(
            storage.upsert_transactions([make_transaction("t1"), make_transaction("t2")]),
            storage.upsert_transactions([make_transaction("t3")]),
            storage.upsert_transactions([make_transaction("t4"), make_transaction("t5")]),
        )

        stored = await storage.list_transactions(USER_ID)
        assert sorted(t.transaction_id for t in stored) == ["t1", "t2", "t3", "t4", "t5"]
        assert len(sheets.sheets["Transactions"].rows) == 6
        assert threading.get_ident() not in sheets.read_threads
