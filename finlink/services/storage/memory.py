"""
In-Memory Storage Implementation

Implements every storage interface against plain dictionaries. Used by
the test suite and for running the engines locally without Google Sheets.

Every write that touches more than one record runs under a single
asyncio.Lock and validates everything before mutating anything, so a
failed write leaves state exactly as it was. Records are copied on the
way in and out; callers never hold a reference into the store.
"""

import asyncio
from typing import Optional
from uuid import UUID

from finlink.models.audit import AuditEvent
from finlink.models.finance import (
    DateRange,
    LinkedAccount,
    Receipt,
    ReceiptStatus,
    Transaction,
)
from finlink.models.outcomes import UpsertResult
from finlink.services.storage.filters import filter_receipts, filter_transactions, sort_newest_first
from finlink.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    LinkConflictError,
    NotFoundError,
    ReceiptStorageInterface,
    TransactionStorageInterface,
)


class InMemoryStorage(
    AccountStorageInterface,
    TransactionStorageInterface,
    ReceiptStorageInterface,
    AuditStorageInterface,
):
    """Single-process storage backend holding everything in memory."""

    def __init__(self):
        self._accounts: dict[str, list[LinkedAccount]] = {}
        self._insights: dict[str, list[str]] = {}
        self._transactions: dict[str, Transaction] = {}
        self._receipts: dict[str, Receipt] = {}
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()
        # Incremented on every successful write; lets tests assert "no writes"
        self.write_count = 0

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_linked_accounts(self, user_id: str) -> list[LinkedAccount]:
        return [a.model_copy(deep=True) for a in self._accounts.get(user_id, [])]

    async def get_linked_account(
        self,
        user_id: str,
        item_id: str,
    ) -> Optional[LinkedAccount]:
        for account in self._accounts.get(user_id, []):
            if account.item_id == item_id:
                return account.model_copy(deep=True)
        return None

    async def add_linked_account(self, user_id: str, account: LinkedAccount) -> bool:
        async with self._lock:
            accounts = self._accounts.setdefault(user_id, [])
            if any(a.item_id == account.item_id for a in accounts):
                raise DuplicateError(f"Item {account.item_id} is already linked")
            accounts.append(account.model_copy(deep=True))
            self.write_count += 1
        return True

    async def save_linked_accounts(
        self,
        user_id: str,
        accounts: list[LinkedAccount],
    ) -> bool:
        async with self._lock:
            updates = {a.item_id: a for a in accounts}
            stored = self._accounts.get(user_id, [])
            self._accounts[user_id] = [
                updates[a.item_id].model_copy(deep=True) if a.item_id in updates else a
                for a in stored
            ]
            self.write_count += 1
        return True

    async def remove_linked_account(self, user_id: str, item_id: str) -> bool:
        async with self._lock:
            stored = self._accounts.get(user_id, [])
            remaining = [a for a in stored if a.item_id != item_id]
            if len(remaining) == len(stored):
                raise NotFoundError(f"Linked account {item_id} not found")
            self._accounts[user_id] = remaining
            self.write_count += 1
        return True

    async def save_insights(self, user_id: str, insights: list[str]) -> bool:
        async with self._lock:
            self._insights[user_id] = list(insights)
            self.write_count += 1
        return True

    async def get_insights(self, user_id: str) -> list[str]:
        return list(self._insights.get(user_id, []))

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def upsert_transactions(self, transactions: list[Transaction]) -> UpsertResult:
        async with self._lock:
            staged: dict[str, Transaction] = {}
            created = updated = 0
            for txn in transactions:
                record = txn.model_copy(deep=True)
                existing = self._transactions.get(txn.transaction_id)
                if existing is not None:
                    record.linked_receipt_id = existing.linked_receipt_id
                if txn.transaction_id not in staged:
                    if existing is None:
                        created += 1
                    else:
                        updated += 1
                staged[txn.transaction_id] = record

            self._transactions.update(staged)
            self.write_count += 1
        return UpsertResult(written=len(staged), created=created, updated=updated)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        txn = self._transactions.get(transaction_id)
        return txn.model_copy(deep=True) if txn else None

    async def get_transactions_by_ids(self, transaction_ids: list[str]) -> list[Transaction]:
        found = [
            self._transactions[tid].model_copy(deep=True)
            for tid in dict.fromkeys(transaction_ids)
            if tid in self._transactions
        ]
        return sort_newest_first(found)

    async def list_transactions(
        self,
        user_id: str,
        date_range: Optional[DateRange] = None,
        category: Optional[str] = None,
        merchant: Optional[str] = None,
        unlinked_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        selected = filter_transactions(
            self._transactions.values(),
            user_id=user_id,
            date_range=date_range,
            category=category,
            merchant=merchant,
            unlinked_only=unlinked_only,
            limit=limit,
        )
        return [t.model_copy(deep=True) for t in selected]

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    async def save_receipt(self, receipt: Receipt) -> bool:
        async with self._lock:
            if receipt.receipt_id in self._receipts:
                raise DuplicateError(f"Receipt {receipt.receipt_id} already exists")
            self._receipts[receipt.receipt_id] = receipt.model_copy(deep=True)
            self.write_count += 1
        return True

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        receipt = self._receipts.get(receipt_id)
        return receipt.model_copy(deep=True) if receipt else None

    async def list_receipts(
        self,
        user_id: str,
        status: Optional[ReceiptStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[Receipt]:
        selected = filter_receipts(
            self._receipts.values(),
            user_id=user_id,
            status=status,
            date_range=date_range,
        )
        return [r.model_copy(deep=True) for r in selected]

    async def link_receipt_to_transaction(
        self,
        receipt_id: str,
        transaction_id: str,
    ) -> Receipt:
        async with self._lock:
            receipt = self._receipts.get(receipt_id)
            txn = self._transactions.get(transaction_id)
            if receipt is None:
                raise NotFoundError(f"Receipt {receipt_id} not found")
            if txn is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if receipt.is_matched:
                raise LinkConflictError(f"Receipt {receipt_id} is already matched")
            if txn.is_linked:
                raise LinkConflictError(f"Transaction {transaction_id} is already linked")

            linked_receipt = receipt.mark_matched(transaction_id)
            linked_txn = txn.model_copy(update={"linked_receipt_id": receipt_id})
            self._receipts[receipt_id] = linked_receipt
            self._transactions[transaction_id] = linked_txn
            self.write_count += 1
        return linked_receipt.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
