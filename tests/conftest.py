"""
Shared fixtures and fakes.

No test talks to Plaid, Gemini or Google Sheets: the aggregator and the
generative models are scripted fakes, storage is InMemoryStorage.
"""

import asyncio
from collections import defaultdict
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional, Union

import pytest

from finlink.config import AppSettings
from finlink.models.finance import (
    InstitutionInfo,
    LinkedAccount,
    RawTransaction,
    Receipt,
    ReceiptLineItem,
    Transaction,
)
from finlink.models.outcomes import SyncPage, TokenExchange
from finlink.services.aggregator import AggregatorClientInterface, AggregatorError
from finlink.services.storage import InMemoryStorage, StorageError


USER_ID = "user-1"


# =============================================================================
# BUILDERS
# =============================================================================

def make_raw(
    transaction_id: str,
    amount: str = "-12.50",
    day: date = date(2025, 4, 13),
    name: str = "Blue Bottle Coffee",
    merchant_name: Optional[str] = None,
    category: Optional[list[str]] = None,
    account_id: str = "acc-1",
    currency: Optional[str] = "USD",
) -> RawTransaction:
    return RawTransaction(
        transaction_id=transaction_id,
        account_id=account_id,
        name=name,
        merchant_name=merchant_name,
        amount=Decimal(amount),
        iso_currency_code=currency,
        date=day,
        category=category,
    )


def make_page(
    added: list[RawTransaction],
    next_cursor: str,
    has_more: bool = False,
    modified: Optional[list[RawTransaction]] = None,
    removed: Optional[list[str]] = None,
) -> SyncPage:
    return SyncPage(
        added=added,
        modified=modified or [],
        removed=removed or [],
        next_cursor=next_cursor,
        has_more=has_more,
    )


def make_account(
    item_id: str = "item-1",
    access_token: Optional[str] = "access-1",
    cursor: Optional[str] = None,
) -> LinkedAccount:
    return LinkedAccount(
        item_id=item_id,
        access_token=access_token,
        institution_name="First Platypus Bank",
        sync_cursor=cursor,
    )


def make_transaction(
    transaction_id: str,
    amount: str = "15.80",
    day: date = date(2025, 4, 13),
    user_id: str = USER_ID,
    merchant_name: str = "Blue Bottle Coffee",
    categories: Optional[list[str]] = None,
    linked_receipt_id: Optional[str] = None,
) -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        user_id=user_id,
        account_id="acc-1",
        item_id="item-1",
        name=merchant_name.upper(),
        merchant_name=merchant_name,
        amount=Decimal(amount),
        date=day,
        categories=categories or [],
        linked_receipt_id=linked_receipt_id,
    )


def make_receipt(
    total: Optional[str] = "15.75",
    day: Optional[date] = date(2025, 4, 12),
    user_id: str = USER_ID,
    vendor: str = "Blue Bottle Coffee",
    line_items: Optional[list[ReceiptLineItem]] = None,
) -> Receipt:
    return Receipt(
        user_id=user_id,
        vendor_name=vendor,
        transaction_date=day,
        total_amount=Decimal(total) if total is not None else None,
        currency_code="USD",
        line_items=line_items or [],
    )


# =============================================================================
# FAKES
# =============================================================================

HANG = "hang"


class FakeAggregator(AggregatorClientInterface):
    """
    Scripted aggregator.

    `pages` maps an access token to the steps returned by successive
    sync_transactions calls: a SyncPage, an exception to raise, or HANG
    to block until cancelled. Every cursor it is called with is recorded.
    """

    def __init__(self, pages: Optional[dict[str, list[Union[SyncPage, Exception, str]]]] = None):
        self.pages = {token: list(steps) for token, steps in (pages or {}).items()}
        self.cursors_seen: dict[str, list[Optional[str]]] = defaultdict(list)
        self.removed_tokens: list[str] = []
        self.exchange = TokenExchange(access_token="access-new", item_id="item-new")
        self.institution: Optional[InstitutionInfo] = InstitutionInfo(
            institution_id="ins_109508",
            name="First Platypus Bank",
            logo="iVBORw0KGgo=",
        )
        self.exchange_error: Optional[Exception] = None
        self.institution_error: Optional[Exception] = None
        self.remove_error: Optional[Exception] = None

    async def create_link_token(self, user_id: str) -> str:
        return f"link-sandbox-{user_id}"

    async def exchange_public_token(self, public_token: str) -> TokenExchange:
        if self.exchange_error:
            raise self.exchange_error
        return self.exchange

    async def sync_transactions(self, access_token, cursor=None, count=100) -> SyncPage:
        self.cursors_seen[access_token].append(cursor)
        steps = self.pages.get(access_token) or []
        if not steps:
            raise AggregatorError("No page scripted")
        step = steps.pop(0)
        if step == HANG:
            await asyncio.sleep(3600)
        if isinstance(step, Exception):
            raise step
        return step

    async def remove_item(self, access_token: str) -> bool:
        if self.remove_error:
            raise self.remove_error
        self.removed_tokens.append(access_token)
        return True

    async def get_institution(self, access_token: str) -> Optional[InstitutionInfo]:
        if self.institution_error:
            raise self.institution_error
        return self.institution


class FailingStorage(InMemoryStorage):
    """InMemoryStorage whose selected writes raise StorageError."""

    def __init__(self):
        super().__init__()
        self.fail_upsert = False
        self.fail_save_accounts = False
        self.fail_link = False
        self.fail_save_receipt = False

    async def upsert_transactions(self, transactions):
        if self.fail_upsert:
            raise StorageError("transactions sheet unavailable")
        return await super().upsert_transactions(transactions)

    async def save_linked_accounts(self, user_id, accounts):
        if self.fail_save_accounts:
            raise StorageError("accounts sheet unavailable")
        return await super().save_linked_accounts(user_id, accounts)

    async def link_receipt_to_transaction(self, receipt_id, transaction_id):
        if self.fail_link:
            raise StorageError("batch update rejected")
        return await super().link_receipt_to_transaction(receipt_id, transaction_id)

    async def save_receipt(self, receipt):
        if self.fail_save_receipt:
            raise StorageError("receipts sheet unavailable")
        return await super().save_receipt(receipt)


class FakeGenerativeModel:
    """Stands in for genai.GenerativeModel; replies are consumed in order."""

    def __init__(self, *replies: Union[str, Exception]):
        self.replies = list(replies)
        self.prompts: list = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(sync_timeout_seconds=5)


@pytest.fixture
def storage() -> FailingStorage:
    return FailingStorage()
