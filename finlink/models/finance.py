"""
Core Data Models for finlink

These models define the strict schemas for everything the engines touch:
linked accounts, transactions, receipts and the raw aggregator payloads
they are built from.

DESIGN DECISION: Loosely-typed JSON from the aggregator and the vision
model is validated into these models at the adapter boundary. The sync,
matching and query code never sees an untyped dict.

Sign convention: Transaction.amount is positive for money going out
(expense) and negative for money coming in (income). The aggregator uses
the opposite convention; the flip happens once, in the repository.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


UNCATEGORIZED = "Uncategorized"
CATEGORY_SEPARATOR = ">"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountStatus(str, Enum):
    """
    Sync state of a linked account.

    ACTIVE: last sync succeeded (or none attempted yet)
    ERROR: last sync failed; last_sync_error says why
    LOGIN_REQUIRED: the institution rejected the stored credential
    """
    ACTIVE = "active"
    ERROR = "error"
    LOGIN_REQUIRED = "login_required"


class ReceiptStatus(str, Enum):
    """
    Receipt reconciliation status.

    A receipt moves from PROCESSED to MATCHED exactly once.
    """
    PROCESSED = "processed"
    MATCHED = "matched"


# =============================================================================
# DATE RANGES
# =============================================================================

class DateRange(BaseModel):
    """
    Half-open calendar range: start <= d < end.

    Used by the period resolver, the matching window and every
    storage range query.
    """

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    @classmethod
    def around(cls, center: date, days: int) -> "DateRange":
        """Inclusive window of `days` either side of `center`."""
        return cls(
            start=center - timedelta(days=days),
            end=center + timedelta(days=days + 1),
        )

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)


# =============================================================================
# LINKED ACCOUNTS
# =============================================================================

class InstitutionInfo(BaseModel):
    """Display metadata for the bank behind a linked account."""

    institution_id: Optional[str] = None
    name: Optional[str] = None
    logo: Optional[str] = Field(
        default=None,
        description="Base64 encoded logo, when the aggregator provides one"
    )


class LinkedAccount(BaseModel):
    """
    One external bank connection with its own credential and sync state.

    CRITICAL: access_token is excluded from serialization. It is only
    ever read by the sync engine and the aggregator client, never
    returned to a caller or written to a log.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    item_id: str = Field(
        ...,
        min_length=1,
        description="Stable external id of the aggregator item"
    )
    access_token: Optional[str] = Field(
        default=None,
        exclude=True,
        repr=False,
        description="Opaque aggregator credential"
    )

    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    institution_logo: Optional[str] = Field(default=None, repr=False)

    sync_cursor: Optional[str] = Field(
        default=None,
        description="Resume token; None means a full initial sync"
    )
    last_synced_at: Optional[datetime] = None
    status: AccountStatus = Field(default=AccountStatus.ACTIVE)
    last_sync_error: Optional[str] = Field(
        default=None,
        description="Present only while status is error"
    )

    linked_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def validate_error_state(self) -> "LinkedAccount":
        if self.status != AccountStatus.ERROR and self.last_sync_error is not None:
            raise ValueError("last_sync_error is only allowed when status is error")
        return self

    def with_sync_outcome(
        self,
        cursor: Optional[str],
        synced_at: datetime,
        status: AccountStatus,
        error: Optional[str] = None,
    ) -> "LinkedAccount":
        """Copy of this account with the result of one sync attempt applied."""
        return self.model_copy(
            update={
                "sync_cursor": cursor,
                "last_synced_at": synced_at,
                "status": status,
                "last_sync_error": error if status == AccountStatus.ERROR else None,
            }
        )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class RawTransaction(BaseModel):
    """
    A transaction exactly as the aggregator reports it.

    Amount keeps the upstream convention (negative = money in).
    Unknown upstream fields are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    transaction_id: str
    account_id: str
    name: str = ""
    merchant_name: Optional[str] = None
    amount: Decimal
    iso_currency_code: Optional[str] = None
    date: date
    authorized_date: Optional[date] = None
    pending: bool = False
    category: Optional[list[str]] = None
    payment_channel: Optional[str] = None
    transaction_type: Optional[str] = None
    pending_transaction_id: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        # SDK payloads carry floats; go through str to keep cents exact
        if isinstance(v, float):
            return Decimal(str(v))
        return v


class Transaction(BaseModel):
    """
    A normalized bank transaction.

    transaction_id is the idempotency key: writing the same record
    twice leaves storage unchanged.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    account_id: str
    item_id: Optional[str] = Field(
        default=None,
        description="Linked account the transaction was synced from"
    )

    name: str = Field(default="", description="Raw description from the bank")
    merchant_name: str = Field(default="", description="Display label, falls back to name")

    amount: Decimal = Field(
        ...,
        description="Positive = expense, negative = income"
    )
    currency_code: str = Field(default="USD")
    date: date
    authorized_date: Optional[date] = None
    pending: bool = False

    categories: list[str] = Field(
        default_factory=list,
        description="Ordered categories; the first one is the primary category"
    )
    payment_channel: Optional[str] = None
    transaction_type: Optional[str] = None
    pending_transaction_id: Optional[str] = None

    linked_receipt_id: Optional[str] = Field(
        default=None,
        description="Set only by the matching engine"
    )

    @field_validator("categories", mode="before")
    @classmethod
    def default_categories(cls, v):
        return [] if v is None else v

    @property
    def primary_category(self) -> str:
        return self.categories[0] if self.categories else UNCATEGORIZED

    @property
    def display_name(self) -> str:
        return self.merchant_name or self.name or "Unknown"

    @property
    def is_expense(self) -> bool:
        return self.amount > 0

    @property
    def is_linked(self) -> bool:
        return self.linked_receipt_id is not None


# =============================================================================
# RECEIPTS
# =============================================================================

class ReceiptLineItem(BaseModel):
    """A single line on a receipt."""

    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(default=Decimal("0"))
    category: str = Field(default=UNCATEGORIZED)

    @property
    def is_granular(self) -> bool:
        return CATEGORY_SEPARATOR in self.category


class ExtractedReceipt(BaseModel):
    """
    Structured receipt data as returned by the extraction adapter.

    Every field is optional: the vision model may not find a total or a
    date. Line items are already coerced (see ReceiptExtractionAgent).
    """

    vendor_name: Optional[str] = None
    transaction_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    currency_code: Optional[str] = None
    line_items: list[ReceiptLineItem] = Field(default_factory=list)


class Receipt(BaseModel):
    """
    A stored receipt awaiting (or done with) reconciliation.

    INVARIANT: status is MATCHED if and only if matched_transaction_id
    is set.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    receipt_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str = Field(..., min_length=1)

    vendor_name: Optional[str] = None
    transaction_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    currency_code: Optional[str] = None
    line_items: list[ReceiptLineItem] = Field(default_factory=list)

    status: ReceiptStatus = Field(default=ReceiptStatus.PROCESSED)
    matched_transaction_id: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_match_state(self) -> "Receipt":
        matched = self.matched_transaction_id is not None
        if matched != (self.status == ReceiptStatus.MATCHED):
            raise ValueError(
                "Receipt status must be 'matched' exactly when a transaction is linked"
            )
        return self

    @classmethod
    def from_extraction(cls, user_id: str, extracted: ExtractedReceipt) -> "Receipt":
        return cls(
            user_id=user_id,
            vendor_name=extracted.vendor_name,
            transaction_date=extracted.transaction_date,
            total_amount=extracted.total_amount,
            currency_code=extracted.currency_code,
            line_items=extracted.line_items,
        )

    @property
    def is_matched(self) -> bool:
        return self.matched_transaction_id is not None

    def mark_matched(self, transaction_id: str) -> "Receipt":
        return self.model_copy(
            update={
                "status": ReceiptStatus.MATCHED,
                "matched_transaction_id": transaction_id,
                "updated_at": datetime.utcnow(),
            }
        )
