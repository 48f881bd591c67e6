"""
Intent Resolver

DESIGN DECISION: Query resolution is DETERMINISTIC.
An upstream classifier (or the caller) supplies {intent, entities}; this
module turns that into a storage filter, aggregates the result and
renders a sentence. Nothing here writes.

Granular categories ("Groceries > Dairy") only exist on receipt line
items, so they are answered from matched receipts instead of
transaction categories.

Unknown intents, missing entities and unrecognized periods produce a
descriptive sentence, never an exception.
"""

from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from finlink.config import AppSettings
from finlink.models.finance import (
    CATEGORY_SEPARATOR,
    DateRange,
    Receipt,
    ReceiptStatus,
    Transaction,
)
from finlink.queries.periods import describe_period, resolve_period
from finlink.services.storage import ReceiptStorageInterface, TransactionStorageInterface


logger = structlog.get_logger(__name__)

DEFAULT_PERIOD = "this_month"
CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "EUR": "€", "GBP": "£"}


class QueryIntent(str, Enum):
    """Intents the resolver knows how to answer."""
    GET_RECENT_TRANSACTIONS = "GET_RECENT_TRANSACTIONS"
    GET_SPENDING_SUMMARY = "GET_SPENDING_SUMMARY"
    GET_TRANSACTIONS_BY_CATEGORY = "GET_TRANSACTIONS_BY_CATEGORY"
    GET_TRANSACTIONS_BY_MERCHANT = "GET_TRANSACTIONS_BY_MERCHANT"
    GET_SPENDING_SUMMARY_BY_CATEGORY = "GET_SPENDING_SUMMARY_BY_CATEGORY"
    GET_SPENDING_SUMMARY_BY_MERCHANT = "GET_SPENDING_SUMMARY_BY_MERCHANT"
    GET_RECEIPT_DETAILS = "GET_RECEIPT_DETAILS"


# =============================================================================
# FORMATTING
# =============================================================================

def format_currency(amount: Decimal, currency_code: Optional[str] = "USD") -> str:
    """$1,234.56 style; unknown codes are written after the number."""
    code = (currency_code or "USD").upper()
    sign = "-" if amount < 0 else ""
    number = f"{abs(amount):,.2f}"
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{number}"
    return f"{sign}{number} {code}"


def format_transaction_line(txn: Transaction) -> str:
    return (
        f"- {txn.date.month}/{txn.date.day}: {txn.display_name} "
        f"{format_currency(txn.amount, txn.currency_code)}"
    )


def title_case(text: str) -> str:
    """'groceries > dairy' -> 'Groceries > Dairy'; only first letters change."""
    return " ".join(word[:1].upper() + word[1:] for word in text.strip().lower().split(" "))


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return value if isinstance(value, int) and value > 0 else None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _unknown_period(period: str) -> str:
    return (
        f'Sorry, I don\'t understand the time period "{period}". '
        "Try 'today', 'this week', 'last month', etc."
    )


def _spend(transactions: list[Transaction]) -> Decimal:
    return sum((t.amount for t in transactions if t.is_expense), Decimal("0"))


# =============================================================================
# RESOLVER
# =============================================================================

class IntentResolver:
    """
    Answers structured intent queries from stored data.

    GUARANTEES:
    - Only reports what storage returns
    - Says so explicitly when nothing matches
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        receipt_storage: ReceiptStorageInterface,
        settings: AppSettings,
        clock: Callable[[], date] = date.today,
    ):
        self._transactions = transaction_storage
        self._receipts = receipt_storage
        self._default_limit = settings.recent_transactions_limit
        self._clock = clock
        self._handlers = {
            QueryIntent.GET_RECENT_TRANSACTIONS: self._recent_transactions,
            QueryIntent.GET_SPENDING_SUMMARY: self._spending_summary,
            QueryIntent.GET_TRANSACTIONS_BY_CATEGORY: self._transactions_by_category,
            QueryIntent.GET_TRANSACTIONS_BY_MERCHANT: self._transactions_by_merchant,
            QueryIntent.GET_SPENDING_SUMMARY_BY_CATEGORY: self._summary_by_category,
            QueryIntent.GET_SPENDING_SUMMARY_BY_MERCHANT: self._summary_by_merchant,
            QueryIntent.GET_RECEIPT_DETAILS: self._receipt_details,
        }

    async def resolve(
        self,
        user_id: str,
        intent: str,
        entities: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Answer one intent for one user.

        Raises:
            StorageError: If a storage read fails
        """
        entities = entities if isinstance(entities, dict) else {}
        try:
            query_intent = QueryIntent(intent.strip().upper())
        except ValueError:
            logger.warning("query_intent_unhandled", user_id=user_id, intent=intent)
            return f"Sorry, I don't know how to handle the request: {intent}"

        logger.info("query_resolving", user_id=user_id, intent=query_intent.value, entities=sorted(entities))
        return await self._handlers[query_intent](user_id, entities)

    def _limit(self, entities: dict[str, Any]) -> int:
        return _positive_int(entities.get("limit")) or self._default_limit

    # -------------------------------------------------------------------------
    # Transaction lists
    # -------------------------------------------------------------------------

    async def _recent_transactions(self, user_id: str, entities: dict[str, Any]) -> str:
        transactions = await self._transactions.list_transactions(user_id, limit=self._limit(entities))
        if not transactions:
            return "You don't have any transactions yet."

        lines = [f"Okay, here are your last {len(transactions)} transactions:"]
        lines.extend(format_transaction_line(t) for t in transactions)
        return "\n".join(lines)

    async def _transactions_by_category(self, user_id: str, entities: dict[str, Any]) -> str:
        raw_category = _text(entities.get("category"))
        if not raw_category:
            return "Please specify a category (e.g., 'show grocery spending')."
        category = title_case(raw_category)
        limit = self._limit(entities)

        period = _text(entities.get("period"))
        date_range = None
        period_text = ""
        if period:
            date_range = resolve_period(period, self._clock())
            if date_range is None:
                return _unknown_period(period)
            period_text = f" {describe_period(period)}"

        if CATEGORY_SEPARATOR in category:
            ids = [
                r.matched_transaction_id
                for r in await self._matched_receipts_with_category(user_id, category, date_range)
            ]
            transactions = (await self._transactions.get_transactions_by_ids(ids))[:limit]
        else:
            transactions = await self._transactions.list_transactions(
                user_id, date_range=date_range, category=category, limit=limit
            )

        if not transactions:
            return f'No transactions found for category "{category}"{period_text}.'

        lines = [f'Okay, here are the latest {len(transactions)} transactions for "{category}"{period_text}:']
        lines.extend(format_transaction_line(t) for t in transactions)
        return "\n".join(lines)

    async def _transactions_by_merchant(self, user_id: str, entities: dict[str, Any]) -> str:
        merchant = _text(entities.get("merchant"))
        if not merchant:
            return "Please specify a merchant name (e.g., 'show Starbucks spending')."

        period = _text(entities.get("period"))
        date_range = None
        if period:
            date_range = resolve_period(period, self._clock())
            if date_range is None:
                return _unknown_period(period)

        transactions = await self._transactions.list_transactions(
            user_id, date_range=date_range, merchant=merchant, limit=self._limit(entities)
        )
        if not transactions:
            in_period = f' in period "{period}"' if period else ""
            return f'No transactions found for merchant "{merchant}"{in_period}.'

        lines = [f'Okay, here are the latest {len(transactions)} transactions for "{merchant}":']
        lines.extend(format_transaction_line(t) for t in transactions)
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Spending summaries
    # -------------------------------------------------------------------------

    async def _spending_summary(self, user_id: str, entities: dict[str, Any]) -> str:
        period = _text(entities.get("period")) or DEFAULT_PERIOD
        date_range = resolve_period(period, self._clock())
        if date_range is None:
            return _unknown_period(period)

        transactions = await self._transactions.list_transactions(user_id, date_range=date_range)
        return f"You spent {format_currency(_spend(transactions))} {describe_period(period)}."

    async def _summary_by_category(self, user_id: str, entities: dict[str, Any]) -> str:
        raw_category = _text(entities.get("category"))
        if not raw_category:
            return "Please specify a category to summarize (e.g., 'how much for groceries this month?')."
        category = title_case(raw_category)

        period = _text(entities.get("period")) or DEFAULT_PERIOD
        date_range = resolve_period(period, self._clock())
        if date_range is None:
            return _unknown_period(period)
        period_text = describe_period(period)

        if CATEGORY_SEPARATOR in category:
            # Line item prices, not transaction amounts
            wanted = category.lower()
            total = Decimal("0")
            for receipt in await self._matched_receipts_with_category(user_id, category, date_range):
                total += sum(
                    (item.price for item in receipt.line_items if item.category.strip().lower() == wanted),
                    Decimal("0"),
                )
            return f"You spent {format_currency(total)} on {category} {period_text}."

        transactions = await self._transactions.list_transactions(
            user_id, date_range=date_range, category=category
        )
        total = _spend(transactions)
        if total == 0:
            return f'No spending found for category "{category}" {period_text}.'
        return f"You spent {format_currency(total)} on {category} {period_text}."

    async def _summary_by_merchant(self, user_id: str, entities: dict[str, Any]) -> str:
        merchant = _text(entities.get("merchant"))
        if not merchant:
            return "Please specify a merchant to summarize (e.g., 'how much did I spend at Starbucks this week?')."

        period = _text(entities.get("period")) or DEFAULT_PERIOD
        date_range = resolve_period(period, self._clock())
        if date_range is None:
            return _unknown_period(period)
        period_text = describe_period(period)

        transactions = await self._transactions.list_transactions(
            user_id, date_range=date_range, merchant=merchant
        )
        expenses = [t for t in transactions if t.is_expense]
        if not expenses:
            return f'No spending found for merchant "{merchant}" {period_text}.'
        return f"You spent {format_currency(_spend(expenses))} at {merchant} {period_text}."

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    async def _receipt_details(self, user_id: str, entities: dict[str, Any]) -> str:
        merchant = _text(entities.get("merchant"))
        category = _text(entities.get("category"))
        period = _text(entities.get("period"))
        specific_date = _text(entities.get("date"))

        if not merchant:
            if category:
                return (
                    "Sorry, finding receipts by category only isn't supported yet. "
                    "Try specifying a merchant or date."
                )
            if not specific_date and not period:
                return "Please specify a merchant, category, or date for the receipt you want to see."

        date_range: Optional[DateRange] = None
        if specific_date:
            try:
                day = date.fromisoformat(specific_date[:10])
                date_range = DateRange(start=day, end=day + timedelta(days=1))
            except ValueError:
                logger.warning("receipt_details_invalid_date", date=specific_date)
        elif period:
            date_range = resolve_period(period, self._clock())

        if date_range is None and not merchant:
            return "Please provide a valid date, time period, merchant, or category."

        found = await self._transactions.list_transactions(
            user_id, date_range=date_range, merchant=merchant, limit=1
        )
        if not found:
            return "Sorry, I couldn't find a matching transaction for that request."

        txn = found[0]
        if not txn.linked_receipt_id:
            at_merchant = f" at {merchant}" if merchant else ""
            return f"I found the transaction{at_merchant}, but there's no receipt linked to it."

        receipt = await self._receipts.get_receipt(txn.linked_receipt_id)
        if receipt is None:
            logger.error(
                "linked_receipt_missing",
                transaction_id=txn.transaction_id,
                receipt_id=txn.linked_receipt_id,
            )
            return "I found the transaction, but there was an error retrieving the linked receipt details."

        return self._format_receipt(receipt, txn, merchant)

    @staticmethod
    def _format_receipt(receipt: Receipt, txn: Transaction, merchant: Optional[str]) -> str:
        currency = txn.currency_code
        vendor = receipt.vendor_name or merchant or "that transaction"
        lines = [f"Okay, here's what was on the receipt from {vendor}:"]
        if receipt.line_items:
            for item in receipt.line_items:
                lines.append(
                    f"- {item.description} (Qty: {item.quantity}) "
                    f"{format_currency(item.price, currency)} ({item.category})"
                )
        else:
            lines.append("- No line items were extracted from this receipt.")
        lines.append(f"Total: {format_currency(receipt.total_amount or Decimal('0'), currency)}")
        return "\n".join(lines)

    async def _matched_receipts_with_category(
        self,
        user_id: str,
        category: str,
        date_range: Optional[DateRange],
    ) -> list[Receipt]:
        wanted = category.strip().lower()
        receipts = await self._receipts.list_receipts(
            user_id, status=ReceiptStatus.MATCHED, date_range=date_range
        )
        return [
            r for r in receipts
            if r.matched_transaction_id
            and any(item.category.strip().lower() == wanted for item in r.line_items)
        ]
