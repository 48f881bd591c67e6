"""
Tests for deterministic query resolution.

The clock is pinned to 2025-04-16 so every period is reproducible.
"""

from datetime import date
from decimal import Decimal

import pytest

from finlink.models.finance import ReceiptLineItem
from finlink.queries import IntentResolver, format_currency
from finlink.queries.resolver import title_case

from tests.conftest import USER_ID, make_receipt, make_transaction

TODAY = date(2025, 4, 16)


@pytest.fixture
def resolver(storage, settings):
    return IntentResolver(storage, storage, settings, clock=lambda: TODAY)


async def seed_month(storage):
    await storage.upsert_transactions([
        make_transaction("t1", amount="4.50", day=date(2025, 4, 14),
                         merchant_name="Blue Bottle Coffee", categories=["Food and Drink", "Coffee Shop"]),
        make_transaction("t2", amount="62.10", day=date(2025, 4, 10),
                         merchant_name="Whole Foods", categories=["Shops", "Groceries"]),
        make_transaction("t3", amount="-2500.00", day=date(2025, 4, 1),
                         merchant_name="Acme Payroll", categories=["Transfer", "Payroll"]),
        make_transaction("t4", amount="30.00", day=date(2025, 3, 20),
                         merchant_name="Whole Foods", categories=["Shops", "Groceries"]),
    ])


class TestFormatting:
    """Tests for currency and label formatting."""

    def test_format_currency(self):
        """Test symbols, separators and negative amounts."""
        assert format_currency(Decimal("1234.5")) == "$1,234.50"
        assert format_currency(Decimal("-5")) == "-$5.00"
        assert format_currency(Decimal("3"), "EUR") == "€3.00"
        assert format_currency(Decimal("12"), "XYZ") == "12.00 XYZ"

    def test_title_case(self):
        """Test only the first letter of each word changes."""
        assert title_case("groceries > dairy") == "Groceries > Dairy"
        assert title_case("FOOD and drink") == "Food And Drink"


class TestTransactionQueries:
    """Tests for list-style intents."""

    @pytest.mark.asyncio
    async def test_recent_transactions(self, storage, resolver):
        """Test the newest transactions are listed newest first."""
        await seed_month(storage)
        text = await resolver.resolve(USER_ID, "GET_RECENT_TRANSACTIONS", {"limit": 2})
        assert text == (
            "Okay, here are your last 2 transactions:\n"
            "- 4/14: Blue Bottle Coffee $4.50\n"
            "- 4/10: Whole Foods $62.10"
        )

    @pytest.mark.asyncio
    async def test_no_transactions(self, resolver):
        """Test an empty store says so."""
        text = await resolver.resolve(USER_ID, "get_recent_transactions", {})
        assert text == "You don't have any transactions yet."

    @pytest.mark.asyncio
    async def test_by_category_with_period(self, storage, resolver):
        """Test category matching is case-insensitive and period-bounded."""
        await seed_month(storage)
        text = await resolver.resolve(
            USER_ID, "GET_TRANSACTIONS_BY_CATEGORY", {"category": "shops", "period": "this_month"}
        )
        assert text == (
            'Okay, here are the latest 1 transactions for "Shops" this month:\n'
            "- 4/10: Whole Foods $62.10"
        )

    @pytest.mark.asyncio
    async def test_by_category_missing_entity(self, resolver):
        """Test a missing category asks for one."""
        text = await resolver.resolve(USER_ID, "GET_TRANSACTIONS_BY_CATEGORY", {})
        assert text.startswith("Please specify a category")

    @pytest.mark.asyncio
    async def test_by_merchant_none_found(self, storage, resolver):
        """Test an unknown merchant gets a not-found sentence."""
        await seed_month(storage)
        text = await resolver.resolve(
            USER_ID, "GET_TRANSACTIONS_BY_MERCHANT", {"merchant": "Trader Joe's", "period": "last_week"}
        )
        assert text == 'No transactions found for merchant "Trader Joe\'s" in period "last_week".'

    @pytest.mark.asyncio
    async def test_unknown_period(self, storage, resolver):
        """Test an unrecognized period is explained, not raised."""
        text = await resolver.resolve(
            USER_ID, "GET_TRANSACTIONS_BY_MERCHANT", {"merchant": "Whole Foods", "period": "next_year"}
        )
        assert 'time period "next_year"' in text


class TestSpendingSummaries:
    """Tests for summary intents."""

    @pytest.mark.asyncio
    async def test_summary_counts_expenses_only(self, storage, resolver):
        """Test income is excluded from spending."""
        await seed_month(storage)
        text = await resolver.resolve(USER_ID, "GET_SPENDING_SUMMARY", {})
        assert text == "You spent $66.60 this month."

    @pytest.mark.asyncio
    async def test_summary_by_merchant(self, storage, resolver):
        """Test a merchant summary across two months."""
        await seed_month(storage)
        text = await resolver.resolve(
            USER_ID, "GET_SPENDING_SUMMARY_BY_MERCHANT", {"merchant": "whole foods", "period": "this_year"}
        )
        assert text == "You spent $92.10 at whole foods this year."

    @pytest.mark.asyncio
    async def test_summary_by_category_none(self, storage, resolver):
        """Test a category with no spending in the period."""
        await seed_month(storage)
        text = await resolver.resolve(
            USER_ID, "GET_SPENDING_SUMMARY_BY_CATEGORY", {"category": "travel", "period": "last_month"}
        )
        assert text == 'No spending found for category "Travel" last month.'

    @pytest.mark.asyncio
    async def test_granular_category_from_receipts(self, storage, resolver):
        """Test granular categories sum matched receipt line items."""
        await storage.upsert_transactions([make_transaction("t1", amount="9.00", day=date(2025, 4, 12))])
        receipt = make_receipt(
            total="9.00",
            day=date(2025, 4, 12),
            line_items=[
                ReceiptLineItem(description="Milk", price=Decimal("3.25"), category="Groceries > Dairy"),
                ReceiptLineItem(description="Cheese", price=Decimal("4.75"), category="Groceries > Dairy"),
                ReceiptLineItem(description="Bread", price=Decimal("1.00"), category="Groceries > Bakery"),
            ],
        )
        await storage.save_receipt(receipt)
        await storage.link_receipt_to_transaction(receipt.receipt_id, "t1")

        summary = await resolver.resolve(
            USER_ID, "GET_SPENDING_SUMMARY_BY_CATEGORY", {"category": "groceries > dairy"}
        )
        listing = await resolver.resolve(
            USER_ID, "GET_TRANSACTIONS_BY_CATEGORY", {"category": "Groceries > Dairy"}
        )

        assert summary == "You spent $8.00 on Groceries > Dairy this month."
        assert listing.endswith("- 4/12: Blue Bottle Coffee $9.00")


class TestReceiptDetails:
    """Tests for receipt lookups."""

    @pytest.mark.asyncio
    async def test_linked_receipt_is_itemized(self, storage, resolver):
        """Test the receipt behind a merchant's latest transaction is listed."""
        await storage.upsert_transactions([make_transaction("t1", amount="15.80")])
        receipt = make_receipt(line_items=[
            ReceiptLineItem(description="Latte", quantity=2, price=Decimal("7.90"), category="Food > Coffee"),
        ])
        await storage.save_receipt(receipt)
        await storage.link_receipt_to_transaction(receipt.receipt_id, "t1")

        text = await resolver.resolve(USER_ID, "GET_RECEIPT_DETAILS", {"merchant": "Blue Bottle Coffee"})

        assert text == (
            "Okay, here's what was on the receipt from Blue Bottle Coffee:\n"
            "- Latte (Qty: 2) $7.90 (Food > Coffee)\n"
            "Total: $15.75"
        )

    @pytest.mark.asyncio
    async def test_unlinked_transaction(self, storage, resolver):
        """Test a transaction without a receipt is reported as such."""
        await storage.upsert_transactions([make_transaction("t1")])
        text = await resolver.resolve(USER_ID, "GET_RECEIPT_DETAILS", {"merchant": "Blue Bottle Coffee"})
        assert text == "I found the transaction at Blue Bottle Coffee, but there's no receipt linked to it."

    @pytest.mark.asyncio
    async def test_category_only_not_supported(self, resolver):
        """Test a category-only receipt lookup is declined."""
        text = await resolver.resolve(USER_ID, "GET_RECEIPT_DETAILS", {"category": "Groceries"})
        assert text.startswith("Sorry, finding receipts by category only")


@pytest.mark.asyncio
async def test_unknown_intent(resolver):
    """Test unknown intents are answered with a sentence."""
    text = await resolver.resolve(USER_ID, "BOOK_FLIGHT", {})
    assert text == "Sorry, I don't know how to handle the request: BOOK_FLIGHT"
