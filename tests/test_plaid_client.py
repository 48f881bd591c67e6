"""
Tests for the Plaid aggregator client.

The PlaidApi instance is replaced with a MagicMock, so no request leaves
the process; these cover payload validation and error decoding.
"""

import json
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import plaid
import pytest

from finlink.config import PlaidSettings
from finlink.services.aggregator import (
    AggregatorError,
    LoginRequiredError,
    PlaidAggregatorClient,
)


@pytest.fixture
def client():
    client = PlaidAggregatorClient(PlaidSettings(client_id="client-id", secret="secret"))
    client._api = MagicMock()
    return client


def api_error(body: dict) -> plaid.ApiException:
    error = plaid.ApiException(status=400, reason="Bad Request")
    error.body = json.dumps(body)
    return error


SYNC_PAYLOAD = {
    "added": [{
        "transaction_id": "t1",
        "account_id": "acc-1",
        "name": "SQ *BLUE BOTTLE",
        "merchant_name": "Blue Bottle Coffee",
        "amount": 15.8,
        "iso_currency_code": "USD",
        "date": date(2025, 4, 13),
        "pending": False,
        "category": ["Food and Drink", "Coffee Shop"],
        "location": {"city": "Oakland"},
    }],
    "modified": [],
    "removed": [{"transaction_id": "t-old"}, {"transaction_id": None}],
    "next_cursor": "cursor-2",
    "has_more": True,
}


class TestSyncTransactions:
    """Tests for /transactions/sync handling."""

    @pytest.mark.asyncio
    async def test_page_is_validated(self, client):
        """Test the SDK payload becomes a typed SyncPage."""
        response = MagicMock()
        response.to_dict.return_value = SYNC_PAYLOAD
        client._api.transactions_sync.return_value = response

        page = await client.sync_transactions("access-1", cursor="cursor-1", count=50)

        assert page.next_cursor == "cursor-2"
        assert page.has_more
        assert page.removed == ["t-old"]
        assert page.added[0].amount == Decimal("15.8")
        assert page.added[0].date == date(2025, 4, 13)
        request = client._api.transactions_sync.call_args[0][0]
        assert request.cursor == "cursor-1"
        assert request.count == 50

    @pytest.mark.asyncio
    async def test_malformed_payload(self, client):
        """Test a page without a cursor is an aggregator error."""
        response = MagicMock()
        response.to_dict.return_value = {"added": [], "has_more": False}
        client._api.transactions_sync.return_value = response

        with pytest.raises(AggregatorError, match="Malformed"):
            await client.sync_transactions("access-1")

    @pytest.mark.asyncio
    async def test_login_required(self, client):
        """Test ITEM_LOGIN_REQUIRED maps to LoginRequiredError."""
        client._api.transactions_sync.side_effect = api_error({
            "error_code": "ITEM_LOGIN_REQUIRED",
            "error_message": "the login details of this item have changed",
        })

        with pytest.raises(LoginRequiredError) as exc_info:
            await client.sync_transactions("access-1")
        assert exc_info.value.error_code == "ITEM_LOGIN_REQUIRED"

    @pytest.mark.asyncio
    async def test_other_api_error(self, client):
        """Test other Plaid errors keep their code and message."""
        client._api.transactions_sync.side_effect = api_error({
            "error_code": "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION",
            "error_message": "Underlying transaction data changed",
        })

        with pytest.raises(AggregatorError) as exc_info:
            await client.sync_transactions("access-1", cursor="c1")
        assert not isinstance(exc_info.value, LoginRequiredError)
        assert str(exc_info.value) == "Underlying transaction data changed"


class TestItems:
    """Tests for token exchange and item removal."""

    @pytest.mark.asyncio
    async def test_exchange(self, client):
        """Test the exchange response is read into TokenExchange."""
        client._api.item_public_token_exchange.return_value = {
            "access_token": "access-sandbox-1",
            "item_id": "item-1",
        }
        exchange = await client.exchange_public_token("public-sandbox-1")
        assert exchange.item_id == "item-1"
        assert exchange.access_token == "access-sandbox-1"

    @pytest.mark.asyncio
    async def test_remove_item(self, client):
        """Test removal returns True once Plaid accepts it."""
        client._api.item_remove.return_value = {"request_id": "r1"}
        assert await client.remove_item("access-1") is True

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, client):
        """Test non-Plaid failures surface as AggregatorError."""
        client._api.item_remove.side_effect = ConnectionResetError("reset by peer")
        with pytest.raises(AggregatorError, match="reset by peer"):
            await client.remove_item("access-1")
