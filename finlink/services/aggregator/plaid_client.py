"""
Aggregator Client using Plaid

DESIGN DECISION: Plaid's /transactions/sync endpoint drives incremental
sync. It is cursor based: every page returns the cursor for the next one,
so resuming after a crash only needs the last stored cursor.

This client:
1. Builds one PlaidApi from explicit settings (no module-level singletons)
2. Runs the blocking SDK calls in a worker thread
3. Decodes Plaid error bodies into AggregatorError / LoginRequiredError
4. Validates transaction payloads into RawTransaction models

CRITICAL: sync pages and token exchange are NOT retried here. A failed
page ends that account's sync attempt; a public token is single-use.
"""

import asyncio
import json
from typing import Any, Callable, Optional

import plaid
import structlog
from plaid.api import plaid_api
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.institutions_get_by_id_request_options import InstitutionsGetByIdRequestOptions
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from tenacity import retry, stop_after_attempt, wait_exponential

from finlink.config import PlaidSettings, get_settings
from finlink.models.finance import InstitutionInfo, RawTransaction
from finlink.models.outcomes import SyncPage, TokenExchange
from finlink.services.aggregator.interface import (
    AggregatorClientInterface,
    AggregatorError,
    LoginRequiredError,
)


logger = structlog.get_logger(__name__)

PLAID_HOSTS = {
    "sandbox": plaid.Environment.Sandbox,
    "production": plaid.Environment.Production,
}

LOGIN_REQUIRED_CODES = {"ITEM_LOGIN_REQUIRED"}


def _decode_api_exception(e: plaid.ApiException) -> AggregatorError:
    """Turn a Plaid ApiException into our error types."""
    code = None
    message = str(e)
    try:
        body = json.loads(e.body or "{}")
        code = body.get("error_code")
        message = body.get("error_message") or message
    except (TypeError, ValueError):
        pass

    if code in LOGIN_REQUIRED_CODES:
        return LoginRequiredError(message, error_code=code)
    return AggregatorError(message, error_code=code)


class PlaidAggregatorClient(AggregatorClientInterface):
    """
    Aggregator client backed by the plaid-python SDK.
    """

    def __init__(self, settings: Optional[PlaidSettings] = None):
        self._settings = settings or get_settings().plaid
        configuration = plaid.Configuration(
            host=PLAID_HOSTS[self._settings.environment],
            api_key={
                "clientId": self._settings.client_id,
                "secret": self._settings.secret,
            },
        )
        self._api = plaid_api.PlaidApi(plaid.ApiClient(configuration))

    async def _call(self, operation: str, fn: Callable[..., Any], request: Any) -> Any:
        """Run one SDK call off the event loop and normalize its errors."""
        try:
            return await asyncio.to_thread(fn, request)
        except plaid.ApiException as e:
            error = _decode_api_exception(e)
            logger.warning(
                "plaid_call_failed",
                operation=operation,
                error_code=error.error_code,
                error=str(error),
            )
            raise error from e
        except Exception as e:
            raise AggregatorError(f"Plaid {operation} failed: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_link_token(self, user_id: str) -> str:
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            client_name=self._settings.client_name,
            products=[Products(p) for p in self._settings.products_list],
            country_codes=[CountryCode(c) for c in self._settings.country_codes_list],
            language=self._settings.language,
        )
        response = await self._call("link_token_create", self._api.link_token_create, request)
        return response["link_token"]

    async def exchange_public_token(self, public_token: str) -> TokenExchange:
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = await self._call(
            "item_public_token_exchange", self._api.item_public_token_exchange, request
        )
        return TokenExchange(
            access_token=response["access_token"],
            item_id=response["item_id"],
        )

    async def sync_transactions(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 100,
    ) -> SyncPage:
        kwargs = {"access_token": access_token, "count": count}
        if cursor:
            kwargs["cursor"] = cursor
        request = TransactionsSyncRequest(**kwargs)
        response = await self._call("transactions_sync", self._api.transactions_sync, request)

        payload = response.to_dict()
        try:
            return SyncPage(
                added=[RawTransaction.model_validate(t) for t in payload.get("added", [])],
                modified=[RawTransaction.model_validate(t) for t in payload.get("modified", [])],
                removed=[r["transaction_id"] for r in payload.get("removed", []) if r.get("transaction_id")],
                next_cursor=payload["next_cursor"],
                has_more=bool(payload.get("has_more", False)),
            )
        except (KeyError, ValueError) as e:
            raise AggregatorError(f"Malformed transactions_sync payload: {e}") from e

    async def remove_item(self, access_token: str) -> bool:
        request = ItemRemoveRequest(access_token=access_token)
        await self._call("item_remove", self._api.item_remove, request)
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_institution(self, access_token: str) -> Optional[InstitutionInfo]:
        item_response = await self._call(
            "item_get", self._api.item_get, ItemGetRequest(access_token=access_token)
        )
        institution_id = item_response["item"].get("institution_id")
        if not institution_id:
            return None

        request = InstitutionsGetByIdRequest(
            institution_id=institution_id,
            country_codes=[CountryCode(c) for c in self._settings.country_codes_list],
            options=InstitutionsGetByIdRequestOptions(include_optional_metadata=True),
        )
        response = await self._call("institutions_get_by_id", self._api.institutions_get_by_id, request)
        institution = response["institution"]
        return InstitutionInfo(
            institution_id=institution_id,
            name=institution.get("name"),
            logo=institution.get("logo"),
        )
