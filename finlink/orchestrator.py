"""
Main Orchestrator for finlink

This module ties the components together and defines the caller-facing
operations:
1. Accounts (link token -> link -> sync -> unlink)
2. Receipts (image -> extract -> categorize -> save, then match)
3. Queries (intent -> resolve -> sentence; cash flow; insights)

DESIGN DECISION: Every operation returns an OperationResult. Exceptions
from the layers below are translated here into error codes:

- No caller identity          -> unauthenticated
- Malformed input             -> invalid_argument
- Aggregator / AI failure     -> upstream_failure
- Storage write failure       -> persistence_failure
- Unknown account or receipt  -> not_found

Callers always get a definite outcome; nothing is left "in progress".
"""

from datetime import date, timedelta
from typing import Any, Callable, Optional

import structlog

from finlink.agents import (
    UNKNOWN_INTENT,
    ExtractionError,
    InsightsAgent,
    IntentAgent,
    ReceiptExtractionAgent,
    ReceiptExtractorInterface,
)
from finlink.agents.receipt_agent import InvalidImageError
from finlink.audit import AuditLogger, create_correlation_id
from finlink.config import AppSettings, get_settings
from finlink.matching import MatchingEngine, MatchPreconditionError
from finlink.models.finance import AccountStatus, DateRange, LinkedAccount, Receipt
from finlink.models.outcomes import ErrorCode, OperationResult
from finlink.queries import CASH_FLOW_PERIODS, CashFlowService, IntentResolver
from finlink.repository import PersistenceError, TransactionRepository
from finlink.services.aggregator import (
    AggregatorClientInterface,
    AggregatorError,
    PlaidAggregatorClient,
)
from finlink.services.storage import (
    AccountStorageInterface,
    DuplicateError,
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
    GoogleSheetsTransactionStorage,
    InMemoryStorage,
    LinkConflictError,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from finlink.sync import SyncEngine


logger = structlog.get_logger(__name__)


def _unauthenticated(user_id: Optional[str]) -> Optional[OperationResult]:
    if not user_id or not str(user_id).strip():
        return OperationResult.fail(
            ErrorCode.UNAUTHENTICATED,
            "The operation requires an authenticated user.",
        )
    return None


class AccountFlow:
    """
    Orchestrates linked-account lifecycle and sync.

    Flow:
    1. create_link_token -> client opens the link widget
    2. link_account -> exchange public token, enrich, store (status active, no cursor)
    3. sync_all_accounts / sync_account -> SyncEngine
    4. unlink_account -> expire credential upstream, drop the record
    """

    def __init__(
        self,
        aggregator: AggregatorClientInterface,
        account_storage: AccountStorageInterface,
        sync_engine: SyncEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._aggregator = aggregator
        self._account_storage = account_storage
        self._sync_engine = sync_engine
        self._audit_logger = audit_logger

    async def create_link_token(self, user_id: str) -> OperationResult:
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        try:
            token = await self._aggregator.create_link_token(user_id)
        except AggregatorError as e:
            return OperationResult.fail(ErrorCode.UPSTREAM_FAILURE, f"Could not create link token: {e}")
        return OperationResult.ok({"link_token": token})

    async def link_account(self, user_id: str, public_token: str) -> OperationResult:
        """
        Exchange a public token and store the new linked account.

        Institution metadata is optional: if the lookup fails the account
        is stored without it.
        """
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not public_token or not public_token.strip():
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Missing public token.")

        correlation_id = create_correlation_id()
        try:
            exchange = await self._aggregator.exchange_public_token(public_token.strip())
        except AggregatorError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="aggregator",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return OperationResult.fail(ErrorCode.UPSTREAM_FAILURE, f"Token exchange failed: {e}")

        institution = None
        try:
            institution = await self._aggregator.get_institution(exchange.access_token)
        except AggregatorError as e:
            logger.warning(
                "institution_enrichment_failed",
                user_id=user_id,
                item_id=exchange.item_id,
                error=str(e),
            )

        account = LinkedAccount(
            item_id=exchange.item_id,
            access_token=exchange.access_token,
            institution_id=institution.institution_id if institution else None,
            institution_name=institution.name if institution else None,
            institution_logo=institution.logo if institution else None,
            status=AccountStatus.ACTIVE,
        )

        try:
            await self._account_storage.add_linked_account(user_id, account)
        except DuplicateError as e:
            return OperationResult.fail(ErrorCode.FAILED_PRECONDITION, str(e))
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, f"Could not save linked account: {e}")

        if self._audit_logger:
            await self._audit_logger.log_account_linked(
                user_id=user_id,
                item_id=account.item_id,
                institution_name=account.institution_name,
                correlation_id=correlation_id,
            )
        return OperationResult.ok(account)

    async def unlink_account(self, user_id: str, item_id: str) -> OperationResult:
        """
        Remove a linked account. Its transactions are kept.

        A failure to expire the credential upstream is logged and does
        not stop the unlink.
        """
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not item_id:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Missing item id.")

        correlation_id = create_correlation_id()
        try:
            account = await self._account_storage.get_linked_account(user_id, item_id)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, str(e))
        if account is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Linked account {item_id} not found.")

        revoked = False
        if account.access_token:
            try:
                revoked = await self._aggregator.remove_item(account.access_token)
            except AggregatorError as e:
                logger.warning("credential_revoke_failed", user_id=user_id, item_id=item_id, error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_external_service_error(
                        service="aggregator",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )

        try:
            await self._account_storage.remove_linked_account(user_id, item_id)
        except NotFoundError as e:
            return OperationResult.fail(ErrorCode.NOT_FOUND, str(e))
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, f"Could not remove linked account: {e}")

        if self._audit_logger:
            await self._audit_logger.log_account_unlinked(
                user_id=user_id,
                item_id=item_id,
                credential_revoked=revoked,
                correlation_id=correlation_id,
            )
        return OperationResult.ok({"item_id": item_id, "credential_revoked": revoked})

    async def sync_all_accounts(self, user_id: str) -> OperationResult:
        """Sync every account; per-account failures are reported inside the payload."""
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        try:
            aggregate = await self._sync_engine.sync_all_accounts(
                user_id, correlation_id=create_correlation_id()
            )
        except PersistenceError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, str(e))
        return OperationResult.ok(aggregate)

    async def sync_account(self, user_id: str, item_id: str) -> OperationResult:
        denied = _unauthenticated(user_id)
        if denied:
            return denied

        try:
            account = await self._account_storage.get_linked_account(user_id, item_id)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, str(e))
        if account is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Linked account {item_id} not found.")
        if not account.access_token:
            return OperationResult.fail(
                ErrorCode.PERMISSION_DENIED,
                f"No access credential stored for linked account {item_id}.",
            )

        try:
            result = await self._sync_engine.sync_account(
                user_id, account, correlation_id=create_correlation_id()
            )
        except PersistenceError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, str(e))

        if result.persistence_failed:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, result.error or "Persistence failed")
        if not result.succeeded:
            return OperationResult.fail(ErrorCode.UPSTREAM_FAILURE, result.error or "Sync failed")
        return OperationResult.ok(result)


class ReceiptFlow:
    """
    Orchestrates receipt capture and reconciliation.

    Flow:
    1. submit_receipt -> validate bytes, extract, categorize line items, save (processed)
    2. match_receipt -> MatchingEngine (separate call, safe to repeat)
    """

    def __init__(
        self,
        extractor: ReceiptExtractorInterface,
        receipt_storage: ReceiptStorageInterface,
        matching_engine: MatchingEngine,
        settings: AppSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._extractor = extractor
        self._receipt_storage = receipt_storage
        self._matching_engine = matching_engine
        self._settings = settings
        self._audit_logger = audit_logger

    async def submit_receipt(self, user_id: str, image_bytes: bytes) -> OperationResult:
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not image_bytes:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Receipt image is empty.")
        if len(image_bytes) > self._settings.max_receipt_image_bytes:
            return OperationResult.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Receipt image exceeds {self._settings.max_receipt_image_mb} MB.",
            )

        correlation_id = create_correlation_id()
        try:
            extracted = await self._extractor.extract_and_categorize(image_bytes)
        except InvalidImageError as e:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, str(e))
        except ExtractionError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="gemini",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return OperationResult.fail(ErrorCode.UPSTREAM_FAILURE, str(e))

        receipt = Receipt.from_extraction(user_id, extracted)
        try:
            await self._receipt_storage.save_receipt(receipt)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, f"Could not save receipt: {e}")

        if self._audit_logger:
            await self._audit_logger.log_receipt_extracted(
                user_id=user_id,
                receipt_id=receipt.receipt_id,
                vendor=receipt.vendor_name,
                line_item_count=len(receipt.line_items),
                correlation_id=correlation_id,
            )
        return OperationResult.ok(receipt)

    async def match_receipt(self, user_id: str, receipt_id: str) -> OperationResult:
        """
        Match a stored receipt.

        The payload is the match outcome: matched, already_matched,
        no_match_found or multiple_matches_found with candidate ids.
        """
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not receipt_id:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Missing receipt id.")

        try:
            receipt = await self._receipt_storage.get_receipt(receipt_id)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, str(e))
        if receipt is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Receipt {receipt_id} not found.")
        if receipt.user_id != user_id:
            return OperationResult.fail(ErrorCode.PERMISSION_DENIED, "Receipt belongs to another user.")

        try:
            outcome = await self._matching_engine.match_receipt(
                receipt, correlation_id=create_correlation_id()
            )
        except MatchPreconditionError as e:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, str(e))
        except NotFoundError as e:
            return OperationResult.fail(ErrorCode.NOT_FOUND, str(e))
        except LinkConflictError as e:
            return OperationResult.fail(ErrorCode.FAILED_PRECONDITION, str(e))
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, f"Could not link receipt: {e}")
        return OperationResult.ok(outcome)


class QueryFlow:
    """
    Orchestrates the read side.

    FLOW (ask):
    1. Message -> IntentAgent -> {intent, entities}
    2. {intent, entities} -> IntentResolver (deterministic, storage only)

    The LLM is sandwiched between the user and a deterministic resolver.
    It never sees or invents the numbers.
    """

    def __init__(
        self,
        resolver: IntentResolver,
        cash_flow_service: CashFlowService,
        transaction_storage: TransactionStorageInterface,
        account_storage: AccountStorageInterface,
        settings: AppSettings,
        intent_agent: Optional[IntentAgent] = None,
        insights_agent: Optional[InsightsAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], date] = date.today,
    ):
        self._resolver = resolver
        self._cash_flow = cash_flow_service
        self._transactions = transaction_storage
        self._account_storage = account_storage
        self._settings = settings
        self._intent_agent = intent_agent
        self._insights_agent = insights_agent
        self._audit_logger = audit_logger
        self._clock = clock

    async def query(
        self,
        user_id: str,
        intent: str,
        entities: Optional[dict[str, Any]] = None,
    ) -> OperationResult:
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not isinstance(intent, str) or not intent.strip():
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Missing 'intent'.")
        if entities is not None and not isinstance(entities, dict):
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "'entities' must be an object.")

        try:
            text = await self._resolver.resolve(user_id, intent, entities or {})
        except StorageError as e:
            logger.error("query_failed", user_id=user_id, intent=intent, error=str(e))
            return OperationResult.fail(ErrorCode.INTERNAL, "Sorry, there was an error processing your request.")

        if self._audit_logger:
            await self._audit_logger.log_query_resolved(
                user_id=user_id,
                intent=intent,
                correlation_id=create_correlation_id(),
            )
        return OperationResult.ok({"response_text": text})

    async def ask(self, user_id: str, message: str) -> OperationResult:
        """Natural-language front door: classify, then resolve."""
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if not message or not message.strip():
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Message is empty.")
        if self._intent_agent is None:
            return OperationResult.fail(ErrorCode.FAILED_PRECONDITION, "Intent classification is not configured.")

        parsed = await self._intent_agent.parse(message.strip())
        if parsed.intent == UNKNOWN_INTENT:
            return OperationResult.ok({
                "intent": parsed.intent,
                "entities": parsed.entities,
                "response_text": "Sorry, I couldn't understand that request.",
            })

        result = await self.query(user_id, parsed.intent, parsed.entities)
        if result.success:
            result.data = {"intent": parsed.intent, "entities": parsed.entities, **result.data}
        return result

    async def get_cash_flow(self, user_id: str, period: str, offset: int = 0) -> OperationResult:
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if isinstance(offset, bool) or not isinstance(offset, int):
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, "Invalid 'offset' specified. Must be an integer.")
        if not isinstance(period, str) or period not in CASH_FLOW_PERIODS:
            return OperationResult.fail(
                ErrorCode.INVALID_ARGUMENT,
                "Invalid 'period' specified. Must be 'monthly', 'yearToDate', or 'yearly'.",
            )

        try:
            breakdown = await self._cash_flow.get_cash_flow(user_id, period, offset)
        except StorageError as e:
            logger.error("cash_flow_failed", user_id=user_id, error=str(e))
            return OperationResult.fail(ErrorCode.INTERNAL, "An error occurred while fetching your financial data.")
        if breakdown is None:
            return OperationResult.fail(ErrorCode.INVALID_ARGUMENT, f"Invalid period '{period}'.")
        return OperationResult.ok(breakdown)

    async def generate_insights(self, user_id: str) -> OperationResult:
        """Summarize recent spending with the insights agent and store the result."""
        denied = _unauthenticated(user_id)
        if denied:
            return denied
        if self._insights_agent is None:
            return OperationResult.fail(ErrorCode.FAILED_PRECONDITION, "Insight generation is not configured.")

        today = self._clock()
        lookback = self._settings.insights_lookback_days
        window = DateRange(start=today - timedelta(days=lookback), end=today + timedelta(days=1))
        try:
            transactions = await self._transactions.list_transactions(user_id, date_range=window)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.INTERNAL, f"Could not retrieve transaction data: {e}")

        expenses = [t for t in transactions if t.is_expense][: self._settings.insights_max_transactions]
        if not expenses:
            return OperationResult.ok({"insights": [], "message": "No recent transactions to analyze."})

        insights = await self._insights_agent.generate(expenses, lookback_days=lookback)
        try:
            await self._account_storage.save_insights(user_id, insights)
        except StorageError as e:
            return OperationResult.fail(ErrorCode.PERSISTENCE_FAILURE, f"Could not save insights: {e}")

        if self._audit_logger:
            await self._audit_logger.log_insights_generated(
                user_id=user_id,
                insight_count=len(insights),
                correlation_id=create_correlation_id(),
            )
        return OperationResult.ok({"insights": insights})


def create_app_components(
    use_storage: bool = True,
) -> tuple[AccountFlow, ReceiptFlow, QueryFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Without it (or if it is not configured) everything
                    runs against InMemoryStorage.

    Returns:
        (account_flow, receipt_flow, query_flow, sheets_client)
    """
    settings = get_settings()
    app_settings = settings.app

    sheets_client = None
    memory = InMemoryStorage()
    account_storage: AccountStorageInterface = memory
    transaction_storage: TransactionStorageInterface = memory
    receipt_storage: ReceiptStorageInterface = memory
    audit_logger = AuditLogger()  # Local-only logging

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            account_storage = GoogleSheetsAccountStorage(sheets_client)
            transaction_storage = GoogleSheetsTransactionStorage(sheets_client)
            receipt_storage = GoogleSheetsReceiptStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            account_storage = transaction_storage = receipt_storage = memory
            audit_logger = AuditLogger()

    aggregator = PlaidAggregatorClient(settings.plaid)
    gemini = settings.gemini

    sync_engine = SyncEngine(
        aggregator=aggregator,
        repository=TransactionRepository(transaction_storage, app_settings.default_currency),
        account_storage=account_storage,
        settings=app_settings,
        audit_logger=audit_logger,
    )
    matching_engine = MatchingEngine(
        transaction_storage=transaction_storage,
        receipt_storage=receipt_storage,
        settings=app_settings,
        audit_logger=audit_logger,
    )

    account_flow = AccountFlow(
        aggregator=aggregator,
        account_storage=account_storage,
        sync_engine=sync_engine,
        audit_logger=audit_logger,
    )
    receipt_flow = ReceiptFlow(
        extractor=ReceiptExtractionAgent(gemini),
        receipt_storage=receipt_storage,
        matching_engine=matching_engine,
        settings=app_settings,
        audit_logger=audit_logger,
    )
    query_flow = QueryFlow(
        resolver=IntentResolver(transaction_storage, receipt_storage, app_settings),
        cash_flow_service=CashFlowService(transaction_storage),
        transaction_storage=transaction_storage,
        account_storage=account_storage,
        settings=app_settings,
        intent_agent=IntentAgent(gemini),
        insights_agent=InsightsAgent(gemini),
        audit_logger=audit_logger,
    )

    return account_flow, receipt_flow, query_flow, sheets_client
