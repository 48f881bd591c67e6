"""
Transaction Repository

Normalizes aggregator payloads into Transaction records and writes them
as one atomic batch keyed on transaction_id.

DESIGN DECISION: The sign flip happens here and only here. Upstream,
negative amounts are money coming in; inside finlink positive amounts
are expenses. Normalizing the same RawTransaction twice produces the
same Transaction, so replaying a page after a crash is harmless.
"""

from typing import Iterable, Optional

import structlog

from finlink.models.finance import RawTransaction, Transaction
from finlink.models.outcomes import UpsertResult
from finlink.services.storage import StorageError, TransactionStorageInterface


logger = structlog.get_logger(__name__)


class PersistenceError(Exception):
    """A batch write did not reach storage. Nothing from the batch was applied."""
    pass


class TransactionRepository:
    """
    Idempotent write side for transactions.
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        default_currency: str = "USD",
    ):
        self._storage = storage
        self._default_currency = default_currency

    def normalize(
        self,
        raw: RawTransaction,
        user_id: str,
        item_id: Optional[str] = None,
    ) -> Transaction:
        """Convert one aggregator record to our sign and field conventions."""
        return Transaction(
            transaction_id=raw.transaction_id,
            user_id=user_id,
            account_id=raw.account_id,
            item_id=item_id,
            name=raw.name,
            merchant_name=raw.merchant_name or raw.name,
            amount=-raw.amount,
            currency_code=raw.iso_currency_code or self._default_currency,
            date=raw.date,
            authorized_date=raw.authorized_date,
            pending=raw.pending,
            categories=raw.category or [],
            payment_channel=raw.payment_channel,
            transaction_type=raw.transaction_type,
            pending_transaction_id=raw.pending_transaction_id,
        )

    def normalize_all(
        self,
        raws: Iterable[RawTransaction],
        user_id: str,
        item_id: Optional[str] = None,
    ) -> list[Transaction]:
        return [self.normalize(raw, user_id, item_id) for raw in raws]

    async def upsert_batch(self, transactions: list[Transaction]) -> UpsertResult:
        """
        Write a batch of transactions in one all-or-nothing call.

        Re-applying the same batch leaves storage unchanged. An existing
        linked_receipt_id survives the overwrite.

        Raises:
            PersistenceError: If the storage write failed
        """
        if not transactions:
            return UpsertResult()

        try:
            result = await self._storage.upsert_transactions(transactions)
        except StorageError as e:
            logger.error(
                "transaction_batch_failed",
                batch_size=len(transactions),
                error=str(e),
            )
            raise PersistenceError(str(e)) from e

        logger.info(
            "transaction_batch_written",
            written=result.written,
            created=result.created,
            updated=result.updated,
        )
        return result
