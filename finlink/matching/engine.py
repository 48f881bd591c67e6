"""
Receipt Matching Engine

Reconciles an extracted receipt with at most one bank transaction.

DESIGN DECISION: The policy is conservative. A false link is worse than
a missed one, so the engine only links when exactly one unlinked
transaction falls inside both tolerance windows:

- Date window: receipt date +/- match_date_tolerance_days, inclusive
- Amount window: |total| * (1 - tol) <= |amount| <= |total| * (1 + tol)

Two or more candidates are reported back as ambiguous and nothing is
written. Picking one of them is left to the user.

CRITICAL: The link is a single storage call that updates both records.
If it fails the error propagates; the engine never reports a match it
could not persist.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finlink.audit import AuditLogger
from finlink.config import AppSettings
from finlink.models.finance import DateRange, Receipt, Transaction
from finlink.models.outcomes import (
    AlreadyMatched,
    AmbiguousMatch,
    Matched,
    MatchOutcome,
    NoMatch,
)
from finlink.services.storage import ReceiptStorageInterface, TransactionStorageInterface


logger = structlog.get_logger(__name__)


class MatchPreconditionError(ValueError):
    """The receipt lacks a date or a numeric total, so no match was attempted."""
    pass


class MatchingEngine:
    """
    Finds and links the transaction a receipt belongs to.
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        receipt_storage: ReceiptStorageInterface,
        settings: AppSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._transactions = transaction_storage
        self._receipts = receipt_storage
        self._date_tolerance_days = settings.match_date_tolerance_days
        self._amount_tolerance = Decimal(str(settings.match_amount_tolerance))
        self._audit_logger = audit_logger

    def amount_window(self, total: Decimal) -> tuple[Decimal, Decimal]:
        """Inclusive bounds for |transaction.amount|."""
        magnitude = abs(total)
        return (
            magnitude * (Decimal("1") - self._amount_tolerance),
            magnitude * (Decimal("1") + self._amount_tolerance),
        )

    def date_window(self, receipt_date) -> DateRange:
        return DateRange.around(receipt_date, self._date_tolerance_days)

    async def find_candidates(self, receipt: Receipt) -> list[Transaction]:
        """
        Unlinked transactions of the receipt's owner inside both windows.

        Raises:
            MatchPreconditionError: If the receipt has no date or total
        """
        if receipt.transaction_date is None:
            raise MatchPreconditionError("Receipt has no transaction date")
        if receipt.total_amount is None:
            raise MatchPreconditionError("Receipt has no total amount")

        low, high = self.amount_window(receipt.total_amount)
        in_dates = await self._transactions.list_transactions(
            receipt.user_id,
            date_range=self.date_window(receipt.transaction_date),
            unlinked_only=True,
        )
        return [
            txn for txn in in_dates
            if not txn.is_linked and low <= abs(txn.amount) <= high
        ]

    async def match_receipt(
        self,
        receipt: Receipt,
        correlation_id: Optional[UUID] = None,
    ) -> MatchOutcome:
        """
        Match a receipt to a transaction.

        Calling this again on a matched receipt returns AlreadyMatched
        without touching storage.

        Raises:
            MatchPreconditionError: If the receipt has no date or total
            StorageError: If the candidate lookup or the link write failed
        """
        log = logger.bind(user_id=receipt.user_id, receipt_id=receipt.receipt_id)

        if receipt.is_matched:
            log.info("receipt_already_matched", transaction_id=receipt.matched_transaction_id)
            return AlreadyMatched(transaction_id=receipt.matched_transaction_id)

        candidates = await self.find_candidates(receipt)

        if not candidates:
            log.info("receipt_no_match")
            if self._audit_logger:
                await self._audit_logger.log_receipt_not_matched(
                    user_id=receipt.user_id,
                    receipt_id=receipt.receipt_id,
                    correlation_id=correlation_id,
                )
            return NoMatch()

        if len(candidates) > 1:
            candidate_ids = sorted(txn.transaction_id for txn in candidates)
            log.warning("receipt_match_ambiguous", candidate_ids=candidate_ids)
            if self._audit_logger:
                await self._audit_logger.log_receipt_match_ambiguous(
                    user_id=receipt.user_id,
                    receipt_id=receipt.receipt_id,
                    candidate_ids=candidate_ids,
                    correlation_id=correlation_id,
                )
            return AmbiguousMatch(candidate_ids=candidate_ids)

        transaction_id = candidates[0].transaction_id
        try:
            await self._receipts.link_receipt_to_transaction(receipt.receipt_id, transaction_id)
        except Exception as e:
            log.error("receipt_link_failed", transaction_id=transaction_id, error=str(e))
            raise

        log.info("receipt_matched", transaction_id=transaction_id)
        if self._audit_logger:
            await self._audit_logger.log_receipt_matched(
                user_id=receipt.user_id,
                receipt_id=receipt.receipt_id,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
        return Matched(transaction_id=transaction_id)
