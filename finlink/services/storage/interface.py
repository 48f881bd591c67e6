"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a document database later
2. Use in-memory storage for testing
3. Keep the engines decoupled from storage implementation

The persistence contract the engines rely on is small:
- point lookups by key
- range queries by (user_id, date range)
- atomic multi-record writes (all-or-nothing, never partially applied)

All date ranges are half-open (start <= date < end).
"""

from abc import ABC, abstractmethod
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


class AccountStorageInterface(ABC):
    """
    Per-user linked accounts with their sync cursors and status.

    Conceptually one umbrella record per user holding the list of
    linked accounts. Writes that touch several accounts of one user
    go through save_linked_accounts as a single consolidated write.
    """

    @abstractmethod
    async def get_linked_accounts(self, user_id: str) -> list[LinkedAccount]:
        """
        Get all linked accounts of a user.

        Args:
            user_id: Owner of the accounts

        Returns:
            Accounts in link order (empty list if none)
        """
        pass

    @abstractmethod
    async def get_linked_account(
        self,
        user_id: str,
        item_id: str,
    ) -> Optional[LinkedAccount]:
        """
        Get one linked account.

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def add_linked_account(self, user_id: str, account: LinkedAccount) -> bool:
        """
        Store a newly linked account.

        Raises:
            DuplicateError: If the item is already linked for this user
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def save_linked_accounts(
        self,
        user_id: str,
        accounts: list[LinkedAccount],
    ) -> bool:
        """
        Merge updated account records into the user's stored list.

        One consolidated write. Each given account replaces the stored
        record with the same item_id; stored accounts not in the list
        are left untouched, and accounts no longer stored (unlinked in
        the meantime) are not re-created.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def remove_linked_account(self, user_id: str, item_id: str) -> bool:
        """
        Remove a linked account record.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def save_insights(self, user_id: str, insights: list[str]) -> bool:
        """Replace the stored AI insights of a user."""
        pass

    @abstractmethod
    async def get_insights(self, user_id: str) -> list[str]:
        """Get the stored AI insights of a user (empty list if none)."""
        pass


class TransactionStorageInterface(ABC):
    """
    Transaction records keyed by their external transaction_id.
    """

    @abstractmethod
    async def upsert_transactions(self, transactions: list[Transaction]) -> UpsertResult:
        """
        Create or overwrite transactions by transaction_id in one atomic write.

        Writing the same record twice is a no-op the second time.
        An existing linked_receipt_id is preserved: sync data never
        unlinks a receipt.

        Args:
            transactions: Normalized records to write

        Returns:
            Counts of created and updated records

        Raises:
            StorageError: If the write fails (nothing is written)
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_transactions_by_ids(self, transaction_ids: list[str]) -> list[Transaction]:
        """
        Retrieve several transactions. Unknown ids are skipped.

        Returns:
            Found transactions, newest first
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        date_range: Optional[DateRange] = None,
        category: Optional[str] = None,
        merchant: Optional[str] = None,
        unlinked_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """
        List a user's transactions with optional filters.

        Args:
            user_id: Owner of the transactions
            date_range: Half-open range on the transaction date
            category: Case-insensitive match against any category
            merchant: Case-insensitive match against the display name
            unlinked_only: Skip transactions already linked to a receipt
            limit: Maximum number of results

        Returns:
            Matching transactions, newest first
        """
        pass


class ReceiptStorageInterface(ABC):
    """
    Extracted receipts and their link to a transaction.
    """

    @abstractmethod
    async def save_receipt(self, receipt: Receipt) -> bool:
        """
        Save a new receipt.

        Raises:
            DuplicateError: If the receipt id already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        """
        Retrieve a receipt by its ID.

        Returns:
            The receipt if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_receipts(
        self,
        user_id: str,
        status: Optional[ReceiptStatus] = None,
        date_range: Optional[DateRange] = None,
    ) -> list[Receipt]:
        """
        List a user's receipts.

        Args:
            user_id: Owner of the receipts
            status: Filter by reconciliation status
            date_range: Half-open range on the receipt's transaction date

        Returns:
            Matching receipts, newest purchase first
        """
        pass

    @abstractmethod
    async def link_receipt_to_transaction(
        self,
        receipt_id: str,
        transaction_id: str,
    ) -> Receipt:
        """
        Link a receipt and a transaction in one all-or-nothing write.

        Sets receipt.status = matched, receipt.matched_transaction_id and
        transaction.linked_receipt_id together. Either both sides change
        or neither does.

        Returns:
            The updated receipt

        Raises:
            NotFoundError: If the receipt or the transaction doesn't exist
            LinkConflictError: If either side is already linked
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one sync run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class LinkConflictError(StorageError):
    """Receipt or transaction was already linked when the link write ran."""
    pass
