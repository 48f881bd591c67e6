"""
Sync Engine

Drives cursor-based incremental sync for a user's linked accounts.

DESIGN DECISION: One account's pagination is a strict await chain: page
N+1 is requested with the cursor page N returned. Accounts themselves
share nothing, so a multi-account sync runs them concurrently and merges
their account records in a single write at the end.

Per account, one attempt:
1. Page through the aggregator from the stored cursor until has_more is false
2. Advance the in-memory cursor after every page received
3. On an aggregator error, stop paging (no retry inside this call)
4. Write everything fetched as one atomic batch
5. Record cursor, status and last_synced_at on the account

CRITICAL: The cursor is advanced to the furthest page retrieved even if
the batch write then fails. Transaction upserts are idempotent, so a
replayed page is safe; a skipped page is not recoverable from the cursor.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from finlink.audit import AuditLogger
from finlink.config import AppSettings
from finlink.models.finance import AccountStatus, LinkedAccount, RawTransaction
from finlink.models.outcomes import AggregateSyncResult, SyncResult
from finlink.repository import PersistenceError, TransactionRepository
from finlink.services.aggregator import (
    AggregatorClientInterface,
    AggregatorError,
    LoginRequiredError,
)
from finlink.services.storage import AccountStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class SyncEngine:
    """
    Incremental transaction sync for linked accounts.

    All collaborators are injected; the engine holds no global state.
    """

    def __init__(
        self,
        aggregator: AggregatorClientInterface,
        repository: TransactionRepository,
        account_storage: AccountStorageInterface,
        settings: AppSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._aggregator = aggregator
        self._repository = repository
        self._account_storage = account_storage
        self._settings = settings
        self._audit_logger = audit_logger

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def sync_account(
        self,
        user_id: str,
        account: LinkedAccount,
        correlation_id: Optional[UUID] = None,
    ) -> SyncResult:
        """
        Sync one linked account and store its updated record.

        Aggregator and batch-write failures end up in the account's
        status, not in an exception.

        Raises:
            PersistenceError: If the account record itself could not be written
        """
        result = await self._sync_with_timeout(user_id, account)
        if not result.timed_out:
            await self._save_accounts(user_id, [result.updated_account])
        await self._audit(user_id, result, correlation_id)
        return result

    async def sync_all_accounts(
        self,
        user_id: str,
        accounts: Optional[list[LinkedAccount]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AggregateSyncResult:
        """
        Sync every linked account of a user concurrently.

        A failing or timed-out account does not affect the others. The
        updated account records are written once, after all accounts finish.

        Raises:
            PersistenceError: If the consolidated account write failed
        """
        if accounts is None:
            try:
                accounts = await self._account_storage.get_linked_accounts(user_id)
            except StorageError as e:
                raise PersistenceError(f"Could not load linked accounts: {e}") from e

        if not accounts:
            logger.info("sync_all_no_accounts", user_id=user_id)
            return AggregateSyncResult()

        outcomes = await asyncio.gather(
            *(self._sync_with_timeout(user_id, account) for account in accounts),
            return_exceptions=True,
        )

        results: list[SyncResult] = []
        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "sync_account_crashed",
                    user_id=user_id,
                    item_id=account.item_id,
                    error=repr(outcome),
                )
                outcome = self._failed_result(account, f"Unexpected error: {outcome}")
            results.append(outcome)

        to_save = [r.updated_account for r in results if not r.timed_out]
        if to_save:
            await self._save_accounts(user_id, to_save)

        for result in results:
            await self._audit(user_id, result, correlation_id)

        aggregate = AggregateSyncResult.from_results(results)
        logger.info(
            "sync_all_completed",
            user_id=user_id,
            transactions_added=aggregate.transactions_added,
            accounts_synced=aggregate.accounts_synced,
            accounts_failed=aggregate.accounts_failed,
        )
        return aggregate

    # =========================================================================
    # ONE ACCOUNT
    # =========================================================================

    async def _sync_with_timeout(self, user_id: str, account: LinkedAccount) -> SyncResult:
        timeout = self._settings.sync_timeout_seconds
        try:
            return await asyncio.wait_for(self._run_sync(user_id, account), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "sync_account_timed_out",
                user_id=user_id,
                item_id=account.item_id,
                timeout_seconds=timeout,
            )
            # Last persisted record stays as it is
            return SyncResult(
                item_id=account.item_id,
                succeeded=False,
                timed_out=True,
                error=f"Sync timed out after {timeout:g}s",
                updated_account=account,
            )

    async def _run_sync(self, user_id: str, account: LinkedAccount) -> SyncResult:
        log = logger.bind(user_id=user_id, item_id=account.item_id)

        if not account.access_token:
            log.warning("sync_account_missing_credential")
            return self._failed_result(account, "No access credential stored for this account")

        cursor = account.sync_cursor
        changes: list[RawTransaction] = []
        added = modified = removed = pages = 0
        status = AccountStatus.ACTIVE
        error: Optional[str] = None
        persistence_failed = False

        has_more = True
        while has_more:
            try:
                page = await self._aggregator.sync_transactions(
                    account.access_token,
                    cursor=cursor,
                    count=self._settings.sync_page_size,
                )
            except LoginRequiredError as e:
                status = AccountStatus.LOGIN_REQUIRED
                error = str(e) or "Login required"
                log.warning("sync_login_required", pages_fetched=pages)
                break
            except AggregatorError as e:
                status = AccountStatus.ERROR
                error = str(e) or "Aggregator request failed"
                log.warning("sync_page_failed", pages_fetched=pages, error=error)
                break

            pages += 1
            cursor = page.next_cursor
            has_more = page.has_more
            changes.extend(page.added)
            changes.extend(page.modified)
            added += len(page.added)
            modified += len(page.modified)
            removed += len(page.removed)

            if page.removed:
                # Transactions are never deleted here; the ids are only reported
                log.info("sync_removed_transactions_ignored", count=len(page.removed))

        if changes:
            try:
                await self._repository.upsert_batch(
                    self._repository.normalize_all(changes, user_id, account.item_id)
                )
            except PersistenceError as e:
                status = AccountStatus.ERROR
                error = f"Persistence failed: {e}"
                persistence_failed = True
                added = modified = 0

        updated = account.with_sync_outcome(
            cursor=cursor,
            synced_at=datetime.utcnow(),
            status=status,
            error=error,
        )
        succeeded = status == AccountStatus.ACTIVE
        log.info(
            "sync_account_finished",
            status=status.value,
            pages_fetched=pages,
            transactions_added=added,
            transactions_modified=modified,
            transactions_removed=removed,
        )
        return SyncResult(
            item_id=account.item_id,
            transactions_added=added,
            transactions_modified=modified,
            transactions_removed=removed,
            pages_fetched=pages,
            succeeded=succeeded,
            persistence_failed=persistence_failed,
            error=error,
            updated_account=updated,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _failed_result(account: LinkedAccount, error: str) -> SyncResult:
        return SyncResult(
            item_id=account.item_id,
            succeeded=False,
            error=error,
            updated_account=account.with_sync_outcome(
                cursor=account.sync_cursor,
                synced_at=datetime.utcnow(),
                status=AccountStatus.ERROR,
                error=error,
            ),
        )

    async def _save_accounts(self, user_id: str, accounts: list[LinkedAccount]) -> None:
        try:
            await self._account_storage.save_linked_accounts(user_id, accounts)
        except StorageError as e:
            logger.error(
                "account_records_write_failed",
                user_id=user_id,
                item_ids=[a.item_id for a in accounts],
                error=str(e),
            )
            raise PersistenceError(f"Could not save linked accounts: {e}") from e

    async def _audit(
        self,
        user_id: str,
        result: SyncResult,
        correlation_id: Optional[UUID],
    ) -> None:
        if not self._audit_logger:
            return
        if result.succeeded:
            await self._audit_logger.log_sync_completed(
                user_id=user_id,
                item_id=result.item_id,
                added=result.transactions_added,
                pages=result.pages_fetched,
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_sync_failed(
                user_id=user_id,
                item_id=result.item_id,
                status="timed_out" if result.timed_out else result.updated_account.status.value,
                error_message=result.error or "",
                correlation_id=correlation_id,
            )
