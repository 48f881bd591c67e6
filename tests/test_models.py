"""
Tests for finlink data models.

These tests verify:
1. Validation rules are enforced
2. Invariants between fields hold (receipt status, account error state)
3. Credentials never leak through serialization
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import TypeAdapter, ValidationError

from finlink.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from finlink.models.finance import (
    UNCATEGORIZED,
    AccountStatus,
    DateRange,
    LinkedAccount,
    RawTransaction,
    Receipt,
    ReceiptLineItem,
    ReceiptStatus,
    Transaction,
)
from finlink.models.outcomes import (
    AggregateSyncResult,
    AmbiguousMatch,
    ErrorCode,
    MatchOutcome,
    Matched,
    OperationResult,
    SyncResult,
)


class TestDateRange:
    """Tests for half-open date ranges."""

    def test_contains_is_half_open(self):
        """Test start is included and end is excluded."""
        r = DateRange(start=date(2025, 4, 1), end=date(2025, 5, 1))
        assert r.contains(date(2025, 4, 1))
        assert r.contains(date(2025, 4, 30))
        assert not r.contains(date(2025, 5, 1))
        assert r.last_day == date(2025, 4, 30)

    def test_around_is_inclusive_on_both_sides(self):
        """Test a window of 2 days covers center - 2 through center + 2."""
        r = DateRange.around(date(2025, 4, 12), 2)
        assert r.contains(date(2025, 4, 10))
        assert r.contains(date(2025, 4, 14))
        assert not r.contains(date(2025, 4, 9))
        assert not r.contains(date(2025, 4, 15))

    def test_end_before_start_rejected(self):
        """Test an inverted range fails validation."""
        with pytest.raises(ValidationError):
            DateRange(start=date(2025, 5, 1), end=date(2025, 4, 1))


class TestLinkedAccount:
    """Tests for LinkedAccount."""

    def test_access_token_not_serialized(self):
        """Test the credential is absent from dumps and repr."""
        account = LinkedAccount(item_id="item-1", access_token="access-secret")
        assert "access_token" not in account.model_dump()
        assert "access-secret" not in account.model_dump_json()
        assert "access-secret" not in repr(account)

    def test_error_message_requires_error_status(self):
        """Test last_sync_error cannot be set on an active account."""
        with pytest.raises(ValidationError):
            LinkedAccount(item_id="item-1", last_sync_error="boom")

    def test_with_sync_outcome_clears_error_when_active(self):
        """Test a successful outcome drops a previous error."""
        failed = LinkedAccount(
            item_id="item-1",
            status=AccountStatus.ERROR,
            last_sync_error="boom",
        )
        now = datetime(2025, 4, 14, 9, 30)
        updated = failed.with_sync_outcome("c2", now, AccountStatus.ACTIVE, error="ignored")

        assert updated.status == AccountStatus.ACTIVE
        assert updated.last_sync_error is None
        assert updated.sync_cursor == "c2"
        assert updated.last_synced_at == now
        assert failed.sync_cursor is None

    def test_with_sync_outcome_keeps_credential(self):
        """Test copying an account keeps its access token."""
        account = LinkedAccount(item_id="item-1", access_token="access-1")
        updated = account.with_sync_outcome(None, datetime.utcnow(), AccountStatus.LOGIN_REQUIRED)
        assert updated.access_token == "access-1"
        assert updated.last_sync_error is None


class TestTransactions:
    """Tests for raw and normalized transactions."""

    def test_raw_float_amount_kept_exact(self):
        """Test SDK floats are converted without binary noise."""
        raw = RawTransaction(
            transaction_id="t1",
            account_id="acc-1",
            amount=15.8,
            date=date(2025, 4, 13),
            unexpected_field="ignored",
        )
        assert raw.amount == Decimal("15.8")

    def test_null_categories_become_empty(self):
        """Test categories default to an empty list."""
        txn = Transaction(
            transaction_id="t1",
            user_id="user-1",
            account_id="acc-1",
            amount=Decimal("4.50"),
            date=date(2025, 4, 13),
            categories=None,
        )
        assert txn.categories == []
        assert txn.primary_category == UNCATEGORIZED
        assert txn.display_name == "Unknown"
        assert txn.is_expense
        assert not txn.is_linked

    def test_empty_transaction_id_rejected(self):
        """Test the idempotency key is required."""
        with pytest.raises(ValidationError):
            Transaction(
                transaction_id="",
                user_id="user-1",
                account_id="acc-1",
                amount=Decimal("1"),
                date=date(2025, 4, 13),
            )


class TestReceipts:
    """Tests for Receipt invariants."""

    def test_new_receipt_is_processed(self):
        """Test a receipt starts unmatched."""
        receipt = Receipt(user_id="user-1")
        assert receipt.status == ReceiptStatus.PROCESSED
        assert not receipt.is_matched
        assert len(receipt.receipt_id) == 32

    def test_matched_status_requires_transaction(self):
        """Test status and matched_transaction_id must agree."""
        with pytest.raises(ValidationError):
            Receipt(user_id="user-1", status=ReceiptStatus.MATCHED)
        with pytest.raises(ValidationError):
            Receipt(user_id="user-1", matched_transaction_id="t1")

    def test_mark_matched(self):
        """Test mark_matched sets both fields together."""
        receipt = Receipt(user_id="user-1").mark_matched("t1")
        assert receipt.status == ReceiptStatus.MATCHED
        assert receipt.matched_transaction_id == "t1"
        assert receipt.updated_at is not None

    def test_line_item_granularity(self):
        """Test granular categories are detected by the separator."""
        assert ReceiptLineItem(description="Latte", category="Food > Coffee").is_granular
        assert not ReceiptLineItem(description="Latte").is_granular

    def test_line_item_quantity_must_be_positive(self):
        """Test quantity below one is rejected."""
        with pytest.raises(ValidationError):
            ReceiptLineItem(description="Latte", quantity=0)


class TestOutcomes:
    """Tests for result models."""

    def test_match_outcome_discriminated_by_status(self):
        """Test outcomes parse to the right variant from their status."""
        adapter = TypeAdapter(MatchOutcome)
        matched = adapter.validate_python({"status": "matched", "transaction_id": "t1"})
        ambiguous = adapter.validate_python(
            {"status": "multiple_matches_found", "candidate_ids": ["a", "b"]}
        )
        assert isinstance(matched, Matched)
        assert isinstance(ambiguous, AmbiguousMatch)

    def test_aggregate_counts(self):
        """Test the aggregate sums added and counts failures."""
        account = LinkedAccount(item_id="item-1")
        results = [
            SyncResult(item_id="a", transactions_added=3, updated_account=account),
            SyncResult(item_id="b", transactions_added=2, updated_account=account),
            SyncResult(item_id="c", succeeded=False, error="x", updated_account=account),
        ]
        aggregate = AggregateSyncResult.from_results(results)
        assert aggregate.transactions_added == 5
        assert aggregate.accounts_synced == 2
        assert aggregate.accounts_failed == 1

    def test_operation_result_dumps_models(self):
        """Test ok() turns a model payload into JSON-style data."""
        result = OperationResult.ok(Matched(transaction_id="t1"))
        assert result.success
        assert result.data == {"status": "matched", "transaction_id": "t1"}

    def test_operation_result_failure(self):
        """Test fail() carries a code and message."""
        result = OperationResult.fail(ErrorCode.NOT_FOUND, "Receipt not found")
        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.data is None


class TestAuditEventBuilder:
    """Tests for audit event construction."""

    def test_sync_failed_event(self):
        """Test a failed sync is a warning carrying the error."""
        correlation_id = uuid4()
        event = AuditEventBuilder.sync_failed(
            "user-1", "item-1", "login_required", "ITEM_LOGIN_REQUIRED", correlation_id
        )
        assert event.event_type == AuditEventType.SYNC_FAILED
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "ITEM_LOGIN_REQUIRED"
        assert event.to_log_dict()["correlation_id"] == str(correlation_id)

    def test_sheets_row_column_count(self):
        """Test sheet rows always have twelve columns."""
        event = AuditEventBuilder.account_linked("user-1", "item-1", None, uuid4())
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "account_linked"
