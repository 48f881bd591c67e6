"""
Result Models for finlink

Typed results for every boundary: aggregator pages, sync runs, match
outcomes, cash-flow breakdowns and the envelope returned by the
caller-facing flows.

DESIGN DECISION: A match outcome is a closed sum type discriminated by
`status`. Callers switch on the status string; nothing is ever inferred
from which optional fields happen to be set.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from finlink.models.finance import LinkedAccount, RawTransaction


# =============================================================================
# AGGREGATOR BOUNDARY
# =============================================================================

class TokenExchange(BaseModel):
    """Result of exchanging a public link token."""

    access_token: str = Field(..., repr=False)
    item_id: str


class SyncPage(BaseModel):
    """One page of transaction deltas from the aggregator."""

    added: list[RawTransaction] = Field(default_factory=list)
    modified: list[RawTransaction] = Field(default_factory=list)
    removed: list[str] = Field(
        default_factory=list,
        description="Transaction ids the aggregator no longer reports"
    )
    next_cursor: str
    has_more: bool = False


# =============================================================================
# SYNC RESULTS
# =============================================================================

class UpsertResult(BaseModel):
    """Outcome of one atomic transaction batch write."""

    written: int = 0
    created: int = 0
    updated: int = 0


class SyncResult(BaseModel):
    """Outcome of syncing one linked account."""

    item_id: str
    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0
    pages_fetched: int = 0
    succeeded: bool = True
    timed_out: bool = False
    persistence_failed: bool = Field(
        default=False,
        description="Pages were fetched but the transaction batch was not written"
    )
    error: Optional[str] = None
    updated_account: LinkedAccount


class AggregateSyncResult(BaseModel):
    """Outcome of syncing every linked account of one user."""

    transactions_added: int = 0
    accounts_synced: int = 0
    accounts_failed: int = 0
    results: list[SyncResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[SyncResult]) -> "AggregateSyncResult":
        return cls(
            transactions_added=sum(r.transactions_added for r in results),
            accounts_synced=sum(1 for r in results if r.succeeded),
            accounts_failed=sum(1 for r in results if not r.succeeded),
            results=results,
        )


# =============================================================================
# MATCH OUTCOMES
# =============================================================================

class AlreadyMatched(BaseModel):
    """The receipt was linked before this call; nothing was written."""

    status: Literal["already_matched"] = "already_matched"
    transaction_id: str


class NoMatch(BaseModel):
    """No unlinked transaction fell inside the matching window."""

    status: Literal["no_match_found"] = "no_match_found"


class Matched(BaseModel):
    """Exactly one candidate; receipt and transaction are now linked."""

    status: Literal["matched"] = "matched"
    transaction_id: str


class AmbiguousMatch(BaseModel):
    """Several candidates qualified; nothing was linked."""

    status: Literal["multiple_matches_found"] = "multiple_matches_found"
    candidate_ids: list[str]


MatchOutcome = Annotated[
    Union[AlreadyMatched, NoMatch, Matched, AmbiguousMatch],
    Field(discriminator="status"),
]


# =============================================================================
# CASH FLOW
# =============================================================================

class CashFlowLink(BaseModel):
    """One edge of the income → spending flow diagram."""

    source: str
    target: str
    value: Decimal


class CashFlowBreakdown(BaseModel):
    """Income and expenses for a period, grouped for a flow diagram."""

    links: list[CashFlowLink] = Field(default_factory=list)
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    savings_buffer: Decimal = Decimal("0")


# =============================================================================
# CALLER-FACING ENVELOPE
# =============================================================================

class ErrorCode(str, Enum):
    """Failure codes returned to callers."""
    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid_argument"
    UPSTREAM_FAILURE = "upstream_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    NOT_FOUND = "not_found"
    FAILED_PRECONDITION = "failed_precondition"
    PERMISSION_DENIED = "permission_denied"
    INTERNAL = "internal"


class OperationResult(BaseModel):
    """
    What every caller-facing operation returns.

    Either success with a JSON-style payload, or failure with a code.
    There is no "still processing" state.
    """

    success: bool
    data: Any = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str) -> "OperationResult":
        return cls(success=False, error_code=code, error_message=message)
