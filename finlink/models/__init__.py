"""
Data Models Package

This package contains all Pydantic models used in finlink.
All data flowing through the engines must conform to these schemas.
"""

from finlink.models.finance import (
    CATEGORY_SEPARATOR,
    UNCATEGORIZED,
    AccountStatus,
    DateRange,
    ExtractedReceipt,
    InstitutionInfo,
    LinkedAccount,
    RawTransaction,
    Receipt,
    ReceiptLineItem,
    ReceiptStatus,
    Transaction,
)
from finlink.models.outcomes import (
    AggregateSyncResult,
    AlreadyMatched,
    AmbiguousMatch,
    CashFlowBreakdown,
    CashFlowLink,
    ErrorCode,
    Matched,
    MatchOutcome,
    NoMatch,
    OperationResult,
    SyncPage,
    SyncResult,
    TokenExchange,
    UpsertResult,
)
from finlink.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "CATEGORY_SEPARATOR",
    "UNCATEGORIZED",
    "AccountStatus",
    "DateRange",
    "ExtractedReceipt",
    "InstitutionInfo",
    "LinkedAccount",
    "RawTransaction",
    "Receipt",
    "ReceiptLineItem",
    "ReceiptStatus",
    "Transaction",
    # Results
    "AggregateSyncResult",
    "AlreadyMatched",
    "AmbiguousMatch",
    "CashFlowBreakdown",
    "CashFlowLink",
    "ErrorCode",
    "Matched",
    "MatchOutcome",
    "NoMatch",
    "OperationResult",
    "SyncPage",
    "SyncResult",
    "TokenExchange",
    "UpsertResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
