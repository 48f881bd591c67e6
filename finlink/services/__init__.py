"""Services package."""

from finlink.services.aggregator import (
    AggregatorClientInterface,
    AggregatorError,
    LoginRequiredError,
    PlaidAggregatorClient,
)
from finlink.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
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

__all__ = [
    # Aggregator services
    "AggregatorClientInterface",
    "AggregatorError",
    "LoginRequiredError",
    "PlaidAggregatorClient",
    # Storage services
    "AccountStorageInterface",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAccountStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptStorage",
    "GoogleSheetsTransactionStorage",
    "InMemoryStorage",
    "LinkConflictError",
    "NotFoundError",
    "ReceiptStorageInterface",
    "StorageError",
    "TransactionStorageInterface",
]
