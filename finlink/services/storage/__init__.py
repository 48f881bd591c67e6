"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory backend serves
tests and local runs.
"""

from finlink.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LinkConflictError,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from finlink.services.storage.memory import InMemoryStorage
from finlink.services.storage.google_sheets import (
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptStorage,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "ReceiptStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "LinkConflictError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryStorage",
    # Google Sheets implementation
    "GoogleSheetsAccountStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsReceiptStorage",
    "GoogleSheetsTransactionStorage",
]
