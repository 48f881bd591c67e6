"""Repository package - idempotent transaction writes."""

from finlink.repository.transactions import PersistenceError, TransactionRepository

__all__ = ["PersistenceError", "TransactionRepository"]
