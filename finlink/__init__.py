"""
finlink - Source Package

Transaction ingestion and reconciliation engine for a personal-finance
assistant. Pulls transactions from linked bank accounts, keeps them
idempotently in storage, and reconciles scanned receipts against them.

DESIGN PRINCIPLES:
1. Every sync and match is safe to retry
2. A failing account never blocks its siblings
3. No silent partial links
4. Every step is auditable
5. Storage and aggregator are swappable
"""

__version__ = "1.0.0"
__author__ = "finlink Team"
