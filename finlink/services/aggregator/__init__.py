"""
Aggregator Services Package

Interface for the bank-data aggregator and its Plaid implementation.
"""

from finlink.services.aggregator.interface import (
    AggregatorClientInterface,
    AggregatorError,
    LoginRequiredError,
)
from finlink.services.aggregator.plaid_client import PlaidAggregatorClient

__all__ = [
    "AggregatorClientInterface",
    "AggregatorError",
    "LoginRequiredError",
    "PlaidAggregatorClient",
]
