"""Queries package - read-only answers over stored data."""

from finlink.queries.cash_flow import CashFlowService, build_cash_flow
from finlink.queries.periods import (
    CASH_FLOW_PERIODS,
    describe_period,
    resolve_cash_flow_period,
    resolve_period,
)
from finlink.queries.resolver import IntentResolver, QueryIntent, format_currency

__all__ = [
    "CASH_FLOW_PERIODS",
    "CashFlowService",
    "IntentResolver",
    "QueryIntent",
    "build_cash_flow",
    "describe_period",
    "format_currency",
    "resolve_cash_flow_period",
    "resolve_period",
]
