"""
Cash-flow breakdown.

Groups a period's transactions into income and per-category spending,
shaped as links for a flow (Sankey) diagram:

    Income -> Total Income -> <category> ...
                           -> Savings/Buffer (when income exceeds spending)
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

import structlog

from finlink.models.finance import Transaction
from finlink.models.outcomes import CashFlowBreakdown, CashFlowLink
from finlink.queries.periods import CASH_FLOW_PERIODS, resolve_cash_flow_period
from finlink.services.storage import TransactionStorageInterface


logger = structlog.get_logger(__name__)

INCOME_NODE = "Income"
TOTAL_INCOME_NODE = "Total Income"
SAVINGS_NODE = "Savings/Buffer"


def build_cash_flow(transactions: list[Transaction]) -> CashFlowBreakdown:
    zero = Decimal("0")
    total_income = zero
    expenses_by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

    for txn in transactions:
        if txn.amount < 0:
            total_income += -txn.amount
        elif txn.amount > 0:
            expenses_by_category[txn.primary_category] += txn.amount

    total_expenses = sum(expenses_by_category.values(), zero)
    savings = total_income - total_expenses

    links = []
    if total_income > 0:
        links.append(CashFlowLink(source=INCOME_NODE, target=TOTAL_INCOME_NODE, value=total_income))
    for category, amount in sorted(expenses_by_category.items(), key=lambda kv: (-kv[1], kv[0])):
        links.append(CashFlowLink(source=TOTAL_INCOME_NODE, target=category, value=amount))
    if total_income > 0 and savings > 0:
        links.append(CashFlowLink(source=TOTAL_INCOME_NODE, target=SAVINGS_NODE, value=savings))

    return CashFlowBreakdown(
        links=links,
        total_income=total_income,
        total_expenses=total_expenses,
        savings_buffer=savings,
    )


class CashFlowService:
    """Read-only cash-flow queries over stored transactions."""

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        clock: Callable[[], date] = date.today,
    ):
        self._transactions = transaction_storage
        self._clock = clock

    async def get_cash_flow(
        self,
        user_id: str,
        period: str,
        offset: int = 0,
    ) -> Optional[CashFlowBreakdown]:
        """
        Breakdown for one period, or None for a period name outside
        monthly / yearly / yearToDate.
        """
        date_range = resolve_cash_flow_period(period, offset, today=self._clock())
        if date_range is None:
            logger.warning("cash_flow_invalid_period", period=period, allowed=CASH_FLOW_PERIODS)
            return None

        transactions = await self._transactions.list_transactions(user_id, date_range=date_range)
        breakdown = build_cash_flow(transactions)
        logger.info(
            "cash_flow_computed",
            user_id=user_id,
            period=period,
            offset=offset,
            transactions=len(transactions),
            links=len(breakdown.links),
        )
        return breakdown
