"""
Period resolution.

Pure functions from a period name to a half-open DateRange. This is
DETERMINISTIC - "today" is injected, never read inside the rules.
"""

from datetime import date, timedelta
from typing import Optional

import structlog

from finlink.models.finance import DateRange


logger = structlog.get_logger(__name__)

CASH_FLOW_PERIODS = ("monthly", "yearly", "yearToDate")


def normalize_period(period: str) -> str:
    return period.strip().lower().replace(" ", "_")


def describe_period(period: str) -> str:
    """'this_month' -> 'this month'."""
    return normalize_period(period).replace("_", " ")


def first_of_month(value: date, months: int = 0) -> date:
    """First day of the month `months` away from value's month."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def resolve_period(period: str, today: Optional[date] = None) -> Optional[DateRange]:
    """
    Resolve a chat period name to [start, end).

    Weeks start on Monday. The "this_*" periods run up to and including
    today. Unknown names return None.
    """
    today = today or date.today()
    tomorrow = today + timedelta(days=1)
    monday = today - timedelta(days=today.weekday())

    name = normalize_period(period)
    if name == "today":
        return DateRange(start=today, end=tomorrow)
    if name == "yesterday":
        return DateRange(start=today - timedelta(days=1), end=today)
    if name == "this_week":
        return DateRange(start=monday, end=tomorrow)
    if name == "last_week":
        return DateRange(start=monday - timedelta(days=7), end=monday)
    if name == "this_month":
        return DateRange(start=first_of_month(today), end=tomorrow)
    if name == "last_month":
        return DateRange(start=first_of_month(today, -1), end=first_of_month(today))
    if name == "this_year":
        return DateRange(start=date(today.year, 1, 1), end=tomorrow)
    if name == "last_year":
        return DateRange(start=date(today.year - 1, 1, 1), end=date(today.year, 1, 1))
    return None


def resolve_cash_flow_period(
    period: str,
    offset: int = 0,
    today: Optional[date] = None,
) -> Optional[DateRange]:
    """
    Resolve a cash-flow period with a month/year offset.

    monthly: calendar month `offset` months from the current one
    yearly: calendar year `offset` years from the current one
    yearToDate: Jan 1 through today; offset is ignored

    An offset that lands outside the calendar's range returns None.
    """
    today = today or date.today()
    name = period.strip().lower()

    try:
        if name == "monthly":
            start = first_of_month(today, offset)
            return DateRange(start=start, end=first_of_month(start, 1))
        if name == "yearly":
            year = today.year + offset
            return DateRange(start=date(year, 1, 1), end=date(year + 1, 1, 1))
    except (ValueError, OverflowError):
        logger.warning("cash_flow_offset_out_of_range", period=period, offset=offset)
        return None
    if name == "yeartodate":
        if offset:
            logger.warning("cash_flow_offset_ignored", period=period, offset=offset)
        return DateRange(start=date(today.year, 1, 1), end=today + timedelta(days=1))
    return None
