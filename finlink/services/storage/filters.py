"""
Shared in-Python filtering for storage backends that cannot query natively.
"""

from typing import Iterable, Optional

from finlink.models.finance import DateRange, Receipt, ReceiptStatus, Transaction


def _same_text(a: Optional[str], b: str) -> bool:
    return a is not None and a.strip().lower() == b.strip().lower()


def filter_transactions(
    transactions: Iterable[Transaction],
    user_id: str,
    date_range: Optional[DateRange] = None,
    category: Optional[str] = None,
    merchant: Optional[str] = None,
    unlinked_only: bool = False,
    limit: Optional[int] = None,
) -> list[Transaction]:
    """Apply list_transactions filters and return newest first."""
    selected = []
    for txn in transactions:
        if txn.user_id != user_id:
            continue
        if date_range and not date_range.contains(txn.date):
            continue
        if category and not any(_same_text(c, category) for c in txn.categories):
            continue
        if merchant and not _same_text(txn.display_name, merchant):
            continue
        if unlinked_only and txn.is_linked:
            continue
        selected.append(txn)

    selected = sort_newest_first(selected)
    if limit is not None:
        selected = selected[:limit]
    return selected


def sort_newest_first(transactions: list[Transaction]) -> list[Transaction]:
    # transaction_id breaks ties so results are stable across backends
    return sorted(
        transactions,
        key=lambda t: (t.date, t.transaction_id),
        reverse=True,
    )


def filter_receipts(
    receipts: Iterable[Receipt],
    user_id: str,
    status: Optional[ReceiptStatus] = None,
    date_range: Optional[DateRange] = None,
) -> list[Receipt]:
    """Apply list_receipts filters and return newest purchase first."""
    selected = []
    for receipt in receipts:
        if receipt.user_id != user_id:
            continue
        if status and receipt.status != status:
            continue
        if date_range and (
            receipt.transaction_date is None
            or not date_range.contains(receipt.transaction_date)
        ):
            continue
        selected.append(receipt)

    return sorted(
        selected,
        key=lambda r: (r.transaction_date is not None, r.transaction_date, r.created_at),
        reverse=True,
    )
