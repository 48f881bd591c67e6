"""AI agents package."""

from finlink.agents.chat_agent import UNKNOWN_INTENT, IntentAgent, ParsedIntent
from finlink.agents.insights_agent import INSIGHTS_FALLBACK, InsightsAgent, build_spending_summary
from finlink.agents.receipt_agent import (
    RECEIPT_CATEGORIES,
    ExtractionError,
    ReceiptExtractionAgent,
    ReceiptExtractorInterface,
    coerce_extraction,
    coerce_line_items,
    normalize_category,
)

__all__ = [
    "INSIGHTS_FALLBACK",
    "RECEIPT_CATEGORIES",
    "UNKNOWN_INTENT",
    "ExtractionError",
    "InsightsAgent",
    "IntentAgent",
    "ParsedIntent",
    "ReceiptExtractionAgent",
    "ReceiptExtractorInterface",
    "build_spending_summary",
    "coerce_extraction",
    "coerce_line_items",
    "normalize_category",
]
