"""
Insights Agent

Turns a category summary of recent spending into a handful of short
observations.

The model only ever sees the aggregated summary built here from stored
transactions, never raw records or account metadata.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Any, Optional

import google.generativeai as genai
import structlog

from finlink.agents.responses import find_json_array, strip_code_fences
from finlink.config import GeminiSettings, get_settings
from finlink.models.finance import Transaction


logger = structlog.get_logger(__name__)

INSIGHTS_FALLBACK = "Could not generate insights at this time."
TOP_CATEGORIES = 5


def spending_by_category(transactions: list[Transaction]) -> list[tuple[str, Decimal]]:
    """Total absolute spend per primary category, largest first."""
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for txn in transactions:
        totals[txn.primary_category] += abs(txn.amount)
    return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))


def build_spending_summary(
    transactions: list[Transaction],
    lookback_days: int = 30,
    top_n: int = TOP_CATEGORIES,
) -> str:
    by_category = spending_by_category(transactions)
    total = sum((amount for _, amount in by_category), Decimal("0"))

    lines = [
        f"Total spending over the last {lookback_days} days: ${total:,.2f}",
        "Spending by category:",
    ]
    for category, amount in by_category[:top_n]:
        lines.append(f"- {category}: ${amount:,.2f}")
    if len(by_category) > top_n:
        lines.append("- ... (other categories)")
    return "\n".join(lines)


class InsightsAgent:
    """
    Gemini-backed spending insights.

    BOUNDARIES:
    - Works from the summary it is given
    - NEVER raises on a model failure; returns the fallback insight instead
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Any = None,
    ):
        if model is None:
            settings = settings or get_settings().gemini
            genai.configure(api_key=settings.api_key)
            model = genai.GenerativeModel(
                model_name=settings.model_name,
                generation_config={
                    "temperature": settings.temperature,
                    "max_output_tokens": settings.max_tokens,
                },
            )
        self._model = model

    @staticmethod
    def parse_insights(text: str) -> list[str]:
        """
        A JSON array of strings becomes the insight list. Anything else
        is kept as a single raw insight.
        """
        cleaned = strip_code_fences(text)
        if not cleaned:
            return [INSIGHTS_FALLBACK]

        items = find_json_array(cleaned)
        if items is None:
            logger.warning("insights_not_a_json_array")
            return [cleaned]

        insights = [item.strip() for item in items if isinstance(item, str) and item.strip()]
        return insights or [INSIGHTS_FALLBACK]

    async def generate(
        self,
        transactions: list[Transaction],
        lookback_days: int = 30,
    ) -> list[str]:
        summary = build_spending_summary(transactions, lookback_days)
        prompt = f"""Analyze the following financial summary for a user based on their last {lookback_days} days of spending.
Provide 3-4 concise, actionable insights or interesting observations about
their spending patterns, significant categories, or potential areas for saving.

Respond ONLY with a valid JSON array containing strings, where each string is a single insight.

Summary:
{summary}

Insights:"""

        try:
            response = await self._model.generate_content_async(prompt)
            text = response.text or ""
        except Exception as e:
            logger.error("insights_call_failed", error=str(e))
            return [INSIGHTS_FALLBACK]

        insights = self.parse_insights(text)
        logger.info("insights_generated", count=len(insights))
        return insights
