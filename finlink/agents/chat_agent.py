"""
Chat Intent Agent

The LLM is a TRANSLATOR, not an ORACLE: it turns a user's message into
an {intent, entities} pair. Answers are computed by the query resolver
from stored data, never by the model.
"""

from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from finlink.agents.responses import find_json_object
from finlink.config import GeminiSettings, get_settings


logger = structlog.get_logger(__name__)

UNKNOWN_INTENT = "UNKNOWN"


class ParsedIntent(BaseModel):
    """Structured reading of one chat message."""

    intent: str = Field(default=UNKNOWN_INTENT)
    entities: dict[str, Any] = Field(default_factory=dict)


INTENT_PROMPT = """Analyze the following user query about their personal finances. Identify the primary intent and any relevant entities.

Possible Intents:
- GET_RECENT_TRANSACTIONS: User wants to see a list of recent transactions.
- GET_SPENDING_SUMMARY: User wants a total spending figure for a specific period.
- GET_TRANSACTIONS_BY_CATEGORY: User wants transactions for a specific category.
- GET_SPENDING_SUMMARY_BY_CATEGORY: User wants total spending for a category in a period.
- GET_TRANSACTIONS_BY_MERCHANT: User wants transactions for a specific merchant.
- GET_SPENDING_SUMMARY_BY_MERCHANT: User wants total spending for a merchant in a period.
- GET_RECEIPT_DETAILS: User wants to know what items were bought from a specific receipt/transaction.
- UNKNOWN: The intent is unclear or not finance-related.

Possible Entities:
- limit (number): The number of transactions requested.
- period (string): "today", "yesterday", "this_week", "last_week", "this_month", "last_month", "this_year", "last_year".
- category (string): Spending category (e.g., "groceries", "transportation > ride share").
- merchant (string): Specific merchant name (e.g., "Starbucks", "Costco Wholesale").
- date (string): Specific date normalized to YYYY-MM-DD.

Respond ONLY with a valid JSON object containing 'intent' and 'entities' keys.
If no specific entities are found, return an empty 'entities' object {{}}.
If no specific intent is recognized, use intent "UNKNOWN".

Examples:
Query: "Show my last 5 transactions"
Response: {{"intent": "GET_RECENT_TRANSACTIONS", "entities": {{"limit": 5}}}}

Query: "How much did I spend on groceries last week?"
Response: {{"intent": "GET_SPENDING_SUMMARY_BY_CATEGORY", "entities": {{"category": "groceries", "period": "last_week"}}}}

Query: "starbucks spending this month"
Response: {{"intent": "GET_SPENDING_SUMMARY_BY_MERCHANT", "entities": {{"merchant": "Starbucks", "period": "this_month"}}}}

Query: "Show the receipt from Target on April 5th"
Response: {{"intent": "GET_RECEIPT_DETAILS", "entities": {{"merchant": "Target", "date": "2025-04-05"}}}}

Query: "What's the weather?"
Response: {{"intent": "UNKNOWN", "entities": {{}}}}

User Query: "{message}"
Response:"""


class IntentAgent:
    """
    Gemini-backed intent classification.

    Falls back to UNKNOWN (with the reason in entities["error"]) whenever
    the model fails or answers with something that is not the expected JSON.
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
                    "temperature": 0.1,  # Very low for consistency
                    "max_output_tokens": 256,
                },
            )
        self._model = model

    async def parse(self, message: str) -> ParsedIntent:
        try:
            response = await self._model.generate_content_async(
                INTENT_PROMPT.format(message=message.replace('"', "'"))
            )
            text = response.text or ""
        except Exception as e:
            logger.error("intent_call_failed", error=str(e))
            return ParsedIntent(entities={"error": f"Intent service call failed: {e}"})

        data = find_json_object(text)
        entities = (data or {}).get("entities") or {}
        if data is None or not isinstance(data.get("intent"), str) or not isinstance(entities, dict):
            logger.warning("intent_response_invalid", response_chars=len(text))
            return ParsedIntent(entities={"error": "Invalid JSON structure from AI"})

        parsed = ParsedIntent(
            intent=data["intent"].strip().upper() or UNKNOWN_INTENT,
            entities=entities,
        )
        logger.info("intent_parsed", intent=parsed.intent, entities=sorted(parsed.entities))
        return parsed
