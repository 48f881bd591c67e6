"""
Receipt Extraction Agent

DESIGN DECISION: The vision model is a black box that returns loosely
structured JSON. Everything it says is coerced at this boundary before a
Receipt is built:

- quantity: rounded, clamped to >= 1, default 1
- price: finite decimal, default 0
- line items that are not objects, or have no description, are dropped
- total: finite decimal or None
- date: ISO date or None
- currency: upper-cased

Categorization is a second, per-line-item call. The answer must be one
label from RECEIPT_CATEGORIES; anything else becomes "Uncategorized".

CRITICAL BOUNDARIES:
- CAN: read a receipt image and label its line items
- CANNOT: persist anything or decide which transaction a receipt belongs to
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Optional

import google.generativeai as genai
import structlog
from PIL import Image, UnidentifiedImageError

from finlink.agents.responses import find_json_object
from finlink.config import GeminiSettings, get_settings
from finlink.models.finance import UNCATEGORIZED, ExtractedReceipt, ReceiptLineItem


logger = structlog.get_logger(__name__)


# =============================================================================
# CATEGORY TAXONOMY
# =============================================================================

RECEIPT_CATEGORIES: tuple[str, ...] = (
    "Groceries > Produce",
    "Groceries > Dairy",
    "Groceries > Meat",
    "Groceries > Pantry",
    "Groceries > Bakery",
    "Groceries > Deli",
    "Groceries > Frozen Foods",
    "Groceries > Snacks",
    "Groceries > Canned Goods",
    "Groceries > Condiments",
    "Groceries > Baby Products",
    "Groceries > Pet Supplies",
    "Groceries > Health Foods",
    "Groceries > Beverages",
    "Groceries > Other",
    "Restaurants > Fast Food",
    "Restaurants > Dine-in",
    "Restaurants > Takeout",
    "Restaurants > Bar",
    "Restaurants > Food Truck",
    "Restaurants > Cafeteria",
    "Restaurants > Coffee Shop",
    "Transportation > Gas",
    "Transportation > Ride Share",
    "Transportation > Taxi",
    "Transportation > Parking Fees",
    "Transportation > Tolls",
    "Transportation > Car Wash",
    "Transportation > EV Charging",
    "Transportation > Vehicle Maintenance",
    "Transportation > Public Transit",
    "Shopping > Clothing",
    "Shopping > Electronics",
    "Shopping > Home Goods",
    "Shopping > Hardware",
    "Shopping > Furniture",
    "Shopping > Sporting Goods",
    "Shopping > Toys",
    "Shopping > Gifts",
    "Shopping > Office Supplies",
    "Shopping > Cleaning Supplies",
    "Shopping > Personal Care",
    "Shopping > Books",
    "Shopping > Beauty",
    "Shopping > Jewelry",
    "Shopping > Crafts",
    "Shopping > Garden",
    "Shopping > Automotive",
    "Shopping > Travel",
    "Shopping > Other",
    "Bills & Utilities > Rent/Mortgage",
    "Bills & Utilities > Internet",
    "Bills & Utilities > Phone",
    "Bills & Utilities > Electricity",
    "Bills & Utilities > Water",
    "Bills & Utilities > Natural Gas",
    "Bills & Utilities > Trash",
    "Bills & Utilities > Insurance",
    "Bills & Utilities > Property Taxes",
    "Bills & Utilities > Heating Oil",
    "Bills & Utilities > HOA Fees",
    "Entertainment > Movies",
    "Entertainment > Streaming Services",
    "Entertainment > Concerts",
    "Entertainment > Sports Events",
    "Entertainment > Amusement Parks",
    "Entertainment > Museums",
    "Entertainment > Video Games",
    "Health & Wellness > Pharmacy",
    "Health & Wellness > Doctor",
    "Health & Wellness > Dentist",
    "Health & Wellness > Gym",
    "Health & Wellness > Therapy",
    "Health & Wellness > Supplements",
    "Health & Wellness > Fitness Classes",
    "Health & Wellness > Spa",
    "Health & Wellness > Other",
    "Travel > Car Rental",
    "Travel > Train",
    "Travel > Bus",
    "Travel > Cruise",
    "Travel > Flights",
    "Travel > Hotels",
    "Personal Care",
    "Home Services > House Cleaning Service",
    "Home Services > Lawn Care",
    "Home Services > Home Repairs",
    "Home Services > Pest Control Service",
    "Home Services > Pool Maintenance",
    "Miscellaneous",
    UNCATEGORIZED,
)

_CATEGORY_LOOKUP = {c.lower(): c for c in RECEIPT_CATEGORIES}


def normalize_category(label: Any) -> str:
    """Map a model answer onto the taxonomy (case-insensitive), else Uncategorized."""
    if not isinstance(label, str):
        return UNCATEGORIZED
    key = " > ".join(part.strip() for part in label.split(">")).lower()
    return _CATEGORY_LOOKUP.get(key, UNCATEGORIZED)


# =============================================================================
# COERCION
# =============================================================================

def _to_decimal(value: Any, default: Optional[Decimal]) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return default
    return number if number.is_finite() else default


def _to_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("receipt_date_unparseable", value=text)
        return None


def coerce_line_items(raw_items: Any) -> list[ReceiptLineItem]:
    """Validate the model's line items, dropping anything unusable."""
    if not isinstance(raw_items, list):
        if raw_items is not None:
            logger.warning("receipt_line_items_not_a_list", type=type(raw_items).__name__)
        return []

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            logger.warning("receipt_line_item_dropped", reason="not_an_object")
            continue
        description = raw.get("description")
        if description is None or not str(description).strip():
            logger.warning("receipt_line_item_dropped", reason="no_description")
            continue

        quantity = _to_decimal(raw.get("quantity"), Decimal("1"))
        quantity = int(quantity.to_integral_value(rounding=ROUND_HALF_UP))
        if quantity <= 0:
            quantity = 1

        items.append(ReceiptLineItem(
            description=str(description).strip(),
            quantity=quantity,
            price=_to_decimal(raw.get("price"), Decimal("0")),
        ))
    return items


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def coerce_extraction(data: dict) -> ExtractedReceipt:
    """Build an ExtractedReceipt from the raw model JSON."""
    currency = _to_text(data.get("currencyCode"))
    return ExtractedReceipt(
        vendor_name=_to_text(data.get("vendorName")),
        transaction_date=_to_date(data.get("transactionDate")),
        total_amount=_to_decimal(data.get("totalAmount"), None),
        currency_code=currency.upper() if currency else None,
        line_items=coerce_line_items(data.get("lineItems")),
    )


# =============================================================================
# INTERFACE
# =============================================================================

class ReceiptExtractorInterface(ABC):
    """Extraction adapter the receipt flow depends on."""

    @abstractmethod
    async def extract(self, image_bytes: bytes) -> ExtractedReceipt:
        """
        Read vendor, date, total, currency and line items from an image.

        Raises:
            ExtractionError: If the image or the model output is unusable
        """
        pass

    @abstractmethod
    async def categorize(self, description: str) -> str:
        """Label one line item with a taxonomy category. Never raises."""
        pass

    async def extract_and_categorize(self, image_bytes: bytes) -> ExtractedReceipt:
        """Extract, then categorize each line item one call at a time."""
        extracted = await self.extract(image_bytes)
        categorized = []
        for item in extracted.line_items:
            category = await self.categorize(item.description)
            categorized.append(item.model_copy(update={"category": category}))
        return extracted.model_copy(update={"line_items": categorized})


class ExtractionError(Exception):
    """The vision model could not produce a usable receipt."""
    pass


class InvalidImageError(ExtractionError):
    """The uploaded bytes are not an image Pillow can open."""
    pass


# =============================================================================
# GEMINI IMPLEMENTATION
# =============================================================================

EXTRACTION_PROMPT = """Analyze the provided receipt image. Extract the following information accurately:
- vendorName (string): The name of the store or vendor.
- transactionDate (string): The date of the transaction in YYYY-MM-DD format. Use null if not found.
- totalAmount (number): The final total amount paid. Use null if not found.
- currencyCode (string): The ISO 4217 currency code (e.g., "USD", "CAD"). Use null if not found.
- lineItems (array of objects): Each item listed on the receipt, with ONLY these fields:
    - description (string): Name or description of the item.
    - quantity (number): Quantity purchased. Default to 1 if unclear.
    - price (number): The total price paid for that line item.

Respond ONLY with a single, valid JSON object containing these fields.
Ensure all monetary values are numbers, not strings.

Example:
{"vendorName": "Example Cafe", "transactionDate": "2025-04-12", "totalAmount": 15.75, "currencyCode": "USD",
 "lineItems": [{"description": "Coffee", "quantity": 1, "price": 3.50}, {"description": "Pastry", "quantity": 2, "price": 6.00}]}"""


def category_prompt(description: str) -> str:
    categories = "\n".join(f"- {c}" for c in RECEIPT_CATEGORIES if c != UNCATEGORIZED)
    return f"""Classify the following purchased item into one of these categories.
Use subcategories where appropriate (e.g., "Groceries > Dairy").
If unsure, use a general category or "Uncategorized".

Categories:
{categories}

Respond ONLY with a valid JSON object like: {{"category": "Your Category > Your Subcategory"}} or {{"category": "Uncategorized"}}

Item Description: "{description}"
JSON Response:"""


class ReceiptExtractionAgent(ReceiptExtractorInterface):
    """
    Gemini-backed receipt extraction and line-item categorization.

    Models can be injected (tests pass fakes); otherwise they are built
    from GeminiSettings.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        vision_model: Any = None,
        text_model: Any = None,
    ):
        self._settings = settings
        if vision_model is None or text_model is None:
            self._settings = settings or get_settings().gemini
            genai.configure(api_key=self._settings.api_key)
        self._vision_model = vision_model or genai.GenerativeModel(
            model_name=self._settings.vision_model_name,
            generation_config={
                "temperature": 0.1,
                "response_mime_type": "application/json",
            },
        )
        self._text_model = text_model or genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": 0.1,  # Low temperature for consistency
                "max_output_tokens": 128,
            },
        )

    async def extract(self, image_bytes: bytes) -> ExtractedReceipt:
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise InvalidImageError(f"Not a readable image: {e}") from e

        try:
            response = await self._vision_model.generate_content_async([EXTRACTION_PROMPT, image])
            text = response.text or ""
        except Exception as e:
            logger.error("receipt_extraction_call_failed", error=str(e))
            raise ExtractionError(f"AI analysis failed: {e}") from e

        data = find_json_object(text)
        if data is None:
            logger.warning("receipt_extraction_unparseable", response_chars=len(text))
            raise ExtractionError("Failed to extract data from receipt image")

        extracted = coerce_extraction(data)
        logger.info(
            "receipt_extracted",
            vendor=extracted.vendor_name,
            line_items=len(extracted.line_items),
            has_total=extracted.total_amount is not None,
            has_date=extracted.transaction_date is not None,
        )
        return extracted

    async def categorize(self, description: str) -> str:
        if not description or description.strip().upper() == "N/A":
            return UNCATEGORIZED

        try:
            response = await self._text_model.generate_content_async(category_prompt(description))
            data = find_json_object(response.text or "")
        except Exception as e:
            logger.warning("line_item_categorization_failed", description=description, error=str(e))
            return UNCATEGORIZED

        if data is None:
            return UNCATEGORIZED
        return normalize_category(data.get("category"))
