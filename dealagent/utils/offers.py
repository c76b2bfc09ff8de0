"""
Offer normalization and savings arithmetic.

WHAT: Pull a concrete price out of seller payloads and compute savings
WHY: Sellers answer with loosely shaped offers (JSON or plain text)
HOW: Key lookup across known aliases, regex fallback on free text
"""

import math
import re
from typing import Any, Dict

from ..utils.logger import get_logger

logger = get_logger(__name__)

# Keys sellers have been seen using for the offered price, in priority order
PRICE_KEYS = ("price", "finalPrice", "offerPrice", "counterPrice", "amount")

# Wrapper keys an offer may be nested under
OFFER_WRAPPERS = ("counterOffer", "initialOffer", "offer", "finalTerms")

_PRICE_PATTERNS = [
    r'\$\s*(\d+(?:,\d{3})*(?:\.\d{1,2})?)',            # $1,299.99
    r'(\d+(?:\.\d{1,2})?)\s*(?:USD|dollars?)',         # 85 USD
    r'price[:\s]+\$?\s*(\d+(?:\.\d{1,2})?)',           # price: 85
]


def coerce_offer(data: Any) -> Dict[str, Any] | None:
    """
    Normalize a seller payload into an offer dict with a float `price`.

    Accepts the offer itself, or a payload wrapping it under one of
    OFFER_WRAPPERS. A payload that only carries a `message` string is
    scanned for a price as a last resort.

    Returns:
        Offer dict (original keys preserved, `price` coerced) or None
    """
    if not isinstance(data, dict):
        return None

    for wrapper in OFFER_WRAPPERS:
        nested = data.get(wrapper)
        if isinstance(nested, dict):
            offer = coerce_offer(nested)
            if offer is not None:
                return offer

    for key in PRICE_KEYS:
        if key in data:
            price = _as_price(data[key])
            if price is None:
                continue
            offer = dict(data)
            offer["price"] = price
            return offer

    message = data.get("message")
    if isinstance(message, str):
        price = extract_price_from_text(message)
        if price is not None:
            logger.debug(f"Recovered price {price} from seller message")
            return {"price": price, "message": message}

    return None


def offer_price(offer: Dict[str, Any]) -> float | None:
    """The offer's `price` when it is a finite, non-negative number."""
    price = offer.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return None
    return float(price) if math.isfinite(price) and price >= 0 else None


def _as_price(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if math.isfinite(price) and price >= 0 else None


def extract_price_from_text(text: str) -> float | None:
    """
    Extract a price from natural language as a fallback.

    Args:
        text: Natural language text

    Returns:
        Price or None if not found
    """
    for pattern in _PRICE_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            try:
                return float(match.group(1).replace(",", ""))
            except ValueError:
                continue
    return None


def compute_savings(original_price: float, final_price: float) -> float:
    """Savings for reporting, floored at zero."""
    return round(max(0.0, original_price - final_price), 2)


def discount_percent(original_price: float, final_price: float) -> float:
    """Reported discount percentage (0 when there is no saving)."""
    if original_price <= 0:
        return 0.0
    return round(compute_savings(original_price, final_price) / original_price * 100, 1)
