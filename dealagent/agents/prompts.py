"""
Prompt templates for the buyer-side decision engine.

WHAT: Opportunity analysis and offer evaluation prompts
WHY: Consistent instructions and a fixed JSON reply shape for strict parsing
HOW: Template strings with context injection, return ChatMessage lists
"""

import json
from typing import Any, List

from ..llm.types import ChatMessage
from ..models.negotiation import (
    BehaviorSignal,
    NegotiationPreferences,
    NegotiationStep,
    ProductRef,
)
from ..utils.history_truncation import format_step, truncate_negotiation_history
from ..utils.offers import offer_price

SYSTEM_PROMPT = (
    "You are an expert negotiator and shopping assistant representing a buyer. "
    "Always respond in valid JSON format.\n\n"
    "Important Instructions:\n"
    "- Do NOT reveal your chain-of-thought or internal reasoning\n"
    "- NEVER output <think>...</think> tags or similar reasoning blocks\n"
    "- Respond ONLY with the JSON object requested"
)

STRATEGY_DESCRIPTIONS = {
    "aggressive": "Push for maximum discount, willing to walk away if target not met",
    "balanced": "Fair negotiation seeking win-win outcome",
    "conservative": "Accept reasonable offers quickly",
}


def strategy_from_preferences(preferences: NegotiationPreferences | None) -> str:
    """Human-readable strategy; custom requirements win for the custom strategy."""
    if preferences is None:
        return STRATEGY_DESCRIPTIONS["balanced"]
    if preferences.strategy == "custom" and preferences.custom_requirements:
        return preferences.custom_requirements
    return STRATEGY_DESCRIPTIONS.get(preferences.strategy, STRATEGY_DESCRIPTIONS["balanced"])


def render_opportunity_prompt(
    product: ProductRef,
    behavior: BehaviorSignal,
    seller_capabilities: List[str],
) -> List[ChatMessage]:
    """
    Ask whether negotiating for this product is worthwhile.

    WHAT: Summarize product, interest signal and seller tools
    WHY: Without explicit preferences the model decides if and how to negotiate
    HOW: System message fixes JSON output, user message carries the context
    """
    user_prompt = f"""You are analyzing a shopping opportunity.

PRODUCT INFORMATION:
- Name: {product.name}
- Current Price: {product.currency} {product.price:.2f}
- Seller: {product.seller or 'Unknown'}
- Category: {product.category or 'Unknown'}

USER BEHAVIOR:
- Interest Score: {behavior.interest_score:.2f}/1.0
- Time Spent Viewing: {behavior.dwell_time:.0f} seconds
- Price Checks: {behavior.price_checks}
- Add to Cart Attempts: {behavior.add_to_cart_attempts}

SELLER CAPABILITIES:
- Available negotiation tools: {', '.join(seller_capabilities) or 'none listed'}

Based on this information, decide whether negotiation is worthwhile and what strategy to use.

Respond in JSON format:
{{
  "shouldNegotiate": true or false,
  "reasoning": "Clear explanation of decision",
  "targetPrice": number (if negotiating),
  "strategy": "brief strategy description"
}}"""

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def _preferences_section(product: ProductRef, preferences: NegotiationPreferences | None) -> str:
    if preferences is None:
        return ""
    max_price = f"{product.currency} {preferences.max_price:.2f}" if preferences.max_price else "not set"
    lines = [
        "",
        "USER PREFERENCES:",
        f"- Desired Discount: {preferences.desired_discount:g}%",
        f"- Maximum Price: {max_price}",
        f"- Strategy: {preferences.strategy}",
        f"- Open to Bundle: {preferences.options.open_to_bundle}",
        f"- Interested in Warranty: {preferences.options.interested_in_warranty}",
        f"- Willing to Buy Multiple: {preferences.options.willing_to_buy_multiple}",
        f"- Flexible Payment: {preferences.options.flexible_payment}",
    ]
    if preferences.custom_requirements:
        lines.append(f"- Custom Requirements: {preferences.custom_requirements}")
    return "\n".join(lines) + "\n"


def render_offer_prompt(
    product: ProductRef,
    behavior: BehaviorSignal,
    preferences: NegotiationPreferences | None,
    offer: dict[str, Any],
    current_round: int,
    max_rounds: int,
    history: List[NegotiationStep],
) -> List[ChatMessage]:
    """
    Ask for accept, reject or counter on the seller's latest offer.

    WHAT: Present the offer, round progress, preferences and recent history
    WHY: The engine must return a concrete next action when it counters
    HOW: History is truncated (max 10 steps, 4000 chars) before rendering
    """
    price = offer_price(offer)
    offer_price_text = f"{product.currency} {price:.2f}" if price is not None else "unknown"

    truncated = truncate_negotiation_history(history, max_steps=10, max_chars=4000)
    history_text = "\n".join(format_step(step) for step in truncated) or "No previous steps."

    user_prompt = f"""Analyze the current seller offer and decide the best action for the buyer.

CONTEXT:
- Product: {product.name}
- Original Price: {product.currency} {product.price:.2f}
- Current Seller Offer: {offer_price_text}
- Negotiation Round: {current_round}/{max_rounds}
- User Interest Level: {behavior.interest_score:.2f}/1.0
{_preferences_section(product, preferences)}
SELLER OFFER DETAILS:
{json.dumps(offer, indent=2, default=str)}

NEGOTIATION HISTORY:
{history_text}

INSTRUCTIONS:
1. Evaluate if this offer meets the user's preferences and provides good value
2. Consider the negotiation progress and remaining rounds
3. If the user has preferences, prioritize achieving their desired outcome
4. Decide whether to accept, reject, or make a counter offer
5. If countering, specify the exact parameters in nextAction

Respond in JSON format:
{{
  "decision": "accept|reject|counter",
  "reasoning": "Clear explanation of your decision",
  "nextAction": {{
    "type": "price_offer|bundle_request|quantity_offer|walk_away",
    "parameters": {{
      "price": number,
      "quantity": number,
      "message": "persuasive message to seller"
    }}
  }},
  "confidence": number (0.0-1.0)
}}"""

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
