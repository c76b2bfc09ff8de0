"""
Local deal simulation used when no real seller can be reached.

WHAT: Compute a simulated final price from the buyer's preferences
WHY: Discovery or connection outages still give the user a visible result
HOW: Desired (or default) discount, clamped to max_price and never below zero
"""

from dataclasses import dataclass

from ..models.negotiation import NegotiationPreferences, NegotiationStep, ProductRef
from ..utils.offers import compute_savings, discount_percent


@dataclass(frozen=True)
class SimulatedDeal:
    final_price: float
    savings: float
    discount_percent: float
    applied_discount: float


def simulate_outcome(
    product: ProductRef,
    preferences: NegotiationPreferences | None,
    default_discount: float = 15.0,
) -> SimulatedDeal:
    """
    Derive the fallback deal.

    A desired discount of 0 (or no preferences) uses `default_discount`.
    """
    pct = (preferences.desired_discount if preferences else 0) or default_discount
    final_price = round(product.price - round(product.price * pct / 100, 2), 2)

    if preferences is not None and preferences.max_price is not None:
        final_price = min(preferences.max_price, final_price)
    final_price = max(0.0, round(final_price, 2))

    return SimulatedDeal(
        final_price=final_price,
        savings=compute_savings(product.price, final_price),
        discount_percent=discount_percent(product.price, final_price),
        applied_discount=pct,
    )


def fallback_step(deal: SimulatedDeal, round: int, cause: str, currency: str = "USD") -> NegotiationStep:
    """The single log entry that marks a simulated completion."""
    return NegotiationStep(
        round=round,
        action="accept",
        details={
            "simulated": True,
            "cause": cause,
            "finalPrice": deal.final_price,
            "currency": currency,
            "savings": deal.savings,
            "discountPercent": deal.applied_discount,
        },
        reasoning=f"Simulated {deal.applied_discount:g}% discount: {cause}",
        provenance="fallback",
    )
