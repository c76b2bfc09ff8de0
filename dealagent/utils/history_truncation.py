"""
Negotiation history truncation utilities.

WHAT: Trim a session's step log before it goes into a prompt
WHY: LLM context windows are limited, need to stay within character limits
HOW: Keep most recent steps while respecting character limits
"""

from typing import List
from ..models.negotiation import NegotiationStep
from ..utils.logger import get_logger

logger = get_logger(__name__)


def format_step(step: NegotiationStep) -> str:
    """One prompt line per step."""
    return f"Round {step.round}: {step.action} - {step.reasoning or 'no reasoning given'}"


def truncate_negotiation_history(
    history: List[NegotiationStep],
    max_steps: int = 10,
    max_chars: int = 4000
) -> List[NegotiationStep]:
    """
    Limit step history to fit within the prompt budget.

    Strategy:
    1. Keep most recent steps (up to max_steps)
    2. If total chars exceed max_chars, drop oldest steps first
    3. Always keep the most recent step (even if it exceeds limit alone)
    """
    if not history:
        return []

    truncated = history[-max_steps:] if len(history) > max_steps else list(history)
    total_chars = sum(len(format_step(step)) for step in truncated)

    while total_chars > max_chars and len(truncated) > 1:
        removed = truncated.pop(0)
        total_chars -= len(format_step(removed))

    if len(truncated) < len(history):
        logger.debug(
            f"Truncated negotiation history: {len(history)} -> {len(truncated)} steps "
            f"({total_chars}/{max_chars} chars)"
        )

    return truncated
