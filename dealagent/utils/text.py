"""
Text processing utilities.

WHAT: Helper functions for cleaning LLM output
WHY: Reasoning models prepend <think> blocks that break strict JSON parsing
HOW: Regex-based text processing utilities
"""

import re


def strip_thinking(text: str) -> str:
    """
    Remove <think>...</think> and <thinking>...</thinking> segments.

    Args:
        text: Raw LLM output text

    Returns:
        Text with reasoning blocks and stray tags removed
    """
    if not text:
        return ""
    text = re.sub(r'<think>.*?</think>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<thinking>.*?</thinking>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)
    # Unterminated opening tag: drop everything up to the first brace
    text = re.sub(r'^\s*<think(?:ing)?>[^{]*', '', text, flags=re.IGNORECASE)
    text = re.sub(r'</?think(?:ing)?>\s*', '', text, flags=re.IGNORECASE)
    return text.strip()


def truncate(text: str, limit: int = 200) -> str:
    """Shorten text for log lines and prompt summaries."""
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."
