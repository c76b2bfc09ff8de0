"""
LLM provider protocol definition.

WHAT: Interface the decision engine talks to
WHY: Decouple negotiation logic from specific model hosts
HOW: Protocol with async ping, generate, and close
"""

from typing import Protocol
from .types import ChatMessage, LLMResult, ProviderStatus


class LLMProvider(Protocol):
    """Protocol defining the interface all LLM providers must implement."""

    async def ping(self) -> ProviderStatus:
        """Check provider health and availability."""
        ...

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """Generate a complete response."""
        ...

    async def close(self) -> None:
        """Release HTTP resources."""
        ...
