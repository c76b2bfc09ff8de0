"""
LM Studio provider implementation.

WHAT: Local LLM inference via LM Studio
WHY: Local-first decisions without external API dependencies
HOW: HTTPX client with BackoffPolicy retries, OpenAI-compatible API
"""

import httpx

from .chat_completions import complete
from .types import ChatMessage, LLMResult, ProviderStatus
from ..core.config import settings
from ..utils.backoff import BackoffPolicy
from ..utils.logger import get_logger

logger = get_logger(__name__)


class LMStudioProvider:
    """LM Studio LLM provider with retry logic."""

    def __init__(self, timeout: float | None = None, backoff: BackoffPolicy | None = None):
        self.base_url = settings.LM_STUDIO_BASE_URL
        self.default_model = settings.LM_STUDIO_DEFAULT_MODEL
        self.timeout = timeout or settings.LM_STUDIO_TIMEOUT
        self.backoff = backoff or BackoffPolicy(
            max_attempts=settings.LLM_MAX_RETRIES,
            base_delay=settings.LLM_RETRY_DELAY,
            max_delay=settings.LLM_RETRY_DELAY * 4,
        )

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(
                max_keepalive_connections=10,
                max_connections=20
            ),
        )

    def _disable_thinking_in_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        """
        Append the /no_think directive for Qwen3 models.

        Goes on the system message, or the first user message when there is
        no system message. Returns copies; the caller's dicts are untouched.
        """
        modified: list[ChatMessage] = [dict(m) for m in messages]  # type: ignore[misc]

        target_role = "system" if any(m.get("role") == "system" for m in modified) else "user"
        for msg in modified:
            if msg.get("role") == target_role:
                content = msg.get("content", "")
                if "/no_think" not in content:
                    separator = "\n\n" if target_role == "system" else " "
                    msg["content"] = f"{content}{separator}/no_think"
                break

        return modified

    async def ping(self) -> ProviderStatus:
        """
        Check LM Studio availability.

        Returns:
            ProviderStatus with availability and model list
        """
        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=5.0)
            response.raise_for_status()
            data = response.json()

            models = [m.get("id") for m in data.get("data", [])]

            return ProviderStatus(
                available=True,
                base_url=self.base_url,
                models=models if models else None
            )
        except httpx.TimeoutException:
            logger.warning("LM Studio ping timed out")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning("LM Studio not reachable")
            return ProviderStatus(
                available=False,
                base_url=self.base_url,
                error="Connection refused - is LM Studio running?"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"LM Studio ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """
        Generate a complete response.

        Raises:
            ProviderTimeoutError: Request timed out
            ProviderUnavailableError: LM Studio not reachable
            ProviderResponseError: Invalid response from LM Studio
        """
        model_to_use = model or self.default_model
        logger.debug(f"Using model: {model_to_use}")

        payload = {
            "model": model_to_use,
            "messages": self._disable_thinking_in_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
            # Qwen3-specific parameter to disable thinking mode
            "enable_thinking": False,
        }
        if stop:
            payload["stop"] = stop

        return await complete(
            self.client,
            f"{self.base_url}/chat/completions",
            payload,
            self.backoff,
            "LM Studio",
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
