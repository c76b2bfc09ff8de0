"""
OpenAI-compatible chat completion call with retries.

WHAT: One POST /chat/completions round trip shared by every provider
WHY: LM Studio and OpenRouter speak the same wire format
HOW: httpx request, BackoffPolicy between transient failures, error mapping
"""

import json

import httpx

from .types import (
    LLMResult,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..utils.backoff import BackoffPolicy
from ..utils.text import strip_thinking
from ..utils.logger import get_logger

logger = get_logger(__name__)


async def complete(
    client: httpx.AsyncClient,
    url: str,
    payload: dict,
    backoff: BackoffPolicy,
    label: str,
) -> LLMResult:
    """
    POST a completion request, retrying timeouts, transport failures and 5xx.

    4xx responses and malformed bodies are not retried.

    Raises:
        ProviderTimeoutError: Every attempt timed out
        ProviderUnavailableError: Host unreachable or the connection kept failing
        ProviderResponseError: Error status or invalid response body
    """
    for attempt in backoff.attempts():
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()

            raw_text = data["choices"][0]["message"]["content"] or ""
            usage = data.get("usage", {})
            response_model = data.get("model", payload.get("model", ""))

            logger.info(f"{label} generate success (model: {response_model}, tokens: {usage.get('total_tokens', 'unknown')})")
            return LLMResult(text=strip_thinking(raw_text), model=response_model, usage=usage)

        except httpx.TimeoutException as e:
            logger.warning(f"{label} timeout (attempt {attempt}/{backoff.max_attempts})")
            if not backoff.should_retry(attempt):
                raise ProviderTimeoutError(f"Request timed out after {backoff.max_attempts} attempts") from e

        except httpx.ConnectError as e:
            logger.error(f"{label} connection refused (attempt {attempt}/{backoff.max_attempts})")
            if not backoff.should_retry(attempt):
                raise ProviderUnavailableError(f"{label} is not reachable") from e

        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                # Client errors don't retry
                raise ProviderResponseError(f"HTTP {e.response.status_code}: {e.response.text}") from e
            logger.error(f"{label} server error {e.response.status_code} (attempt {attempt}/{backoff.max_attempts})")
            if not backoff.should_retry(attempt):
                raise ProviderResponseError(f"Server error: {e.response.status_code}") from e

        except httpx.HTTPError as e:
            # Read/write and protocol failures
            logger.error(f"{label} transport error: {e!r} (attempt {attempt}/{backoff.max_attempts})")
            if not backoff.should_retry(attempt):
                raise ProviderUnavailableError(f"{label} transport error: {e!r}") from e

        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            logger.error(f"Invalid response from {label}: {e}")
            raise ProviderResponseError(f"Invalid response format: {e}") from e

        await backoff.wait(attempt)

    raise ProviderResponseError(f"{label} returned no result")
