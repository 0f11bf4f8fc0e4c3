"""Resilient Anthropic Extraction Provider: wraps AsyncAnthropic with retry, backoff, and error mapping.

Invariants:
    - Rate limits (429): exponential backoff with jitter, respects Retry-After header
    - Transient errors (5xx, 529, connection): max_retries retries with exponential backoff
    - Client errors (4xx except 429): immediate failure, no retry
    - All failures mapped to ExtractionProviderError (core/errors.py)
    - Returns the concatenated text blocks only; JSON parsing is the extractor's job

Design Decisions:
    - Wrapper over raw client: isolates retry logic from the facts extractor
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - Satisfies the ExtractionProvider protocol, so tests swap in a scripted provider
"""

import asyncio
import logging
import random
from dataclasses import dataclass

import anthropic
from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from decisioning.core.errors import ErrorContext, ExtractionProviderError

logger = logging.getLogger(__name__)

# OverloadedError (HTTP 529) is not re-exported by every SDK release; detect by status.
_OVERLOADED_STATUS = 529


def _is_overloaded(e: APIError) -> bool:
    """Check if error is Anthropic 529 Overloaded."""
    return isinstance(e, APIStatusError) and e.status_code == _OVERLOADED_STATUS


@dataclass(frozen=True)
class CompletionResult:
    text: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class AnthropicExtractionProvider:
    """Extraction provider backed by the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 60_000,
        timeout_seconds: int = 60,
    ):
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout_seconds,
        )
        self.model = model
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int,
        context: ErrorContext | None = None,
    ) -> CompletionResult:
        """Single-turn completion with automatic retry on transient failures."""
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                )
                self._log_success(response, attempt, context)
                return CompletionResult(
                    text=self._text_of(response),
                    provider=self.name,
                    model=getattr(response, "model", None) or self.model,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                )

            except RateLimitError as e:
                await self._handle_rate_limit(e, attempt, context)

            except APITimeoutError as e:
                raise ExtractionProviderError(
                    "API timeout", "timeout", context=context,
                ) from e

            except (APIConnectionError, InternalServerError) as e:
                await self._handle_transient_error(e, attempt, context)

            except APIError as e:
                if _is_overloaded(e):
                    await self._handle_transient_error(e, attempt, context)
                    continue
                raise ExtractionProviderError(
                    str(e), "client_error", context=context,
                ) from e

            except Exception as e:
                logger.error(
                    f"Unexpected Anthropic error: {e}", exc_info=True,
                )
                raise ExtractionProviderError(
                    str(e), "unknown", context=context,
                ) from e

        raise ExtractionProviderError(
            "Retries exhausted", "connection_error", context=context,
        )

    @staticmethod
    def _text_of(response) -> str:
        return "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )

    def _log_success(self, response, attempt: int, context: ErrorContext | None) -> None:
        usage = response.usage
        logger.info(
            "Anthropic extraction success",
            extra={
                "attempt": attempt + 1,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "email_id": context.email_id if context else None,
            },
        )

    async def _handle_rate_limit(
        self, e: RateLimitError, attempt: int, context: ErrorContext | None,
    ) -> None:
        """Handle rate limit error with retry or raise."""
        retry_after_ms = self._extract_retry_after(e)
        if attempt >= self.max_retries:
            raise ExtractionProviderError(
                "Rate limit exceeded after retries",
                "rate_limit",
                retry_after_ms=retry_after_ms,
                context=context,
            ) from e
        delay = retry_after_ms or self._backoff(attempt)
        logger.warning(
            f"Rate limit hit, retry after {delay}ms (attempt {attempt + 1})",
        )
        await asyncio.sleep(delay / 1000)

    async def _handle_transient_error(
        self, e: Exception, attempt: int, context: ErrorContext | None,
    ) -> None:
        """Handle transient errors with retry or raise."""
        if attempt >= self.max_retries:
            raise ExtractionProviderError(
                f"Transient failure after {self.max_retries} retries: {e}",
                "connection_error",
                context=context,
            ) from e
        delay = self._backoff(attempt)
        logger.warning(f"Transient error, retry after {delay}ms: {e}")
        await asyncio.sleep(delay / 1000)

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    def _extract_retry_after(self, error: RateLimitError) -> int | None:
        """Extract Retry-After header (returns milliseconds)."""
        response = getattr(error, "response", None)
        if response is None:
            return None
        val = response.headers.get("retry-after")
        if not val:
            return None
        try:
            return int(float(val) * 1000)
        except ValueError:
            return None


def create_extraction_provider(settings) -> AnthropicExtractionProvider:
    return AnthropicExtractionProvider(
        api_key=settings.anthropic_api_key,
        model=settings.extraction_model,
        max_retries=settings.anthropic_max_retries,
        base_delay_ms=settings.anthropic_base_delay_ms,
        max_delay_ms=settings.anthropic_max_delay_ms,
        timeout_seconds=settings.anthropic_timeout_seconds,
    )
