"""
CompletionService - text-generation provider access.

Defines the CompletionProvider interface the orchestrators depend on, the
OpenAI-compatible implementation used in production, and a wrapper that
bounds how many completions run at once across all jobs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import logfire
from openai import APIError, AsyncOpenAI, OpenAIError, RateLimitError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import Config
from ..core.exceptions import ProviderError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class CompletionProvider(ABC):
    """Issues one text-generation request and returns the reply content."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float] = None
    ) -> str:
        """
        Run a single chat completion.

        Raises:
            ProviderError: On network, auth, rate-limit or timeout failure,
                or when the reply has no content
        """


class OpenAICompletionProvider(CompletionProvider):
    """
    Completion provider backed by any OpenAI-compatible chat endpoint.

    Features:
    - Custom base URL (LLM gateways serving several model families)
    - Exponential backoff on rate-limit responses
    - Uniform ProviderError for every failure mode
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None
    ):
        """
        Initialize the provider.

        Args:
            api_key: Gateway API key (defaults to Config.LLM_API_KEY)
            base_url: Gateway base URL (defaults to Config.LLM_API_BASE_URL)
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request when rate limited
        """
        api_key = api_key or Config.LLM_API_KEY
        self.max_attempts = max(1, max_attempts or Config.PROVIDER_MAX_ATTEMPTS)

        if not api_key:
            logger.warning("LLM_API_KEY not set - every completion will fail and callers will fall back")
            self.client = None
        else:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or Config.LLM_API_BASE_URL,
                timeout=timeout or Config.LLM_TIMEOUT_SECONDS,
            )

    async def complete(
        self,
        model: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float] = None
    ) -> str:
        if self.client is None:
            raise ProviderError("Completion client not configured. Set LLM_API_KEY.", model=model)

        params = {"model": model, "messages": messages, "max_tokens": max_tokens}
        if temperature is not None:
            params["temperature"] = temperature

        with logfire.span("completion", model=model, message_count=len(messages)):
            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type(RateLimitError),
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_exponential(multiplier=2, min=2, max=30),
                    reraise=True,
                ):
                    with attempt:
                        response = await self.client.chat.completions.create(**params)
            except RateLimitError as e:
                raise ProviderError(f"Rate limited after {self.max_attempts} attempts: {e}", model=model) from e
            except (APIError, OpenAIError, RetryError) as e:
                raise ProviderError(str(e), model=model) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError("Empty response from provider", model=model)
        return content


class ConcurrencyLimitedProvider(CompletionProvider):
    """Wraps a provider so that at most `max_concurrent` completions are in flight."""

    def __init__(self, provider: CompletionProvider, max_concurrent: Optional[int] = None):
        self.provider = provider
        self.max_concurrent = max(1, max_concurrent or Config.MAX_CONCURRENT_COMPLETIONS)
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def complete(
        self,
        model: str,
        messages: List[Message],
        max_tokens: int,
        temperature: Optional[float] = None
    ) -> str:
        async with self.semaphore:
            return await self.provider.complete(model, messages, max_tokens, temperature)


_completion_provider: Optional[CompletionProvider] = None


def get_completion_provider() -> CompletionProvider:
    """
    Get or create the shared completion provider (singleton pattern)

    Returns:
        OpenAI-compatible provider wrapped in the global concurrency limit
    """
    global _completion_provider

    if _completion_provider is None:
        _completion_provider = ConcurrencyLimitedProvider(OpenAICompletionProvider())

    return _completion_provider


def reset_completion_provider():
    """Reset the shared provider (useful for testing)"""
    global _completion_provider
    _completion_provider = None
