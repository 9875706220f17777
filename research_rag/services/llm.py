# =============================================================================
# Multi-Provider Chat Completion — Pluggable AI Backend + Retry Policy
# =============================================================================
#
# Provides a common interface for chat completions, with concrete
# implementations for OpenAI-compatible APIs (OpenRouter by default) and
# Anthropic (Claude), plus the explicit retry/backoff policy used by the
# whole-document analysis path.
#
# DESIGN DECISION: Provider-neutral error types.
# Each provider translates its SDK's exceptions into ProviderHTTPError
# (with the status code) or ProviderNetworkError. The retry policy only
# ever looks at these, so it does not care which SDK raised.
#
# DESIGN DECISION: SDK-level retries are disabled (max_retries=0).
# The RAG answer path must degrade to a local answer quickly, and the
# analysis path runs its own policy: exponential backoff from 1s, doubling,
# up to 3 retries, ONLY for HTTP 429 / 503 and network failures. Any other
# HTTP status is raised immediately.
#
# ARCHITECTURE:
#   ChatProvider (Protocol)
#   ├── OpenAICompatibleProvider — OpenRouter, DeepSeek, OpenAI, ...
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── build_chat_provider()    — factory; None when no key is configured
#   └── RetryPolicy / complete_with_retry()
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Status codes worth waiting out: rate limited / temporarily overloaded
RETRYABLE_STATUS_CODES = frozenset({429, 503})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Base class for chat-completion failures."""


class ProviderHTTPError(ProviderError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class ProviderNetworkError(ProviderError):
    """The request never produced an HTTP response (DNS, reset, timeout)."""


class ProviderUnavailableError(ProviderError):
    """Transient failures persisted through every retry."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any chat provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier reported by the provider
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class ChatProvider(Protocol):
    """
    Protocol defining the chat provider interface.

    Implementations raise ProviderHTTPError / ProviderNetworkError, never
    raw SDK exceptions.
    """

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (no "system"; use the system param).
            system: Optional system prompt.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
            model: Override the provider's default model for this call.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible (OpenRouter, DeepSeek, OpenAI, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Chat provider for any API that follows the OpenAI chat-completions format.

    Defaults target OpenRouter's free-tier models; switching vendors is a
    base_url + model change.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        default_headers: dict[str, str] | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            from openai import AsyncOpenAI

            client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
            if base_url:
                client_kwargs["base_url"] = base_url
            if default_headers:
                client_kwargs["default_headers"] = default_headers
            client = AsyncOpenAI(**client_kwargs)

        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            model, base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        import openai

        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._client.chat.completions.create(
                model=model or self._model,
                messages=all_messages,
                max_tokens=max_tokens or self._max_tokens,
                temperature=self._temperature if temperature is None else temperature,
            )
        except openai.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, str(e)) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise ProviderNetworkError(str(e)) from e
        except openai.APIError as e:
            # Response validation failures and other SDK errors
            raise ProviderError(str(e)) from e

        if not getattr(response, "choices", None):
            raise ProviderError("Chat completion returned no choices")

        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        client: Any = None,
    ) -> None:
        if client is None:
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(api_key=api_key, max_retries=0)

        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        import anthropic

        kwargs: dict = {
            "model": model or self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }

        # Anthropic: system prompt is a top-level kwarg, not a message
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, str(e)) from e
        except anthropic.APIConnectionError as e:
            raise ProviderNetworkError(str(e)) from e
        except anthropic.APIError as e:
            raise ProviderError(str(e)) from e

        # Extract text from the first content block
        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def build_chat_provider(
    provider_type: str,
    api_key: str,
    model: str,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1024,
    referer: str | None = None,
    title: str | None = None,
) -> OpenAICompatibleProvider | AnthropicProvider | None:
    """
    Build the configured chat provider, or None when no key is set.

    A missing key is a supported configuration: callers then answer with
    their local templated fallbacks.

    Raises:
        ValueError: If provider_type is not recognised.
    """
    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )

    if not api_key:
        logger.info("No chat API key configured; responses will be generated locally")
        return None

    if provider_type == "anthropic":
        return AnthropicProvider(
            api_key=api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    headers = {}
    if referer:
        headers["HTTP-Referer"] = referer
    if title:
        headers["X-Title"] = title
    return OpenAICompatibleProvider(
        api_key=api_key,
        model=model,
        base_url=base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        default_headers=headers or None,
    )


# ---------------------------------------------------------------------------
# Retry Policy — Exponential Backoff on 429 / 503 / Network Errors
# ---------------------------------------------------------------------------


@dataclass
class RetryPolicy:
    """
    Backoff schedule for transient provider failures.

    With the defaults a call is attempted up to 4 times, sleeping 1s, 2s
    and 4s between attempts.
    """

    max_retries: int = 3
    base_delay: float = 1.0

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (0-based)."""
        return self.base_delay * (2 ** retry_number)


async def complete_with_retry(
    provider: ChatProvider,
    messages: list[dict[str, str]],
    policy: RetryPolicy,
    system: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    model: str | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> LLMResponse:
    """
    Call `provider.complete()` under `policy`.

    Raises:
        ProviderHTTPError: Immediately, for any non-retryable status.
        ProviderUnavailableError: When retryable failures outlast the policy.
    """
    for attempt in range(policy.max_retries + 1):
        try:
            return await provider.complete(
                messages=messages,
                system=system,
                temperature=temperature,
                max_tokens=max_tokens,
                model=model,
            )
        except ProviderHTTPError as e:
            if not e.retryable:
                raise
            failure: ProviderError = e
        except ProviderNetworkError as e:
            failure = e

        if attempt == policy.max_retries:
            break

        delay = policy.delay_for(attempt)
        logger.warning(
            "Chat provider transient failure (%s); retry %d/%d in %.1fs",
            failure, attempt + 1, policy.max_retries, delay,
        )
        await sleep(delay)

    raise ProviderUnavailableError(
        f"Failed after {policy.max_retries} retries: {failure}"
    ) from failure
