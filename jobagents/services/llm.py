# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable Generation Backend
# =============================================================================
#
# Provides a common interface for LLM completions and streaming, with
# concrete implementations for Anthropic (Claude) and OpenAI-compatible APIs
# (OpenAI, Gemini's OpenAI endpoint, DeepSeek, ...).
#
# Protocol (structural typing) over ABC: any object with matching
# `complete()` / `stream()` methods works, including test fakes.
#
# Native SDKs, async only. Every caller is an agent running on the event
# loop; Celery workers drive them through workers.tasks.run_async().
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider  — Any OpenAI-compatible API
#   ├── GenerationStream          — async iterator of text + final result
#   ├── get_llm_provider()        — Singleton factory, reads from config
#   └── create_provider_from_id() — Non-singleton factory ("type/model@url")
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from jobagents.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response
    provider_type: str = ""  # "anthropic" / "openai_compatible", for pricing


class GenerationStream:
    """
    A single-use stream of generated text.

    Iterate it for text chunks; ``await stream.result()`` for the final
    LLMResponse (usage included). Calling ``result()`` without iterating
    drains the stream first. The stream cannot be restarted.

    The source is an async iterator yielding ``str`` chunks followed by
    exactly one ``LLMResponse``.
    """

    def __init__(self, source: AsyncIterator[str | LLMResponse]) -> None:
        self._source = source
        self._started = False
        self._done = asyncio.Event()
        self._final: LLMResponse | None = None
        self._error: BaseException | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("GenerationStream cannot be restarted")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            async for item in self._source:
                if isinstance(item, LLMResponse):
                    self._final = item
                else:
                    yield item
            if self._final is None:
                raise RuntimeError("Stream ended without a final response")
        except BaseException as exc:
            self._error = exc
            raise
        finally:
            self._done.set()

    async def result(self) -> LLMResponse:
        """Wait for the stream to finish and return the final response."""
        if not self._started:
            async for _ in self:
                pass
        await self._done.wait()
        if self._error is not None:
            raise self._error
        if self._final is None:
            raise RuntimeError("Stream ended without a final response")
        return self._final


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol defining the generation backend interface.

    Messages are dicts with "role" and "content" (roles "user" and
    "assistant"; the system prompt is passed separately because Anthropic
    takes it as a top-level kwarg while OpenAI takes it as a message).
    """

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion from the LLM."""
        ...

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationStream:
        """Stream a completion from the LLM."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    provider_type = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        response = await self._client.messages.create(
            **self._request_kwargs(messages, system, temperature, max_tokens)
        )

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
            provider_type=self.provider_type,
        )

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationStream:
        """Stream a completion using Claude's message stream helper."""
        kwargs = self._request_kwargs(messages, system, temperature, max_tokens)

        async def source() -> AsyncIterator[str | LLMResponse]:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield text
                message = await stream.get_final_message()

            yield LLMResponse(
                content="".join(
                    block.text for block in message.content if block.type == "text"
                ),
                model=message.model,
                input_tokens=message.usage.input_tokens,
                output_tokens=message.usage.output_tokens,
                provider_type=self.provider_type,
            )

        return GenerationStream(source())


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenAI, Gemini, DeepSeek, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://generativelanguage.googleapis.com/v1beta/openai/
        LLM_API_KEY=your-key
        LLM_MODEL=gemini-1.5-flash
    """

    provider_type = "openai_compatible"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        return {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        response = await self._client.chat.completions.create(
            **self._request_kwargs(messages, system, temperature, max_tokens)
        )

        content = response.choices[0].message.content or ""

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            provider_type=self.provider_type,
        )

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationStream:
        """Stream a completion; usage arrives on the final chunk."""
        kwargs = self._request_kwargs(messages, system, temperature, max_tokens)

        async def source() -> AsyncIterator[str | LLMResponse]:
            response = await self._client.chat.completions.create(
                **kwargs,
                stream=True,
                stream_options={"include_usage": True},
            )
            parts: list[str] = []
            model = self._model
            input_tokens = output_tokens = 0

            async for chunk in response:
                model = chunk.model or model
                if chunk.usage:
                    input_tokens = chunk.usage.prompt_tokens
                    output_tokens = chunk.usage.completion_tokens
                if chunk.choices and chunk.choices[0].delta.content:
                    text = chunk.choices[0].delta.content
                    parts.append(text)
                    yield text

            yield LLMResponse(
                content="".join(parts),
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                provider_type=self.provider_type,
            )

        return GenerationStream(source())


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton — avoid re-creating the SDK client on every agent run
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


# ---------------------------------------------------------------------------
# Non-Singleton Factory
# ---------------------------------------------------------------------------
# Builds a fresh provider for an agent whose descriptor pins a model on a
# different backend than the process default.
# ---------------------------------------------------------------------------


_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def _parse_provider_id(
    provider_id: str,
) -> tuple[str, str, str | None]:
    """
    Parse a provider_id string into (provider_type, model, base_url).

    Formats supported:
        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/gpt-4o-mini"
            → ("openai_compatible", "gpt-4o-mini", None)
        "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
            → ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")

    Raises:
        ValueError: If the format is unrecognisable or provider type unknown.
    """
    if "/" not in provider_id:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected format: 'provider_type/model' or "
            "'provider_type/model@base_url'"
        )

    provider_type, rest = provider_id.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )

    return provider_type, model, base_url


def create_provider_from_id(
    provider_id: str,
    api_key: str | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Create a fresh, non-singleton LLM provider from a provider ID string.

    Raises:
        ValueError: If provider_id is invalid or API key is missing.
    """
    provider_type, model, base_url = _parse_provider_id(provider_id)

    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model)

    return OpenAICompatibleProvider(
        api_key=api_key, model=model, base_url=base_url,
    )
