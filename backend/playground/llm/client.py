"""Provider clients for the gateway: one variant per supported LLM backend."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import anthropic
import openai

from playground.llm.chat.catalog import get_capabilities
from playground.llm.chat.models import ChatRequest, ChatRole, HeaderEntry, Provider
from playground.llm.chat.request_builder import (
    clamp_max_tokens,
    normalize_headers,
    normalize_output_format,
)

logger = logging.getLogger(__name__)

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
RETRY_MULTIPLIER = 2.0

JSON_SCHEMA_NAME = "response"


def prepare_request(request: ChatRequest) -> ChatRequest:
    """Re-apply token clamping and header/provider normalization.

    The gateway accepts requests from any client, so it does not trust that
    the request builder already ran.
    """
    capabilities = get_capabilities(request.model)
    headers = [
        HeaderEntry(key=key, value=value)
        for key, value in normalize_headers(request.headers).items()
    ]
    return request.model_copy(
        update={
            "max_tokens": clamp_max_tokens(request.model, request.max_tokens),
            "top_k": request.top_k if capabilities.supports_top_k else None,
            "headers": headers,
            "output_format": normalize_output_format(request.model, request.output_format),
        }
    )


class ProviderClient(ABC):
    """A provider backend: builds its own parameters and decodes its own stream."""

    provider: ClassVar[Provider]

    def __init__(self, api_key: str, headers: dict[str, str] | None = None):
        """Initialize the client.

        Args:
            api_key: Provider API key supplied by the caller.
            headers: Extra headers sent with every provider request.
        """
        if not api_key:
            raise ValueError(f"{self.provider.value} API key required")
        self.api_key = api_key
        self.headers = headers or {}

    @abstractmethod
    def build_params(self, request: ChatRequest) -> dict[str, Any]:
        """Provider SDK keyword arguments for a request."""

    @abstractmethod
    def stream_text(self, request: ChatRequest) -> AsyncIterator[str]:
        """Yield generated text fragments in order."""

    @abstractmethod
    async def _create(self, params: dict[str, Any]) -> str:
        """One non-streaming call returning the full text."""

    @abstractmethod
    def _is_retryable(self, error: Exception) -> bool:
        """Whether an SDK error is worth retrying."""

    async def generate_text(self, request: ChatRequest) -> str:
        """Generate the full response text.

        Retries with exponential backoff on rate limits and server errors.

        Raises:
            Exception: The provider SDK error if all retries fail or the
                error is not retryable.
        """
        params = self.build_params(request)
        last_error: Exception | None = None
        delay = RETRY_DELAY

        for attempt in range(MAX_RETRIES):
            try:
                return await self._create(params)
            except Exception as e:
                if not self._is_retryable(e):
                    raise
                last_error = e
                logger.warning(
                    f"{self.provider.value} error (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
                delay *= RETRY_MULTIPLIER

        raise last_error or RuntimeError("Unexpected retry failure")


class OpenAIClient(ProviderClient):
    """OpenAI chat completions. No top_k; honours output_format."""

    provider = Provider.OPENAI

    def __init__(self, api_key: str, headers: dict[str, str] | None = None):
        super().__init__(api_key, headers)
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            default_headers=self.headers or None,
        )

    def build_params(self, request: ChatRequest) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)

        kwargs: dict[str, Any] = {
            "model": request.model.id,
            "messages": messages,
            "max_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p

        output_format = request.output_format
        if output_format and output_format.type == "json_object":
            kwargs["response_format"] = {"type": "json_object"}
        elif output_format and output_format.type == "json_schema":
            try:
                schema = json.loads(output_format.json_schema or "")
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON schema: {e}") from e
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": JSON_SCHEMA_NAME, "schema": schema},
            }
        return kwargs

    async def stream_text(self, request: ChatRequest) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            **self.build_params(request), stream=True
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content

    async def _create(self, params: dict[str, Any]) -> str:
        response = await self._client.chat.completions.create(**params)
        return response.choices[0].message.content or ""

    def _is_retryable(self, error: Exception) -> bool:
        if isinstance(error, openai.RateLimitError):
            return True
        return isinstance(error, openai.APIStatusError) and error.status_code >= 500


class AnthropicClient(ProviderClient):
    """Anthropic messages API. Supports top_k; system text goes in `system`."""

    provider = Provider.ANTHROPIC

    def __init__(self, api_key: str, headers: dict[str, str] | None = None):
        super().__init__(api_key, headers)
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            default_headers=self.headers or None,
        )

    def build_params(self, request: ChatRequest) -> dict[str, Any]:
        # The messages API has no system role; fold those turns into `system`
        system_parts = [request.system_prompt] if request.system_prompt else []
        messages: list[dict[str, str]] = []
        for message in request.messages:
            if message.role == ChatRole.SYSTEM:
                system_parts.append(message.content)
            else:
                messages.append({"role": message.role, "content": message.content})

        kwargs: dict[str, Any] = {
            "model": request.model.id,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.top_k is not None:
            kwargs["top_k"] = request.top_k
        return kwargs

    async def stream_text(self, request: ChatRequest) -> AsyncIterator[str]:
        async with self._client.messages.stream(**self.build_params(request)) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

    async def _create(self, params: dict[str, Any]) -> str:
        response = await self._client.messages.create(**params)
        return "".join(
            block.text for block in response.content if block.type == "text"
        )

    def _is_retryable(self, error: Exception) -> bool:
        if isinstance(error, anthropic.RateLimitError):
            return True
        return isinstance(error, anthropic.APIStatusError) and error.status_code >= 500


_CLIENTS: dict[Provider, type[ProviderClient]] = {
    Provider.OPENAI: OpenAIClient,
    Provider.ANTHROPIC: AnthropicClient,
}


def get_provider_client(
    provider: Provider | str,
    api_key: str,
    headers: dict[str, str] | None = None,
) -> ProviderClient:
    """Instantiate the client variant for a provider.

    Raises:
        ValueError: If the provider is not supported or the key is empty.
    """
    try:
        client_cls = _CLIENTS[Provider(provider)]
    except ValueError as e:
        raise ValueError(f"Unsupported provider: {provider}") from e
    return client_cls(api_key=api_key, headers=headers)
