# src/llm/adapters/anthropic_adapter.py — v4
"""Anthropic Claude adapter implementing BaseLLMClient.

Uses the official anthropic SDK with SDK-level retries disabled; every
failure is translated into a ProviderError for the gateway. Supports
buffered and streamed responses.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from galley.llm.base_client import BaseLLMClient
from galley.llm.models import LLMResponse, Message, ProviderError

logger = logging.getLogger(__name__)


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        stream: bool = False,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url or None
        self._stream = stream
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(
                api_key=self._api_key or "",
                base_url=self._base_url,
                max_retries=0,
            )
        return self.__client

    async def complete(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Text completion via the Anthropic Messages API."""
        import anthropic

        kwargs = self._build_kwargs(model, messages, max_tokens, temperature)
        start = time.monotonic()
        try:
            if self._stream:
                content, response = await self._complete_streaming(kwargs)
            else:
                response = await self._client.messages.create(**kwargs)
                content = self._extract_content(response)
        except anthropic.RateLimitError as e:
            raise ProviderError(
                "rate_limited",
                str(e),
                status_code=e.status_code,
                retry_after=_retry_after(e.response),
            ) from e
        except anthropic.APIStatusError as e:
            kind = "server_error" if e.status_code >= 500 else "client_error"
            raise ProviderError(kind, str(e), status_code=e.status_code) from e
        except anthropic.APIConnectionError as e:
            # Includes APITimeoutError
            raise ProviderError("transport", str(e)) from e
        latency_ms = int((time.monotonic() - start) * 1000)

        if not content:
            raise ProviderError(
                "parse_unavailable",
                "Response contained no text",
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="anthropic",
            latency_ms=latency_ms,
            raw_response=response,
        )

    async def _complete_streaming(self, kwargs: dict[str, Any]) -> tuple[str, Any]:
        parts: list[str] = []
        async with self._client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                parts.append(text)
            response = await stream.get_final_message()
        return "".join(parts), response

    @property
    def provider_name(self) -> str:
        return "anthropic"

    # --- Internal helpers ---

    @staticmethod
    def _build_kwargs(
        model: str,
        messages: list[Message],
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system:
            kwargs["system"] = system
        return kwargs

    @staticmethod
    def _extract_content(response: Any) -> str:
        """Concatenate text blocks from Anthropic response content."""
        return "".join(
            block.text
            for block in response.content
            if getattr(block, "type", None) == "text"
        )


def _retry_after(response: Any) -> float | None:
    """Read the server-advertised retry delay, in seconds, if any."""
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
