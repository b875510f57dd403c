# src/llm/base_client.py — v2
"""Abstract LLM client interface.

Implementations perform exactly one provider request per ``complete`` call
and never retry: retries, backoff and accounting live in the gateway.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from galley.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all LLM providers."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Single text completion.

        Raises:
            ProviderError: Classified provider or transport failure.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (e.g. anthropic)."""
