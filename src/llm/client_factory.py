# src/llm/client_factory.py — v3
"""Factory: instantiate the LLM client from the configured provider name.

Called once by ``build_context``; the gateway owns the single client.
"""

from __future__ import annotations

import importlib
import logging

from galley.config.settings import Settings
from galley.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

# Registry of provider name → adapter class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "galley.llm.adapters.anthropic_adapter.AnthropicAdapter",
}


class UnsupportedProviderError(ValueError):
    """Raised when a provider is not registered."""


def create_llm_client(
    settings: Settings,
    provider: str | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the correct adapter from provider name.

    Args:
        settings: Application settings (for credentials and streaming mode).
        provider: Provider identifier; defaults to settings.llm_default_provider.
        **kwargs: Additional provider-specific arguments.

    Raises:
        UnsupportedProviderError: If provider is not registered.
    """
    provider = provider or settings.llm_default_provider
    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    adapter_cls = _import_class(_PROVIDER_REGISTRY[provider])

    init_kwargs = dict(kwargs)
    if provider == "anthropic":
        init_kwargs.setdefault("api_key", settings.anthropic_api_key)
        init_kwargs.setdefault("base_url", settings.anthropic_base_url)
        init_kwargs.setdefault("stream", settings.llm_stream)

    logger.debug("Creating LLM client: provider=%s", provider)
    return adapter_cls(**init_kwargs)


def register_provider(name: str, class_path: str) -> None:
    """Register a custom provider adapter implementing BaseLLMClient."""
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered LLM provider: %s → %s", name, class_path)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
