"""Routes a model name to the provider that serves it.

One provider instance per backend, created on first use and kept for the
rest of the process. A constructor that fails (missing credential) is not
cached, so the next lookup tries again.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .base import ConfigurationError, ImageProvider
from .config import MODEL_TO_PROVIDER, PROVIDER_NAMES

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], ImageProvider]


def _replicate() -> ImageProvider:
    from .replicate_flux import ReplicateProvider

    return ReplicateProvider()


def _openai() -> ImageProvider:
    from .openai_image import OpenAIProvider

    return OpenAIProvider()


def _google() -> ImageProvider:
    from .google_gemini import GoogleProvider

    return GoogleProvider()


DEFAULT_FACTORIES: Dict[str, ProviderFactory] = {
    "replicate": _replicate,
    "openai": _openai,
    "google": _google,
}


class ProviderRegistry:
    def __init__(self, factories: Optional[Dict[str, ProviderFactory]] = None):
        self.factories = dict(DEFAULT_FACTORIES)
        if factories:
            self.factories.update(factories)
        self._instances: Dict[str, ImageProvider] = {}

    def get_provider(self, provider_name: str) -> ImageProvider:
        provider = self._instances.get(provider_name)
        if provider is not None:
            return provider

        factory = self.factories.get(provider_name)
        if factory is None:
            raise ConfigurationError(
                f"Unknown provider: {provider_name}. Available providers: {', '.join(PROVIDER_NAMES)}"
            )

        logger.debug(f"Creating {provider_name} provider")
        provider = factory()
        self._instances[provider_name] = provider
        return provider

    def get_provider_for_model(self, model: str) -> ImageProvider:
        provider_name = MODEL_TO_PROVIDER.get(model)
        if provider_name is None:
            raise ConfigurationError(
                f"Unknown model: {model}. Available models: {', '.join(MODEL_TO_PROVIDER)}"
            )
        return self.get_provider(provider_name)

    def list_models(self) -> List[Tuple[str, str]]:
        return list(MODEL_TO_PROVIDER.items())

    def cached(self) -> Dict[str, ImageProvider]:
        return dict(self._instances)


_default_registry = ProviderRegistry()


def default_registry() -> ProviderRegistry:
    return _default_registry


def get_provider_for_model(model: str) -> ImageProvider:
    return _default_registry.get_provider_for_model(model)


def list_models() -> List[Tuple[str, str]]:
    return _default_registry.list_models()
