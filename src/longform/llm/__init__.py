"""LLM tooling for the longform coherence pipeline."""

from .mock import MockTextGenerator
from .providers import (
    SUPPORTED_MODELS,
    GenerationTransportError,
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ProviderSettings,
    TextGenerator,
    build_provider,
    resolve_backend,
)

__all__ = [
    "SUPPORTED_MODELS",
    "GenerationTransportError",
    "LangChainChatProvider",
    "MockTextGenerator",
    "ProviderDependencyError",
    "ProviderError",
    "ProviderSettings",
    "TextGenerator",
    "build_provider",
    "resolve_backend",
]
