"""Embedding providers and the size-resilient batch embedder."""

from __future__ import annotations

from .adapter import (
    DEFAULT_FLOOR_CHARS,
    DEFAULT_MAX_CHARS,
    ResilientEmbedder,
    clamp_text,
)
from .errors import (
    EmbeddingConfigurationError,
    EmbeddingProviderError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingSizeRejectedError,
)
from .providers import (
    EmbeddingMatrix,
    EmbeddingProviderModel,
    EmbeddingsProvider,
    EmbeddingVector,
    ProviderInitContext,
    ProviderNotRegisteredError,
    ProviderRegistry,
    create_default_provider_registry,
    looks_like_size_rejection,
)

__all__ = [
    "DEFAULT_FLOOR_CHARS",
    "DEFAULT_MAX_CHARS",
    "EmbeddingConfigurationError",
    "EmbeddingMatrix",
    "EmbeddingProviderError",
    "EmbeddingProviderModel",
    "EmbeddingRequestError",
    "EmbeddingResponseError",
    "EmbeddingSizeRejectedError",
    "EmbeddingVector",
    "EmbeddingsProvider",
    "ProviderInitContext",
    "ProviderNotRegisteredError",
    "ProviderRegistry",
    "ResilientEmbedder",
    "clamp_text",
    "create_default_provider_registry",
    "looks_like_size_rejection",
]
