"""Typed error hierarchy for embedding providers."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "EmbeddingProviderError",
    "EmbeddingConfigurationError",
    "EmbeddingRequestError",
    "EmbeddingResponseError",
    "EmbeddingSizeRejectedError",
]


@dataclass(slots=True)
class EmbeddingProviderError(RuntimeError):
    """Base error raised by embedding providers."""

    message: str
    provider: str
    model: str
    request_id: str | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class EmbeddingConfigurationError(EmbeddingProviderError):
    """Raised when the provider configuration is invalid."""


@dataclass(slots=True)
class EmbeddingRequestError(EmbeddingProviderError):
    """Raised for transport failures and rejected requests."""


@dataclass(slots=True)
class EmbeddingResponseError(EmbeddingProviderError):
    """Raised when the provider answers with an unusable payload."""

    expected: int | None = None
    actual: int | None = None


@dataclass(slots=True)
class EmbeddingSizeRejectedError(EmbeddingProviderError):
    """Raised when the provider refuses an input because it is too large."""

    input_chars: int | None = None
