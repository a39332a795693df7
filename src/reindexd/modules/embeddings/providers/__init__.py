"""Embedding provider contract, size-rejection sniffing and the registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import import_module
import re
from types import MappingProxyType
from typing import Callable, Mapping, Protocol, Sequence, runtime_checkable

from reindexd.core.logging import Logger

__all__ = [
    "BUILTIN_PROVIDERS",
    "EmbeddingMatrix",
    "EmbeddingProviderModel",
    "EmbeddingVector",
    "EmbeddingsProvider",
    "ProviderFactory",
    "ProviderInitContext",
    "ProviderNotRegisteredError",
    "ProviderRegistry",
    "ProviderRegistryError",
    "create_default_provider_registry",
    "looks_like_size_rejection",
]

EmbeddingVector = tuple[float, ...]
EmbeddingMatrix = tuple[EmbeddingVector, ...]

_SIZE_SIGNATURES = re.compile(
    "|".join(
        (
            r"payload too large",
            r"request entity too large",
            r"must have less than \d+ tokens",
            r"maximum context length",
            r"input (?:is )?too long",
        )
    ),
    re.IGNORECASE,
)


def looks_like_size_rejection(
    status_code: int | None,
    message: str | None,
) -> bool:
    """Return ``True`` when a provider failure means "input too large".

    Anything unrecognized counts as an ordinary failure.

    Example:
        >>> looks_like_size_rejection(413, None)
        True
        >>> looks_like_size_rejection(
        ...     422, "Input validation error: `inputs` must have less than 512 tokens"
        ... )
        True
        >>> looks_like_size_rejection(500, "upstream connect error")
        False
    """

    if status_code == 413:
        return True
    return bool(message) and _SIZE_SIGNATURES.search(message) is not None


@dataclass(frozen=True, slots=True)
class EmbeddingProviderModel:
    """A provider's model and, when known, its vector dimension."""

    provider: str
    name: str
    dim: int | None = None

    def __post_init__(self) -> None:
        provider = self.provider.strip().lower()
        name = self.name.strip()
        if not provider or not name:
            raise ValueError("provider and model name must be non-blank")
        if self.dim is not None and self.dim < 1:
            raise ValueError("dim must be >= 1 when provided")
        object.__setattr__(self, "provider", provider)
        object.__setattr__(self, "name", name)

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.name}"


@runtime_checkable
class EmbeddingsProvider(Protocol):
    """What the embedder and build service need from a provider.

    Implementations raise
    :class:`~reindexd.modules.embeddings.errors.EmbeddingProviderError`
    subclasses only, and
    :class:`~reindexd.modules.embeddings.errors.EmbeddingSizeRejectedError`
    only when :func:`looks_like_size_rejection` recognizes the failure.
    """

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        """Return ``model`` with its vector dimension filled in."""

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
    ) -> EmbeddingMatrix:
        """Embed ``texts`` in a single request, one vector per text in order."""


@dataclass(frozen=True, slots=True)
class ProviderInitContext:
    """Arguments handed to a provider factory."""

    logger: Logger
    config: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))


ProviderFactory = Callable[[ProviderInitContext], EmbeddingsProvider]


class ProviderRegistryError(RuntimeError):
    """Raised for invalid registrations."""


class ProviderNotRegisteredError(ProviderRegistryError):
    """Raised when no factory exists for a provider key."""


def _normalize_key(key: str) -> str:
    normalized = key.strip().lower()
    if not normalized:
        raise ValueError("provider key cannot be blank")
    return normalized


class ProviderRegistry:
    """Provider factories keyed by the name used in ``embeddings.provider``."""

    def __init__(
        self,
        factories: Mapping[str, ProviderFactory] | None = None,
    ) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        for key, factory in (factories or {}).items():
            self.register(key, factory)

    def register(
        self,
        key: str,
        factory: ProviderFactory,
        *,
        replace: bool = False,
    ) -> None:
        normalized = _normalize_key(key)
        if normalized in self._factories and not replace:
            raise ProviderRegistryError(
                f"Provider {normalized!r} is already registered."
            )
        self._factories[normalized] = factory

    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.strip().lower() in self._factories

    def create(
        self,
        key: str,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
    ) -> EmbeddingsProvider:
        """Build a provider instance for ``key``.

        Raises:
            ProviderNotRegisteredError: If ``key`` has no factory.
        """

        normalized = _normalize_key(key)
        factory = self._factories.get(normalized)
        if factory is None:
            known = ", ".join(self.keys()) or "none"
            raise ProviderNotRegisteredError(
                f"No embedding provider {normalized!r} (registered: {known})."
            )
        return factory(ProviderInitContext(logger=logger, config=config or {}))


# Built-in factories are imported on first use so the OpenAI SDK is only
# loaded by workspaces that select it.
BUILTIN_PROVIDERS: Mapping[str, str] = MappingProxyType(
    {
        "tei": "reindexd.modules.embeddings.providers.tei:tei_provider_factory",
        "openai": (
            "reindexd.modules.embeddings.providers.openai:openai_provider_factory"
        ),
    }
)


def _deferred_factory(target: str) -> ProviderFactory:
    module_name, _, attribute = target.partition(":")

    def factory(context: ProviderInitContext) -> EmbeddingsProvider:
        real = getattr(import_module(module_name), attribute)
        return real(context)

    return factory


def create_default_provider_registry() -> ProviderRegistry:
    """Return a registry holding the ``tei`` and ``openai`` providers."""

    return ProviderRegistry(
        {key: _deferred_factory(target) for key, target in BUILTIN_PROVIDERS.items()}
    )
