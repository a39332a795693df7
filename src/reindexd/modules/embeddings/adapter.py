"""Batch embedding with a per-text fallback for oversized inputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from reindexd.core.logging import Logger, get_logger

from .errors import EmbeddingResponseError, EmbeddingSizeRejectedError
from .providers import EmbeddingMatrix, EmbeddingsProvider, EmbeddingVector

__all__ = [
    "DEFAULT_FLOOR_CHARS",
    "DEFAULT_MAX_CHARS",
    "ResilientEmbedder",
    "clamp_text",
]

# 1800 characters stays under a 512-token model limit for typical prose.
DEFAULT_MAX_CHARS = 1800
DEFAULT_FLOOR_CHARS = 600


def clamp_text(text: str, max_chars: int) -> str:
    """Return ``text`` cut to at most ``max_chars`` characters.

    Example:
        >>> clamp_text("abcdef", 4)
        'abcd'
        >>> clamp_text("abc", 4)
        'abc'
    """

    if max_chars < 1:
        raise ValueError("max_chars must be >= 1")
    return text if len(text) <= max_chars else text[:max_chars]


@dataclass(slots=True)
class ResilientEmbedder:
    """Embed batches through a provider, shrinking texts it rejects for size.

    The whole batch is sent in one request first. When the provider refuses
    it with :class:`EmbeddingSizeRejectedError`, every text is embedded on its
    own; a rejected text is clamped to ``max_chars`` and then halved on each
    further rejection, never below ``floor_chars``. A text still rejected at
    the floor raises instead of looping. Any other provider error propagates
    untouched.
    """

    provider: EmbeddingsProvider
    model: str
    max_chars: int = DEFAULT_MAX_CHARS
    floor_chars: int = DEFAULT_FLOOR_CHARS
    logger: Logger | None = None
    _log: Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.floor_chars < 1:
            raise ValueError("floor_chars must be >= 1")
        if self.floor_chars > self.max_chars:
            raise ValueError("floor_chars must not exceed max_chars")
        base = self.logger or get_logger(__name__)
        self._log = base.bind(component="embedder", model=self.model)

    def embed(self, texts: Sequence[str]) -> EmbeddingMatrix:
        """Return one vector per text, in input order."""

        if not texts:
            return ()

        try:
            vectors = self.provider.embed_texts(texts, model=self.model)
        except EmbeddingSizeRejectedError as exc:
            self._log.warning(
                "embed-size-fallback",
                batch_size=len(texts),
                status_code=exc.status_code,
                error=exc.message,
            )
            vectors = tuple(self._embed_single(text) for text in texts)

        if len(vectors) != len(texts):
            raise EmbeddingResponseError(
                (
                    "Embedding provider returned "
                    f"{len(vectors)} vectors for {len(texts)} texts."
                ),
                provider=self._provider_name(),
                model=self.model,
                expected=len(texts),
                actual=len(vectors),
            )
        return tuple(vectors)

    def shrink(self, text: str) -> str | None:
        """Return the next shorter candidate for ``text``, or ``None`` at the floor.

        Example:
            >>> embedder = ResilientEmbedder(provider=None, model="m")
            >>> len(embedder.shrink("x" * 5000))
            1800
            >>> len(embedder.shrink("x" * 1800))
            900
            >>> len(embedder.shrink("x" * 900))
            600
            >>> embedder.shrink("x" * 600) is None
            True
        """

        length = len(text)
        if length <= self.floor_chars:
            return None
        if length > self.max_chars:
            return text[: self.max_chars]
        return text[: max(self.floor_chars, length // 2)]

    def _embed_single(self, text: str) -> EmbeddingVector:
        candidate = text.strip()
        while True:
            try:
                vectors = self.provider.embed_texts(
                    (candidate,),
                    model=self.model,
                )
            except EmbeddingSizeRejectedError as exc:
                shorter = self.shrink(candidate)
                if shorter is None:
                    raise EmbeddingSizeRejectedError(
                        (
                            "Input still rejected for size at "
                            f"{len(candidate)} characters: {exc.message}"
                        ),
                        provider=exc.provider,
                        model=exc.model,
                        status_code=exc.status_code,
                        request_id=exc.request_id,
                        input_chars=len(candidate),
                    ) from exc
                self._log.debug(
                    "embed-size-shrink",
                    from_chars=len(candidate),
                    to_chars=len(shorter),
                )
                candidate = shorter
                continue

            if len(vectors) != 1:
                raise EmbeddingResponseError(
                    f"Expected one vector for a single text, got {len(vectors)}.",
                    provider=self._provider_name(),
                    model=self.model,
                    expected=1,
                    actual=len(vectors),
                )
            return vectors[0]

    def _provider_name(self) -> str:
        return type(self.provider).__name__
