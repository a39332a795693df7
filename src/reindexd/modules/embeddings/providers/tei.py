"""Text Embeddings Inference (TEI) provider implementation."""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping, Sequence

import httpx

from reindexd.core.logging import Logger
from reindexd.modules.embeddings.errors import (
    EmbeddingConfigurationError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingSizeRejectedError,
)

from . import (
    EmbeddingMatrix,
    EmbeddingProviderModel,
    EmbeddingsProvider,
    ProviderInitContext,
    looks_like_size_rejection,
)

__all__ = [
    "TEIEmbeddingsProvider",
    "tei_provider_factory",
]

_PROVIDER = "tei"
_DEFAULT_TIMEOUT = 30.0
_EMBED_PATH = "/embed"
_DIMENSION_PROBE_TEXT = "__REINDEXD_DIMENSION_PROBE__"
_DETAIL_LIMIT = 500


def _resolve_timeout(config: Mapping[str, object]) -> float:
    candidate = config.get("timeout")
    if candidate is None:
        return _DEFAULT_TIMEOUT
    try:
        parsed = float(candidate)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError("tei.timeout must be a number.") from exc
    if parsed <= 0:
        raise ValueError("tei.timeout must be positive.")
    return parsed


def _response_detail(response: httpx.Response) -> str:
    return response.text[:_DETAIL_LIMIT]


class TEIEmbeddingsProvider(EmbeddingsProvider):
    """Embed texts via a Text Embeddings Inference ``/embed`` endpoint.

    TEI answers ``POST /embed`` with ``{"inputs": [...]}`` by returning one
    vector per input. Inputs over the model's token limit are rejected with
    HTTP 413 or a 422 carrying ``must have less than N tokens``; both are
    surfaced as :class:`EmbeddingSizeRejectedError`.
    """

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
        client: httpx.Client | None = None,
        now: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = logger
        self._config = dict(config or {})
        self._now = now
        self._dim_cache: dict[str, int] = {}
        self._stats = {"requests": 0, "failures": 0}
        self._client = client or self._build_client()

    @property
    def stats(self) -> Mapping[str, int]:
        """Return counters captured during the provider lifetime."""

        return dict(self._stats)

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        name = model.strip()
        configured = self._config.get("dim")
        if isinstance(configured, int) and configured > 0:
            return EmbeddingProviderModel(
                provider=_PROVIDER,
                name=name,
                dim=configured,
            )

        cached = self._dim_cache.get(name)
        if cached is None:
            vectors = self._post(inputs=(_DIMENSION_PROBE_TEXT,), model=name)
            cached = len(vectors[0])
            self._dim_cache[name] = cached
        return EmbeddingProviderModel(provider=_PROVIDER, name=name, dim=cached)

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
    ) -> EmbeddingMatrix:
        if not texts:
            return ()
        return self._post(inputs=tuple(texts), model=model)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _build_client(self) -> httpx.Client:
        url = self._config.get("url")
        if not isinstance(url, str) or not url.strip():
            raise EmbeddingConfigurationError(
                "embeddings.providers.tei.url (or TEI_URL) must be set.",
                provider=_PROVIDER,
                model="*",
            )
        return httpx.Client(
            base_url=url.strip().rstrip("/"),
            timeout=httpx.Timeout(_resolve_timeout(self._config)),
        )

    def _post(self, *, inputs: tuple[str, ...], model: str) -> EmbeddingMatrix:
        start = self._now()
        try:
            response = self._client.post(
                _EMBED_PATH,
                json={"inputs": list(inputs)},
            )
        except httpx.HTTPError as exc:
            self._stats["failures"] += 1
            raise EmbeddingRequestError(
                f"TEI request failed: {exc}",
                provider=_PROVIDER,
                model=model,
            ) from exc

        if response.status_code >= 400:
            self._stats["failures"] += 1
            detail = _response_detail(response)
            message = (
                f"TEI embed failed: {response.status_code} "
                f"{response.reason_phrase} {detail}"
            ).strip()
            if looks_like_size_rejection(response.status_code, detail):
                raise EmbeddingSizeRejectedError(
                    message,
                    provider=_PROVIDER,
                    model=model,
                    status_code=response.status_code,
                    input_chars=max(len(text) for text in inputs),
                )
            raise EmbeddingRequestError(
                message,
                provider=_PROVIDER,
                model=model,
                status_code=response.status_code,
            )

        vectors = self._parse_vectors(response, model=model)
        if len(vectors) != len(inputs):
            raise EmbeddingResponseError(
                (
                    "TEI embed returned unexpected shape "
                    f"(expected {len(inputs)} vectors, got {len(vectors)})"
                ),
                provider=_PROVIDER,
                model=model,
                expected=len(inputs),
                actual=len(vectors),
            )

        self._stats["requests"] += 1
        self.logger.debug(
            "tei-embed-request",
            provider=_PROVIDER,
            model=model,
            batch_size=len(inputs),
            latency=self._now() - start,
        )
        return vectors

    @staticmethod
    def _parse_vectors(response: httpx.Response, *, model: str) -> EmbeddingMatrix:
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise EmbeddingResponseError(
                "Failed to decode TEI response as JSON.",
                provider=_PROVIDER,
                model=model,
            ) from exc

        if not isinstance(payload, list):
            raise EmbeddingResponseError(
                "TEI response did not contain a list of vectors.",
                provider=_PROVIDER,
                model=model,
            )

        vectors = []
        for vector in payload:
            if not isinstance(vector, (list, tuple)):
                raise EmbeddingResponseError(
                    "TEI response vectors must be lists.",
                    provider=_PROVIDER,
                    model=model,
                )
            vectors.append(tuple(float(value) for value in vector))
        return tuple(vectors)


def tei_provider_factory(context: ProviderInitContext) -> TEIEmbeddingsProvider:
    """Factory registered with the provider registry."""

    return TEIEmbeddingsProvider(logger=context.logger, config=context.config)
