"""OpenAI embeddings provider."""

from __future__ import annotations

from collections import Counter
import os
import time
from typing import Any, Callable, Mapping, Sequence

import httpx
from openai import APIConnectionError, APIStatusError, OpenAI

from reindexd.core.logging import Logger
from reindexd.modules.embeddings.errors import (
    EmbeddingConfigurationError,
    EmbeddingProviderError,
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
    "OpenAIEmbeddingsProvider",
    "openai_provider_factory",
]

_PROVIDER = "openai"
_PROBE_TEXT = "dimension probe"

_KNOWN_DIMENSIONS: Mapping[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def _timeout(config: Mapping[str, object]) -> float:
    raw = config.get("timeout", 30.0)
    if not isinstance(raw, (int, float)) or raw <= 0:
        raise EmbeddingConfigurationError(
            "embeddings.providers.openai.timeout must be a positive number.",
            provider=_PROVIDER,
            model="*",
        )
    return float(raw)


def _translate(
    exc: Exception,
    *,
    model: str,
    input_chars: int,
) -> EmbeddingProviderError:
    """Map an SDK or transport exception onto the embedding error family."""

    message = str(exc) or type(exc).__name__
    if isinstance(exc, APIStatusError):
        status = exc.status_code
        request_id = exc.request_id
        if looks_like_size_rejection(status, message):
            return EmbeddingSizeRejectedError(
                message,
                provider=_PROVIDER,
                model=model,
                status_code=status,
                request_id=request_id,
                input_chars=input_chars,
            )
        return EmbeddingRequestError(
            message,
            provider=_PROVIDER,
            model=model,
            status_code=status,
            request_id=request_id,
        )
    if isinstance(exc, (APIConnectionError, httpx.HTTPError)):
        message = f"OpenAI transport failure: {message}"
    return EmbeddingRequestError(message, provider=_PROVIDER, model=model)


class OpenAIEmbeddingsProvider(EmbeddingsProvider):
    """Embed texts with the OpenAI embeddings endpoint.

    The SDK's built-in retries are turned off (``max_retries=0``): a failed
    request fails the tick, and the ledger records the provider's message.
    """

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
        client: Any = None,
        now: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = logger
        self._config = dict(config or {})
        self._now = now
        self._probed: dict[str, int] = {}
        self._counts: Counter[str] = Counter()
        self._client = client if client is not None else self._connect()

    @property
    def stats(self) -> Mapping[str, int]:
        return {
            "requests": self._counts["requests"],
            "failures": self._counts["failures"],
        }

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        name = model.strip()
        dim = _KNOWN_DIMENSIONS.get(name) or self._probed.get(name)
        if dim is None:
            (vector,) = self._request(name, (_PROBE_TEXT,))
            dim = self._probed[name] = len(vector)
        return EmbeddingProviderModel(provider=_PROVIDER, name=name, dim=dim)

    def close(self) -> None:
        self._client.close()

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
    ) -> EmbeddingMatrix:
        if not texts:
            return ()
        vectors = self._request(model.strip(), tuple(texts))
        if len(vectors) != len(texts):
            raise EmbeddingResponseError(
                f"OpenAI returned {len(vectors)} embeddings for {len(texts)} inputs.",
                provider=_PROVIDER,
                model=model,
                expected=len(texts),
                actual=len(vectors),
            )
        return vectors

    def _connect(self) -> OpenAI:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise EmbeddingConfigurationError(
                "OPENAI_API_KEY must be set to use the OpenAI provider.",
                provider=_PROVIDER,
                model="*",
            )
        return OpenAI(
            api_key=api_key,
            base_url=os.environ.get("OPENAI_BASE_URL") or None,
            organization=os.environ.get("OPENAI_ORG_ID") or None,
            timeout=_timeout(self._config),
            max_retries=0,
        )

    def _request(self, model: str, batch: tuple[str, ...]) -> EmbeddingMatrix:
        started = self._now()
        try:
            response = self._client.embeddings.create(model=model, input=list(batch))
        except Exception as exc:
            self._counts["failures"] += 1
            raise _translate(
                exc,
                model=model,
                input_chars=max(len(text) for text in batch),
            ) from exc

        self._counts["requests"] += 1
        self.logger.debug(
            "openai-embed-request",
            model=model,
            batch_size=len(batch),
            latency=self._now() - started,
        )
        return tuple(
            tuple(float(value) for value in item.embedding) for item in response.data
        )


def openai_provider_factory(
    context: ProviderInitContext,
) -> OpenAIEmbeddingsProvider:
    return OpenAIEmbeddingsProvider(logger=context.logger, config=context.config)
