"""Tests for :mod:`reindexd.modules.embeddings.providers.tei`."""

from __future__ import annotations

import json

import httpx
import pytest

from reindexd.modules.embeddings import (
    EmbeddingConfigurationError,
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingSizeRejectedError,
)
from reindexd.modules.embeddings.providers.tei import TEIEmbeddingsProvider


def _provider(handler, stub_logger, **config) -> TEIEmbeddingsProvider:
    client = httpx.Client(
        transport=httpx.MockTransport(handler),
        base_url="http://tei.test",
    )
    return TEIEmbeddingsProvider(logger=stub_logger, config=config, client=client)


def test_embed_texts_posts_inputs_and_returns_vectors(stub_logger) -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        inputs = json.loads(request.content)["inputs"]
        return httpx.Response(200, json=[[float(len(text)), 0.5] for text in inputs])

    provider = _provider(handler, stub_logger)

    vectors = provider.embed_texts(["a", "bbb"], model="bge")

    assert vectors == ((1.0, 0.5), (3.0, 0.5))
    assert requests[0].url.path == "/embed"
    assert json.loads(requests[0].content) == {"inputs": ["a", "bbb"]}
    assert provider.stats == {"requests": 1, "failures": 0}
    assert "tei-embed-request" in stub_logger.messages("debug")


def test_payload_too_large_is_a_size_rejection(stub_logger) -> None:
    provider = _provider(
        lambda request: httpx.Response(413, text="Payload Too Large"),
        stub_logger,
    )

    with pytest.raises(EmbeddingSizeRejectedError) as excinfo:
        provider.embed_texts(["x" * 50, "y"], model="bge")

    assert excinfo.value.status_code == 413
    assert excinfo.value.input_chars == 50


def test_token_limit_validation_error_is_a_size_rejection(stub_logger) -> None:
    body = {
        "error": "Input validation error: `inputs` must have less than 512 "
        "tokens. Given: 731",
        "error_type": "Validation",
    }
    provider = _provider(
        lambda request: httpx.Response(422, json=body),
        stub_logger,
    )

    with pytest.raises(EmbeddingSizeRejectedError) as excinfo:
        provider.embed_texts(["long"], model="bge")

    assert excinfo.value.status_code == 422
    assert "must have less than 512 tokens" in excinfo.value.message


def test_server_error_is_not_a_size_rejection(stub_logger) -> None:
    provider = _provider(
        lambda request: httpx.Response(500, text="model crashed"),
        stub_logger,
    )

    with pytest.raises(EmbeddingRequestError) as excinfo:
        provider.embed_texts(["a"], model="bge")

    assert not isinstance(excinfo.value, EmbeddingSizeRejectedError)
    assert excinfo.value.status_code == 500
    assert provider.stats["failures"] == 1


def test_transport_failure_is_a_request_error(stub_logger) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    provider = _provider(handler, stub_logger)

    with pytest.raises(EmbeddingRequestError, match="TEI request failed"):
        provider.embed_texts(["a"], model="bge")


@pytest.mark.parametrize(
    "payload",
    [{"embeddings": []}, [[0.1], "nope"], [[0.1]]],
)
def test_unexpected_payload_shape_is_a_response_error(stub_logger, payload) -> None:
    provider = _provider(
        lambda request: httpx.Response(200, json=payload),
        stub_logger,
    )

    with pytest.raises(EmbeddingResponseError):
        provider.embed_texts(["a", "b"], model="bge")


def test_describe_model_prefers_configured_dim(stub_logger) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = _provider(handler, stub_logger, dim=384)

    assert provider.describe_model("bge").dim == 384


def test_describe_model_probes_once(stub_logger) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[[0.0] * 7])

    provider = _provider(handler, stub_logger)

    assert provider.describe_model("bge").dim == 7
    assert provider.describe_model("bge").dim == 7
    assert len(calls) == 1


def test_missing_url_is_a_configuration_error(stub_logger) -> None:
    with pytest.raises(EmbeddingConfigurationError):
        TEIEmbeddingsProvider(logger=stub_logger, config={})
