"""Tests du client d'embeddings (validation, enveloppes, cache, configuration)."""

from __future__ import annotations

import json

import httpx
import pytest

from proposalhub.domain.errors import (
    InvalidInputError,
    PermanentServiceError,
    UnconfiguredError,
    UnparsableResponseError,
)
from proposalhub.infra.embeddings.cache import EmbeddingCache
from proposalhub.infra.embeddings.proxy_embedder import (
    ProxyEmbedder,
    normalize_embedding_response,
)
from proposalhub.infra.http_clients import ResilientExecutor, RetryPolicy

BASE = "https://proxy.test"


def _embedder(handler, *, base_url: str = BASE, cache: EmbeddingCache | None = None, **kw):
    executor = ResilientExecutor(
        "ai_proxy",
        policy=RetryPolicy(max_attempts=1, timeout_s=1.0, retry_delay_s=0.0),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _s: None,
    )
    return ProxyEmbedder(base_url, executor, model="embed-small", cache=cache, **kw)


def _ok(vector):
    def handler(request: httpx.Request) -> httpx.Response:
        handler.calls.append(request)
        return httpx.Response(200, json={"data": [{"embedding": vector}]})

    handler.calls = []
    return handler


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"embedding": [0.1, 0.2]}]},
        {"embeddings": [{"embedding": [0.1, 0.2]}]},
        {"embedding": [0.1, 0.2]},
    ],
)
def test_normalize_accepts_known_envelopes(payload):
    assert normalize_embedding_response(payload) == [0.1, 0.2]


@pytest.mark.parametrize(
    "payload",
    [
        {"vectors": [[0.1]]},
        {"data": [{"embedding": []}]},
        {"embedding": ["a", "b"]},
        {"embedding": [True, 1.0]},
        ["not", "an", "object"],
    ],
)
def test_normalize_rejects_malformed(payload):
    with pytest.raises(UnparsableResponseError):
        normalize_embedding_response(payload)


def test_embed_posts_expected_body():
    handler = _ok([1.0, 2.0, 3.0])
    vec = _embedder(handler).embed("  hello world ")

    assert vec == [1.0, 2.0, 3.0]
    (request,) = handler.calls
    assert request.url.path == "/v1/embeddings"
    assert json.loads(request.content) == {
        "input": "hello world",
        "model": "embed-small",
        "encoding_format": "float",
    }


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_text_rejected_before_any_call(text):
    handler = _ok([1.0])
    with pytest.raises(InvalidInputError):
        _embedder(handler).embed(text)
    assert handler.calls == []


def test_unconfigured_fails_fast_without_call():
    handler = _ok([1.0])
    embedder = _embedder(handler, base_url="")
    assert embedder.configured is False
    with pytest.raises(UnconfiguredError):
        embedder.embed("hello")
    assert handler.calls == []


def test_client_error_is_permanent():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(PermanentServiceError) as exc_info:
        _embedder(handler).embed("hello")
    assert exc_info.value.status_code == 401


def test_unparsable_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "??"})

    with pytest.raises(UnparsableResponseError):
        _embedder(handler).embed("hello")


def test_dimension_mismatch_is_only_a_warning():
    handler = _ok([1.0, 2.0])
    vec = _embedder(handler, expected_dimension=1536).embed("hello")
    assert len(vec) == 2


def test_cache_hit_bypasses_network():
    handler = _ok([0.5, 0.5])
    embedder = _embedder(handler, cache=EmbeddingCache(10))

    first = embedder.embed("same text")
    second = embedder.embed("same text")
    embedder.embed("same text", model="embed-large")

    assert first == second
    assert len(handler.calls) == 2


def test_cache_hit_works_even_when_unconfigured():
    cache = EmbeddingCache(10)
    cache.put("embed-small", "cached", [9.0])
    handler = _ok([1.0])
    assert _embedder(handler, base_url="", cache=cache).embed("cached") == [9.0]
    assert handler.calls == []


def test_cache_evicts_oldest_first():
    cache = EmbeddingCache(2)
    cache.put("m", "a", [1.0])
    cache.put("m", "b", [2.0])
    cache.put("m", "c", [3.0])

    assert len(cache) == 2
    assert ("m", "a") not in cache
    assert cache.get("m", "b") == [2.0]
    assert cache.get("m", "c") == [3.0]


def test_cache_returns_copies():
    cache = EmbeddingCache(2)
    cache.put("m", "a", [1.0])
    got = cache.get("m", "a")
    got.append(99.0)
    assert cache.get("m", "a") == [1.0]


def test_embed_batch_is_sequential():
    handler = _ok([1.0])
    vectors = _embedder(handler).embed_batch(["one", "two", "three"])
    assert vectors == [[1.0], [1.0], [1.0]]
    assert [json.loads(r.content)["input"] for r in handler.calls] == ["one", "two", "three"]


def test_list_models_never_raises():
    unconfigured = _embedder(_ok([1.0]), base_url="").list_models(chat_model="chat-x")
    assert unconfigured["embedding"] == ["embed-small"]
    assert unconfigured["chat"] == ["chat-x"]
    assert "note" in unconfigured

    def down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    failed = _embedder(down).list_models()
    assert failed["embedding"] == ["embed-small"]
    assert "error" in failed

    def listing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"id": "embed-small"}]})

    assert _embedder(listing).list_models() == {"data": [{"id": "embed-small"}]}
