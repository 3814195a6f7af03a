"""Tests for the embedding providers."""

import json

import httpx
import pytest

from threadmem.embeddings import Embedder, FunctionEmbedder, HttpEmbedder
from threadmem.errors import InvalidArgument, TransientUpstreamFailure


def _embedder(handler) -> HttpEmbedder:
    return HttpEmbedder(
        api_key="sk-test",
        base_url="https://embed.test/v1/",
        model="test-embed",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


# -- HttpEmbedder ----------------------------------------------------------------


async def test_http_embedder_posts_model_and_input() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    vector = await _embedder(handler).embed("hello")

    assert vector == [0.1, 0.2, 0.3]
    [request] = seen
    assert str(request.url) == "https://embed.test/v1/embeddings"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert json.loads(request.content) == {"model": "test-embed", "input": "hello"}


@pytest.mark.parametrize("status", [429, 500, 503])
async def test_http_embedder_retryable_statuses(status: int) -> None:
    embedder = _embedder(lambda request: httpx.Response(status, text="busy"))
    with pytest.raises(TransientUpstreamFailure, match=str(status)):
        await embedder.embed("hello")


async def test_http_embedder_client_error_is_not_transient() -> None:
    embedder = _embedder(lambda request: httpx.Response(400, text="bad model"))
    with pytest.raises(InvalidArgument, match="400"):
        await embedder.embed("hello")


async def test_http_embedder_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientUpstreamFailure, match="timed out"):
        await _embedder(handler).embed("hello")


async def test_http_embedder_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientUpstreamFailure):
        await _embedder(handler).embed("hello")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_http_embedder_malformed_payload(response: httpx.Response) -> None:
    embedder = _embedder(lambda request: response)
    with pytest.raises(TransientUpstreamFailure):
        await embedder.embed("hello")


async def test_http_embedder_rejects_empty_text() -> None:
    embedder = _embedder(lambda request: pytest.fail("no request expected"))
    with pytest.raises(InvalidArgument):
        await embedder.embed("   ")


def test_http_embedder_is_an_embedder() -> None:
    assert isinstance(_embedder(lambda request: httpx.Response(200)), Embedder)


# -- FunctionEmbedder ------------------------------------------------------------


async def test_function_embedder_sync() -> None:
    embedder = FunctionEmbedder(lambda text: [len(text), 1], model="len")
    assert await embedder.embed("abc") == [3.0, 1.0]
    assert embedder.model == "len"


async def test_function_embedder_async() -> None:
    async def embed(text: str) -> list[float]:
        return [1.0, 0.0]

    assert await FunctionEmbedder(embed, model="fixed").embed("x") == [1.0, 0.0]


async def test_function_embedder_wraps_errors() -> None:
    def broken(text: str) -> list[float]:
        msg = "model not loaded"
        raise RuntimeError(msg)

    with pytest.raises(TransientUpstreamFailure, match="model not loaded"):
        await FunctionEmbedder(broken, model="broken").embed("x")
