"""Embedding providers.

Anything with a ``model`` attribute and an async ``embed(text)`` method can be
plugged into the memory engine.  Failures that are worth retrying later
(network errors, timeouts, rate limits, 5xx) surface as
``TransientUpstreamFailure`` so recall can degrade instead of failing the run.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from threadmem.config import settings
from threadmem.errors import InvalidArgument, TransientUpstreamFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a vector. Deterministic for a fixed ``model``."""

    model: str

    async def embed(self, text: str) -> list[float]: ...


class FunctionEmbedder:
    """Adapts a plain ``embed(text) -> vector`` callable (sync or async).

    Sync callables run in a worker thread so they don't block the loop.
    Exceptions other than the memory engine's own are reported as
    ``TransientUpstreamFailure``.
    """

    def __init__(
        self,
        fn: Callable[[str], Sequence[float] | Awaitable[Sequence[float]]],
        model: str,
    ) -> None:
        self._fn = fn
        self.model = model

    async def embed(self, text: str) -> list[float]:
        try:
            if inspect.iscoroutinefunction(self._fn):
                vector = await self._fn(text)
            else:
                vector = await asyncio.to_thread(self._fn, text)
        except (InvalidArgument, TransientUpstreamFailure):
            raise
        except Exception as exc:
            msg = f"embedder {self.model!r} failed: {exc}"
            raise TransientUpstreamFailure(msg) from exc
        return [float(x) for x in vector]


class HttpEmbedder:
    """Client for an OpenAI-compatible ``POST {base_url}/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.embedding_api_key
        self._base_url = (base_url or settings.embedding_api_url).rstrip("/")
        self.model = model or settings.embedding_model
        self._timeout = timeout if timeout is not None else settings.embedding_timeout_s
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            msg = "cannot embed empty text"
            raise InvalidArgument(msg)

        headers = {"Authorization": f"Bearer {self._api_key}"}
        body = {"model": self.model, "input": text}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(f"{self._base_url}/embeddings", headers=headers, json=body)
        except httpx.TimeoutException as exc:
            msg = f"Embedding request timed out after {self._timeout}s"
            raise TransientUpstreamFailure(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Embedding request failed: {exc}"
            raise TransientUpstreamFailure(msg) from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            msg = f"Embedding API returned {resp.status_code}: {resp.text[:200]}"
            raise TransientUpstreamFailure(msg)
        if resp.status_code != 200:
            msg = f"Embedding API rejected the request ({resp.status_code}): {resp.text[:200]}"
            raise InvalidArgument(msg)

        try:
            return [float(x) for x in resp.json()["data"][0]["embedding"]]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            msg = "Embedding API response has no data[0].embedding"
            raise TransientUpstreamFailure(msg) from exc
