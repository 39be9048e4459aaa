"""Shared pytest fixtures.

The backend is scripted with httpx.MockTransport: every route holds a queue
of responses, the last one repeating once the queue is drained.
"""

from __future__ import annotations

import io
from typing import Any, Callable

import httpx
import pytest
from PIL import Image

from fotobudka.gateway import HttpGateway
from fotobudka.generation import GenerationClient

BASE_URL = "https://api.test"
CDN_URL = "https://cdn.test"


def make_jpeg(color: str = "red", size: tuple[int, int] = (32, 32)) -> bytes:
    """Build a small JPEG in memory."""
    out = io.BytesIO()
    Image.new("RGB", size, color=color).save(out, format="JPEG")
    return out.getvalue()


Reply = Any  # dict/list (JSON), bytes, httpx.Response, Exception or callable(request)


class FakeBackend:
    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Reply) -> None:
        self.routes[(method, path)] = list(replies)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def _reply(self, reply: Reply, request: httpx.Request) -> httpx.Response:
        if callable(reply) and not isinstance(reply, type):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, bytes):
            return httpx.Response(200, content=reply)
        return httpx.Response(200, json=reply)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not Found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return self._reply(reply, request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def token() -> dict[str, str | None]:
    """Mutable holder for the bearer token the gateway sees."""
    return {"value": "test-token"}


@pytest.fixture()
def make_gateway(backend: FakeBackend, token) -> Callable[[], HttpGateway]:
    def _make() -> HttpGateway:
        return HttpGateway(
            BASE_URL,
            token_provider=lambda: token["value"],
            transport=backend.transport,
        )
    return _make


@pytest.fixture()
def make_client(make_gateway) -> Callable[..., GenerationClient]:
    def _make(poll_interval: float = 0.0, max_attempts: int | None = None) -> GenerationClient:
        return GenerationClient(make_gateway(), poll_interval=poll_interval, max_attempts=max_attempts)
    return _make
