"""Async HTTP gateway for the fotobudka backend.

Thin typed wrapper over httpx: JSON and multipart requests, bearer-token
injection, raw byte downloads, and status-code classification into the
exceptions in :mod:`fotobudka.errors`. The gateway never retries.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from fotobudka.errors import DecodingError, HttpStatusError, NetworkError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0
_CONNECT_TIMEOUT = 10.0

TokenProvider = Callable[[], str | None]


@dataclass
class FilePart:
    """The single binary part of a multipart request."""
    field: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_multipart(
    fields: dict[str, str],
    file: FilePart | None = None,
    boundary: str | None = None,
) -> tuple[bytes, str]:
    """Encode text fields followed by an optional binary part.

    Returns:
        (body, content_type) where content_type carries the boundary.
    """
    boundary = boundary or f"Boundary-{secrets.token_hex(16)}"
    delimiter = f"--{boundary}\r\n".encode()
    chunks: list[bytes] = []

    for name, value in fields.items():
        chunks.append(delimiter)
        chunks.append(f'Content-Disposition: form-data; name="{_quote(name)}"\r\n\r\n'.encode())
        chunks.append(str(value).encode("utf-8"))
        chunks.append(b"\r\n")

    if file is not None:
        chunks.append(delimiter)
        chunks.append(
            f'Content-Disposition: form-data; name="{_quote(file.field)}"; '
            f'filename="{_quote(file.filename)}"\r\n'.encode()
        )
        chunks.append(f"Content-Type: {file.content_type}\r\n\r\n".encode())
        chunks.append(file.content)
        chunks.append(b"\r\n")

    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


class HttpGateway:
    """Async gateway to the backend API.

    Usage::

        async with HttpGateway(base_url, token_provider=credentials.get_token) as gw:
            me = await gw.request("/api/users/me")
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            transport=transport,
        )
        # Direct URL downloads go through a client without base URL or auth.
        self._raw_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> HttpGateway:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()
        await self._raw_client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _auth_headers(self, use_auth: bool) -> dict[str, str]:
        if not use_auth or self.token_provider is None:
            return {}
        token = self.token_provider()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc

        status = response.status_code
        if status == 401:
            logger.warning("401 Unauthorized: %s %s", method, url)
        elif status == 422:
            logger.warning("422 Validation error: %s %s: %s", method, url, response.text)
        if not 200 <= status < 300:
            raise HttpStatusError(status, response.text)
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodingError(
                f"Malformed JSON from {response.request.url}: {response.text[:200]}"
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        use_auth: bool = True,
    ) -> Any:
        """Send a JSON request and return the decoded JSON response.

        Raises:
            NetworkError: No response was received.
            HttpStatusError: Status code outside 200-299.
            DecodingError: The response body is not valid JSON.
        """
        kwargs: dict[str, Any] = {"headers": self._auth_headers(use_auth)}
        if body is not None:
            kwargs["json"] = body
        logger.debug("%s %s", method, path)
        response = await self._send(self._client, method, path, **kwargs)
        return self._decode(response)

    async def post_multipart(
        self,
        path: str,
        fields: dict[str, str],
        file: FilePart | None = None,
        use_auth: bool = True,
    ) -> Any:
        """POST a multipart/form-data body and return the decoded JSON response."""
        body, content_type = build_multipart(fields, file)
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(len(body)),
            **self._auth_headers(use_auth),
        }
        logger.debug(
            "POST %s (multipart, fields=%s, file=%s, %d bytes)",
            path, sorted(fields), file.filename if file else None, len(body),
        )
        response = await self._send(self._client, "POST", path, content=body, headers=headers)
        return self._decode(response)

    async def get_bytes(self, path: str, use_auth: bool = True) -> bytes:
        """GET a backend path and return the raw response body."""
        response = await self._send(
            self._client, "GET", path, headers=self._auth_headers(use_auth),
        )
        return response.content

    async def fetch_url(self, url: str) -> bytes:
        """GET an absolute URL without credentials and return the body."""
        response = await self._send(self._raw_client, "GET", url)
        return response.content
