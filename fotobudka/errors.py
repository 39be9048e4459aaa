"""Exception types shared by the gateway, generation client and job store."""

from __future__ import annotations

import asyncio
from typing import Any

# Abandonment of a poll loop or background job. Not a failure: callers must
# never turn it into an error record.
CancellationError = asyncio.CancelledError


class FotobudkaError(Exception):
    """Base class for every error raised by the fotobudka client."""

    default_message = "Something went wrong. Please try again."

    @property
    def user_message(self) -> str:
        """Text suitable for showing next to a failed job."""
        return str(self) or self.default_message


class NetworkError(FotobudkaError):
    """Transport-level failure: no HTTP response was received."""

    default_message = "Network error. Please check your connection."

    @property
    def user_message(self) -> str:
        return self.default_message


class HttpStatusError(FotobudkaError):
    """The backend answered with a status code outside 200-299."""

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")

    @property
    def user_message(self) -> str:
        if self.status_code == 401:
            return "Not authorized. Please try again later."
        return f"Server error ({self.status_code}). Please try again."


class DecodingError(FotobudkaError):
    """A response body could not be decoded into the expected shape."""

    default_message = "Unexpected response from the server."

    @property
    def user_message(self) -> str:
        return self.default_message


class GenerationFailed(FotobudkaError):
    """The backend reported a terminal failure for a generation job."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def is_insufficient_tokens(self) -> bool:
        return "insufficient tokens amount" in self.message.lower()


class DownloadFailed(FotobudkaError):
    """The job finished but its result could not be obtained."""

    default_message = "Failed to load the generated image."

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)


class CatalogUnavailable(FotobudkaError):
    """A catalog provider could not resolve any paywall."""
