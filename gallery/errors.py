"""Error taxonomy shared by the fetch client, the controller and the image cache."""

from __future__ import annotations

import errno
import socket

import httpx


class GalleryError(Exception):
    """Base class for every failure surfaced to the gallery."""

    user_message = "Something went wrong"

    def __str__(self) -> str:
        detail = super().__str__()
        return detail or self.user_message


class NetworkError(GalleryError):
    """A request could not be completed."""

    user_message = "Network request failed"


class NoConnectivity(NetworkError):
    user_message = "No internet connection. Please check your network settings."


class HostUnreachable(NetworkError):
    user_message = "The server could not be reached."


class Timeout(NetworkError):
    user_message = "The request timed out."


class ServerError(NetworkError):
    user_message = "Server error"

    def __init__(self, status_code: int, body: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        message = f"HTTP {status_code}"
        if body:
            message = f"{message}: {body[:200]}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class DecodeError(GalleryError):
    user_message = "Received data could not be read."

    def __init__(self, detail: str, *, index: int | None = None) -> None:
        self.detail = detail
        self.index = index
        if index is not None:
            super().__init__(f"row {index}: {detail}")
        else:
            super().__init__(detail)


class InvalidRequest(GalleryError):
    """Malformed request construction; indicates a programming error."""

    user_message = "Invalid request"


class ImageFetchError(GalleryError):
    user_message = "Image could not be loaded."

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        super().__init__(f"{detail} ({url})")


_NO_CONNECTIVITY_ERRNOS = {errno.ENETUNREACH, errno.ENETDOWN}
_NO_CONNECTIVITY_GAI = {
    getattr(socket, "EAI_AGAIN", None),
    getattr(socket, "EAI_NODATA", None),
}


def _iter_causes(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_transport_error(exc: Exception) -> GalleryError:
    """Map an ``httpx`` transport failure onto the gallery taxonomy."""

    if isinstance(exc, GalleryError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return Timeout(str(exc) or "timed out")
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return InvalidRequest(str(exc))
    for cause in _iter_causes(exc):
        if isinstance(cause, socket.gaierror):
            if cause.errno in _NO_CONNECTIVITY_GAI:
                return NoConnectivity(str(cause))
            return HostUnreachable(str(cause))
        if isinstance(cause, TimeoutError):
            return Timeout(str(cause) or "timed out")
        if isinstance(cause, OSError) and cause.errno in _NO_CONNECTIVITY_ERRNOS:
            return NoConnectivity(str(cause))
    return HostUnreachable(str(exc) or type(exc).__name__)


__all__ = [
    "DecodeError",
    "GalleryError",
    "HostUnreachable",
    "ImageFetchError",
    "InvalidRequest",
    "NetworkError",
    "NoConnectivity",
    "ServerError",
    "Timeout",
    "classify_transport_error",
]
