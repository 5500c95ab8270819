"""Paginated photo gallery: records, state controller and image cache."""

from .controller import GalleryController, format_photo_title
from .decoder import decode_image_row, decode_image_rows, decode_user_row, parse_timestamp
from .errors import (
    DecodeError,
    GalleryError,
    HostUnreachable,
    ImageFetchError,
    InvalidRequest,
    NetworkError,
    NoConnectivity,
    ServerError,
    Timeout,
)
from .image_cache import RemoteImageCache
from .models import (
    GalleryCursor,
    GallerySnapshot,
    ImageRecord,
    UserRecord,
    normalize_image_url,
)
from .retry import NO_RETRY, RetryPolicy
from .session_store import SessionStore

__all__ = [
    "DecodeError",
    "GalleryController",
    "GalleryCursor",
    "GalleryError",
    "GallerySnapshot",
    "HostUnreachable",
    "ImageFetchError",
    "ImageRecord",
    "InvalidRequest",
    "NO_RETRY",
    "NetworkError",
    "NoConnectivity",
    "RemoteImageCache",
    "RetryPolicy",
    "ServerError",
    "SessionStore",
    "Timeout",
    "UserRecord",
    "decode_image_row",
    "decode_image_rows",
    "decode_user_row",
    "format_photo_title",
    "normalize_image_url",
    "parse_timestamp",
]
