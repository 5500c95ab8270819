"""Data structures that describe gallery entities."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import GalleryError


UTC = timezone.utc

_DUPLICATE_SLASHES = re.compile(r"/{2,}")


def normalize_image_url(url: str) -> str:
    """Return the canonical form of an image URL.

    Duplicated path separators (``.../v1//storage/...``) are collapsed and
    stray ``?`` characters left over from empty filter queries are stripped
    from both ends. The scheme, host, query and fragment are left untouched.
    """

    text = url.strip().strip("?")
    parts = urlsplit(text)
    return urlunsplit(parts._replace(path=_DUPLICATE_SLASHES.sub("/", parts.path)))


@dataclass(frozen=True, slots=True)
class ImageRecord:
    """Represents one gallery entry."""

    id: int
    image_url: str
    photo_date: datetime
    created_at: datetime
    owner_id: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def normalized_url(self) -> str:
        return normalize_image_url(self.image_url)

    @property
    def is_legacy(self) -> bool:
        """Rows without an owner predate per-user galleries."""

        return self.owner_id is None


@dataclass(frozen=True, slots=True)
class UserRecord:
    """A row of the ``users`` table."""

    id: str
    apple_id: str
    created_at: datetime
    last_login: datetime
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "apple_id": self.apple_id,
            "email": self.email,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "created_at": self.created_at.astimezone(UTC).isoformat(),
            "last_login": self.last_login.astimezone(UTC).isoformat(),
        }


@dataclass(frozen=True, slots=True)
class GalleryCursor:
    """Pagination state of the current session."""

    offset: int = 0
    exhausted: bool = False

    def advance(self, fetched: int, requested: int) -> "GalleryCursor":
        if fetched < 0 or requested < 1:
            raise ValueError("fetched must be non-negative and requested positive")
        return GalleryCursor(offset=self.offset + fetched, exhausted=fetched < requested)


@dataclass(frozen=True, slots=True)
class GallerySnapshot:
    """Immutable view of the gallery handed to subscribers."""

    records: tuple[ImageRecord, ...] = ()
    selected_index: int = 0
    is_loading: bool = False
    error: Optional[GalleryError] = None
    error_message: Optional[str] = None
    offset: int = 0
    exhausted: bool = False
    generation: int = 0

    @property
    def selected(self) -> Optional[ImageRecord]:
        if not self.records:
            return None
        return self.records[self.selected_index]

    @property
    def can_retry(self) -> bool:
        return self.error is not None and not self.is_loading

    @property
    def position_label(self) -> str:
        if not self.records:
            return "0 of 0"
        return f"{self.selected_index + 1} of {len(self.records)}"
