"""Turn raw PostgREST rows into gallery records."""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from .errors import DecodeError
from .models import ImageRecord, UserRecord

UTC = timezone.utc

# Tried in order; the first two require an explicit offset.
_OFFSET_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)
_NAIVE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware UTC datetime.

    Returns ``None`` when the value is missing or no supported format matches.
    """

    if value is None or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    for fmt in _OFFSET_FORMATS:
        try:
            return datetime.strptime(text, fmt).astimezone(UTC)
        except ValueError:
            continue
    for fmt in _NAIVE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    candidate = _LONG_FRACTION.sub(r"\1", text)
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _require_mapping(row: Any, index: int | None) -> Mapping[str, Any]:
    if not isinstance(row, Mapping):
        raise DecodeError(f"expected object, got {type(row).__name__}", index=index)
    return row


def _optional_str(row: Mapping[str, Any], key: str, index: int | None) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"{key} must be a string", index=index)
    return value


def _decode_metadata(raw: Any, index: int | None) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise DecodeError("metadata must be an object", index=index)
    metadata: dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(value, bool):
            metadata[str(key)] = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            metadata[str(key)] = str(value)
        else:
            raise DecodeError(f"metadata[{key!r}] must be a scalar", index=index)
    return metadata


def decode_image_row(row: Any, *, index: int | None = None) -> ImageRecord:
    data = _require_mapping(row, index)

    raw_id = data.get("id")
    # The images.id column is a generated bigint; string ids belong to an
    # older revision of the table and are rejected.
    if isinstance(raw_id, bool) or not isinstance(raw_id, int):
        raise DecodeError(f"id must be an integer, got {raw_id!r}", index=index)

    image_url = data.get("image_url")
    if image_url is None:
        image_url = data.get("url")
    if not isinstance(image_url, str) or not image_url.strip():
        raise DecodeError("image_url is missing", index=index)

    created_at = parse_timestamp(data.get("created_at"))
    if created_at is None:
        raise DecodeError(
            f"created_at is missing or unparseable: {data.get('created_at')!r}",
            index=index,
        )
    photo_date = parse_timestamp(data.get("photo_date")) or created_at

    return ImageRecord(
        id=raw_id,
        image_url=image_url,
        photo_date=photo_date,
        created_at=created_at,
        owner_id=_optional_str(data, "user_id", index),
        metadata=_decode_metadata(data.get("metadata"), index),
    )


def decode_image_rows(rows: Any) -> list[ImageRecord]:
    """Decode a whole page; the first bad row fails the page."""

    if not isinstance(rows, list):
        raise DecodeError(f"expected a JSON array, got {type(rows).__name__}")
    return [decode_image_row(row, index=index) for index, row in enumerate(rows)]


def decode_user_row(row: Any, *, index: int | None = None) -> UserRecord:
    data = _require_mapping(row, index)
    user_id = data.get("id")
    if user_id is None:
        raise DecodeError("id is missing", index=index)
    apple_id = data.get("apple_id")
    if not isinstance(apple_id, str) or not apple_id:
        raise DecodeError("apple_id is missing", index=index)

    timestamps: dict[str, datetime] = {}
    for key in ("created_at", "last_login"):
        parsed = parse_timestamp(data.get(key))
        if parsed is None:
            raise DecodeError(f"{key} is missing or unparseable", index=index)
        timestamps[key] = parsed

    return UserRecord(
        id=str(user_id),
        apple_id=apple_id,
        created_at=timestamps["created_at"],
        last_login=timestamps["last_login"],
        email=_optional_str(data, "email", index),
        name=_optional_str(data, "name", index),
        avatar_url=_optional_str(data, "avatar_url", index),
    )


def decode_user_rows(rows: Any) -> list[UserRecord]:
    if not isinstance(rows, list):
        raise DecodeError(f"expected a JSON array, got {type(rows).__name__}")
    return [decode_user_row(row, index=index) for index, row in enumerate(rows)]
