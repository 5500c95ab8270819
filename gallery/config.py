from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .retry import RetryPolicy


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    if value < minimum:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
        if value < 0:
            raise ValueError
    except ValueError:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    return value


@dataclass
class GalleryConfig:
    page_size: int = 10
    retry_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    image_cache_max_entries: int = 64
    image_max_side: int | None = None
    session_path: Path = Path("data/session.json")
    timezone: ZoneInfo = ZoneInfo("UTC")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


def load_gallery_config() -> GalleryConfig:
    max_side_raw = os.getenv("IMAGE_MAX_SIDE")
    image_max_side: int | None = None
    if max_side_raw:
        try:
            parsed = int(max_side_raw)
            if parsed <= 0:
                raise ValueError
        except ValueError:
            logging.warning("Invalid IMAGE_MAX_SIDE=%s; ignoring downscale override", max_side_raw)
        else:
            image_max_side = parsed

    tz_name = (os.getenv("GALLERY_TIMEZONE") or "UTC").strip() or "UTC"
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.warning("Unknown GALLERY_TIMEZONE=%s, falling back to UTC", tz_name)
        tz = ZoneInfo("UTC")

    session_raw = os.getenv("GALLERY_SESSION_PATH", "").strip()

    return GalleryConfig(
        page_size=_env_int("GALLERY_PAGE_SIZE", 10, minimum=1),
        retry_attempts=_env_int("GALLERY_RETRY_ATTEMPTS", 3, minimum=1),
        retry_base_delay=_env_float("GALLERY_RETRY_BASE_DELAY", 0.5),
        retry_max_delay=_env_float("GALLERY_RETRY_MAX_DELAY", 8.0),
        image_cache_max_entries=_env_int("IMAGE_CACHE_MAX_ENTRIES", 64),
        image_max_side=image_max_side,
        session_path=Path(session_raw) if session_raw else Path("data/session.json"),
        timezone=tz,
    )
