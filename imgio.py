from __future__ import annotations

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

try:  # pragma: no cover - optional dependency
    from PIL import ImageCms  # type: ignore
except Exception:  # pragma: no cover - fallback when LittleCMS is unavailable
    ImageCms = None  # type: ignore[assignment]


class ImageDecodeError(ValueError):
    """Raised when downloaded bytes are not a readable image."""


def _convert_to_srgb(image: Image.Image) -> Image.Image:
    icc_profile = image.info.get("icc_profile") if hasattr(image, "info") else None
    if icc_profile and ImageCms is not None:
        try:
            src_profile = ImageCms.ImageCmsProfile(io.BytesIO(icc_profile))
            dst_profile = ImageCms.createProfile("sRGB")
            converted = ImageCms.profileToProfile(
                image, src_profile, dst_profile, outputMode="RGB"
            )
        except Exception:
            logging.exception("Failed to convert ICC profile to sRGB")
            converted = image.convert("RGB")
    elif image.mode != "RGB":
        converted = image.convert("RGB")
    else:
        converted = image.copy()
    if converted is image:
        converted = image.copy()
    return converted


def _resize_if_needed(image: Image.Image, max_side: int) -> Image.Image:
    width, height = image.size
    current_max = max(width, height)
    if current_max <= max_side:
        return image
    scale = max_side / float(current_max)
    new_width = max(1, int(round(width * scale)))
    new_height = max(1, int(round(height * scale)))
    resized = image.resize((new_width, new_height), Image.Resampling.LANCZOS)
    image.close()
    return resized


def decode_image(data: bytes, *, max_side: int | None = None) -> Image.Image:
    """Decode downloaded bytes into an upright RGB image.

    EXIF orientation is applied, embedded colour profiles are converted to
    sRGB and, when ``max_side`` is given, the longer side is capped. The
    returned image is fully loaded and independent of ``data``.
    """

    if not data:
        raise ImageDecodeError("empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as original:
            original.load()
            transposed = ImageOps.exif_transpose(original)
            converted = _convert_to_srgb(transposed)
            if transposed is not original:
                transposed.close()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"unreadable image: {exc}") from exc
    if max_side is not None:
        converted = _resize_if_needed(converted, max_side)
    return converted
