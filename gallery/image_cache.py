"""In-memory cache of decoded remote images."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

import httpx
from PIL import Image

from imgio import ImageDecodeError, decode_image
from observability import context, record_image_cache

from .errors import ImageFetchError, classify_transport_error
from .models import normalize_image_url


class RemoteImageCache:
    """Resolves image URLs to decoded images, downloading each URL once.

    Entries are keyed by the normalised URL. Concurrent resolutions of the
    same URL share one download; ``max_entries`` bounds the cache with LRU
    eviction (0 keeps every image).
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        max_entries: int = 64,
        max_side: int | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._max_entries = max(0, max_entries)
        self._max_side = max_side
        self._images: OrderedDict[str, Image.Image] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[Image.Image]] = {}

    def __len__(self) -> int:
        return len(self._images)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalize_image_url(url) in self._images

    def get(self, url: str) -> Image.Image | None:
        key = normalize_image_url(url)
        image = self._images.get(key)
        if image is not None:
            self._images.move_to_end(key)
        return image

    def _store(self, key: str, image: Image.Image) -> None:
        self._images[key] = image
        self._images.move_to_end(key)
        if self._max_entries:
            while len(self._images) > self._max_entries:
                evicted, _ = self._images.popitem(last=False)
                logging.debug("IMAGE cache evicted url=%s", evicted)

    async def _download(self, key: str) -> Image.Image:
        with context(url=key):
            try:
                response = await self._client.get(key)
            except httpx.HTTPError as exc:
                error = classify_transport_error(exc)
                logging.warning("IMAGE download failed kind=%s error=%s", type(error).__name__, exc)
                raise ImageFetchError(key, f"{type(error).__name__}: {error}") from exc
            if not 200 <= response.status_code < 300:
                logging.warning("IMAGE download failed status=%s", response.status_code)
                raise ImageFetchError(key, f"HTTP {response.status_code}")
            try:
                image = await asyncio.to_thread(
                    decode_image, response.content, max_side=self._max_side
                )
            except ImageDecodeError as exc:
                logging.warning("IMAGE decode failed: %s", exc)
                raise ImageFetchError(key, str(exc)) from exc
            self._store(key, image)
            logging.info("IMAGE cached size=%sx%s", image.width, image.height)
            return image

    def _forget(self, key: str, task: asyncio.Task[Image.Image]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def resolve(self, url: str) -> Image.Image:
        key = normalize_image_url(url)
        if not key:
            raise ImageFetchError(url, "empty URL")
        cached = self.get(key)
        if cached is not None:
            record_image_cache("hit")
            return cached
        task = self._inflight.get(key)
        if task is None:
            record_image_cache("miss")
            task = asyncio.create_task(self._download(key))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            record_image_cache("shared")
        # Shielded so a waiter going away does not abort the shared download.
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise ImageFetchError(key, "download cancelled") from None
            raise

    def cancel(self, url: str) -> bool:
        """Abort an in-flight download; nothing is cached for it."""

        key = normalize_image_url(url)
        task = self._inflight.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        logging.info("IMAGE download cancelled url=%s", key)
        return True

    def clear(self) -> None:
        logging.info("IMAGE cache cleared entries=%s", len(self._images))
        self._images.clear()

    async def aclose(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._owns_client:
            await self._client.aclose()
