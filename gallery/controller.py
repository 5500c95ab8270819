"""Gallery state: the ordered record collection, cursor and selection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone, tzinfo
from typing import Protocol

from observability import context, log_exc, record_page_applied, record_stale_result

from .errors import GalleryError
from .models import GalleryCursor, GallerySnapshot, ImageRecord
from .retry import RetryPolicy

UTC = timezone.utc

# A fetch of the next page starts once the selection is this close to the end.
PREFETCH_THRESHOLD = 3

Listener = Callable[[GallerySnapshot], None]


class PageSource(Protocol):
    async def fetch_page(
        self, offset: int, limit: int, owner_filter: str | None = None
    ) -> Sequence[ImageRecord]: ...


def format_photo_title(moment: datetime, tz: tzinfo = UTC) -> str:
    """Medium date and short time, e.g. ``Mar 1, 2025 at 10:00 AM``."""

    local = moment.astimezone(tz)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local:%b} {local.day}, {local.year} at {hour}:{local:%M} {local:%p}"


class GalleryController:
    """Owns the gallery collection and serialises every mutation of it.

    All state changes happen on the event loop that drives the controller.
    Each fetch is tagged with the generation that issued it; results from an
    older generation (superseded by ``reload``, ``reset`` or an owner switch)
    are discarded instead of applied.
    """

    def __init__(
        self,
        client: PageSource,
        *,
        owner_id: str | None = None,
        page_size: int = 10,
        retry_policy: RetryPolicy | None = None,
        tz: tzinfo = UTC,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._client = client
        self._owner_id = owner_id
        self._page_size = page_size
        self._retry = retry_policy or RetryPolicy()
        self._tz = tz
        self._records: list[ImageRecord] = []
        self._ids: set[int] = set()
        self._cursor = GalleryCursor()
        self._selected = 0
        self._loading = False
        self._error: GalleryError | None = None
        self._error_message: str | None = None
        self._failed_reload = False
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []
        self._snapshot = GallerySnapshot()

    @property
    def snapshot(self) -> GallerySnapshot:
        return self._snapshot

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def cursor(self) -> GalleryCursor:
        return self._cursor

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for snapshots; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        snapshot = GallerySnapshot(
            records=tuple(self._records),
            selected_index=self._selected,
            is_loading=self._loading,
            error=self._error,
            error_message=self._error_message,
            offset=self._cursor.offset,
            exhausted=self._cursor.exhausted,
            generation=self._generation,
        )
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                log_exc("GALLERY listener failed", exc)

    def _invalidate(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._records = []
        self._ids = set()
        self._cursor = GalleryCursor()
        self._selected = 0
        self._loading = False
        self._error = None
        self._error_message = None
        self._failed_reload = False

    def reset(self) -> None:
        """Drop every record and invalidate in-flight fetches."""

        self._invalidate()
        logging.info("GALLERY reset generation=%s", self._generation)
        self._publish()

    def switch_owner(self, owner_id: str | None) -> None:
        self._owner_id = owner_id
        self._invalidate()
        with context(generation=self._generation, owner_id=owner_id):
            logging.info("GALLERY owner switched")
        self._publish()

    async def _fetch(self, offset: int) -> Sequence[ImageRecord]:
        owner = self._owner_id
        return await self._retry.run(
            lambda: self._client.fetch_page(offset, self._page_size, owner)
        )

    def _apply(self, page: Sequence[ImageRecord]) -> int:
        added = 0
        for record in page:
            if record.id in self._ids:
                continue
            self._ids.add(record.id)
            self._records.append(record)
            added += 1
        self._cursor = self._cursor.advance(len(page), self._page_size)
        return added

    def _fail(self, error: GalleryError, prefix: str) -> None:
        self._loading = False
        self._error = error
        self._error_message = f"{prefix}: {error}"

    async def reload(self) -> GallerySnapshot:
        """Start over from offset 0, replacing the whole collection.

        A reload issued while another fetch is in flight supersedes it.
        """

        self._invalidate()
        generation = self._generation
        self._loading = True
        self._publish()
        with context(generation=generation, owner_id=self._owner_id):
            logging.info("GALLERY reload started page_size=%s", self._page_size)
            try:
                page = await self._fetch(0)
            except GalleryError as exc:
                if generation != self._generation:
                    record_stale_result()
                    return self._snapshot
                self._fail(exc, "Failed to load images")
                self._failed_reload = True
                logging.warning("GALLERY reload failed: %s", exc)
                self._publish()
                return self._snapshot
            except BaseException:
                if generation == self._generation:
                    self._loading = False
                    self._publish()
                raise
            if generation != self._generation:
                record_stale_result()
                logging.info("GALLERY discarded stale reload rows=%s", len(page))
                return self._snapshot
            self._loading = False
            added = self._apply(page)
            if added != len(page):
                logging.warning(
                    "GALLERY received %s rows but only %s are unique", len(page), added
                )
            record_page_applied("reload")
            logging.info(
                "GALLERY reload applied rows=%s offset=%s exhausted=%s",
                added,
                self._cursor.offset,
                self._cursor.exhausted,
            )
            self._publish()
        return self._snapshot

    def ensure_loaded(self, index: int) -> asyncio.Task[None] | None:
        """Fetch the next page in the background if ``index`` is near the end.

        Returns the background task, or ``None`` when nothing was started:
        the index is not close enough, a fetch is already running, or the
        collection is exhausted. A pending error is cleared by the new fetch.
        """

        if index < len(self._records) - PREFETCH_THRESHOLD:
            return None
        if self._loading or self._cursor.exhausted:
            return None
        generation = self._generation
        self._loading = True
        self._error = None
        self._error_message = None
        self._failed_reload = False
        self._publish()
        self._task = asyncio.create_task(self._load_next(generation))
        return self._task

    async def _load_next(self, generation: int) -> None:
        offset = self._cursor.offset
        with context(generation=generation, owner_id=self._owner_id, offset=offset):
            try:
                page = await self._fetch(offset)
            except GalleryError as exc:
                if generation != self._generation:
                    record_stale_result()
                    return
                self._fail(exc, "Failed to load more images")
                logging.warning("GALLERY next page failed: %s", exc)
                self._publish()
                return
            except BaseException:
                if generation == self._generation:
                    self._loading = False
                    self._publish()
                raise
            if generation != self._generation:
                record_stale_result()
                logging.info("GALLERY discarded stale page rows=%s", len(page))
                return
            self._loading = False
            added = self._apply(page)
            record_page_applied("next")
            logging.info(
                "GALLERY page applied rows=%s new=%s offset=%s exhausted=%s",
                len(page),
                added,
                self._cursor.offset,
                self._cursor.exhausted,
            )
            self._publish()

    async def wait_idle(self) -> None:
        """Wait for the background page fetch, if any, to settle."""

        task = self._task
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def retry(self) -> GallerySnapshot:
        """Repeat whichever fetch failed last; no-op without an error."""

        if self._error is None or self._loading:
            return self._snapshot
        if self._failed_reload or not self._records:
            return await self.reload()
        task = self.ensure_loaded(len(self._records) - 1)
        if task is not None:
            await task
        return self._snapshot

    def select(self, index: int) -> int:
        """Select ``index`` clamped to the collection; returns the final index.

        Selecting close to the end also prefetches the next page.
        """

        if not self._records:
            clamped = 0
        else:
            clamped = min(max(index, 0), len(self._records) - 1)
        if clamped != self._selected:
            self._selected = clamped
            self._publish()
        self.ensure_loaded(clamped)
        return clamped

    def select_next(self) -> int:
        return self.select(self._selected + 1)

    def select_previous(self) -> int:
        return self.select(self._selected - 1)

    def title_for(self, index: int) -> str:
        if not 0 <= index < len(self._records):
            return "No Date"
        return format_photo_title(self._records[index].photo_date, self._tz)

    async def aclose(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._loading:
            self._loading = False
            self._publish()
