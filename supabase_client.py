from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from gallery.decoder import decode_image_rows, decode_user_rows
from gallery.errors import (
    DecodeError,
    InvalidRequest,
    ServerError,
    classify_transport_error,
)
from gallery.models import ImageRecord, UserRecord
from observability import context, record_supabase_request

IMAGES_TABLE = "images"
USERS_TABLE = "users"
UPSERT_PREFER = "resolution=merge-duplicates,return=representation"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Type {type(value)!r} is not JSON serializable")


def _strict_payload(payload: Any) -> Any:
    try:
        serialized = json.dumps(payload, default=_json_default, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest("Supabase payload must be JSON serializable") from exc
    return json.loads(serialized)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    return value if value > 0 else default


@dataclass
class SupabaseConfig:
    url: str | None
    key: str | None


class SupabaseClient:
    """Thin PostgREST client for the ``images`` and ``users`` tables.

    The client never retries; every failure is raised as a ``GalleryError``
    subclass and retry decisions belong to the caller.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        env_key = key or os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        config = SupabaseConfig(url or os.getenv("SUPABASE_URL"), env_key)
        self._enabled = bool(config.url and config.key)
        self._client: httpx.AsyncClient | None = None
        self._api_base: str | None = None
        if timeout is None:
            timeout = _env_float("SUPABASE_TIMEOUT", 10.0)
        if self._enabled:
            api_base = config.url.rstrip("/")
            rest_base = api_base + "/rest/v1"
            headers = {
                "apikey": config.key,
                "Authorization": f"Bearer {config.key}",
                "Content-Type": "application/json",
            }
            self._client = httpx.AsyncClient(base_url=rest_base, timeout=timeout, headers=headers)
            self._api_base = api_base

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def api_base(self) -> str | None:
        return self._api_base

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise InvalidRequest("Supabase client is disabled")
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        client = self._require_client()
        start = time.perf_counter()
        outcome = "ok"
        try:
            try:
                response = await client.request(
                    method,
                    f"/{table}",
                    params=params,
                    json=json_body,
                    headers=headers,
                )
            except httpx.HTTPError as exc:
                error = classify_transport_error(exc)
                outcome = type(error).__name__
                logging.warning(
                    "SUPABASE %s /%s transport failure kind=%s error=%s",
                    method,
                    table,
                    outcome,
                    exc,
                )
                raise error from exc
            if not 200 <= response.status_code < 300:
                outcome = f"http_{response.status_code}"
                body = response.text.strip()
                logging.warning(
                    "SUPABASE %s /%s failed status=%s body=%s",
                    method,
                    table,
                    response.status_code,
                    body[:200],
                )
                raise ServerError(response.status_code, body or None)
            try:
                return response.json()
            except ValueError as exc:
                outcome = "decode_error"
                raise DecodeError(f"response body is not JSON: {exc}") from exc
        finally:
            record_supabase_request(table, outcome, time.perf_counter() - start)

    async def fetch_page(
        self,
        offset: int,
        limit: int,
        owner_filter: str | None = None,
    ) -> list[ImageRecord]:
        """Return rows ``[offset, offset + limit)`` of ``images``, newest first."""

        if offset < 0:
            raise InvalidRequest(f"offset must be non-negative, got {offset}")
        if limit < 1:
            raise InvalidRequest(f"limit must be positive, got {limit}")
        params: dict[str, Any] = {
            "select": "*",
            "order": "created_at.desc",
            "offset": offset,
            "limit": limit,
        }
        if owner_filter is not None:
            params["user_id"] = f"eq.{owner_filter}"
        with context(table=IMAGES_TABLE, offset=offset, limit=limit, owner_id=owner_filter):
            payload = await self._request("GET", IMAGES_TABLE, params=params)
            try:
                records = decode_image_rows(payload)
            except DecodeError as exc:
                logging.warning("SUPABASE images page rejected: %s", exc)
                raise
            logging.debug("SUPABASE images page fetched rows=%s", len(records))
            return records

    async def fetch_user_by_apple_id(self, apple_id: str) -> UserRecord | None:
        if not apple_id:
            raise InvalidRequest("apple_id must not be empty")
        with context(table=USERS_TABLE):
            payload = await self._request(
                "GET",
                USERS_TABLE,
                params={"select": "*", "apple_id": f"eq.{apple_id}", "limit": 1},
            )
            users = decode_user_rows(payload)
        return users[0] if users else None

    async def upsert_user(
        self,
        *,
        apple_id: str,
        email: str | None = None,
        name: str | None = None,
        avatar_url: str | None = None,
        last_login: datetime | None = None,
    ) -> UserRecord:
        if not apple_id:
            raise InvalidRequest("apple_id must not be empty")
        payload = _strict_payload(
            {
                "apple_id": apple_id,
                "email": email,
                "name": name,
                "avatar_url": avatar_url,
                "last_login": last_login or datetime.now(UTC),
            }
        )
        with context(table=USERS_TABLE):
            body = await self._request(
                "POST",
                USERS_TABLE,
                params={"on_conflict": "apple_id"},
                json_body=payload,
                headers={"Prefer": UPSERT_PREFER},
            )
            users = decode_user_rows(body)
        if not users:
            raise DecodeError("upsert returned no rows")
        return users[0]

    async def probe(self) -> tuple[int, float]:
        """Issue a lightweight request against the REST root.

        Returns ``(status_code, latency_seconds)``; any HTTP answer counts as
        a response, transport failures are raised as ``GalleryError``.
        """

        client = self._require_client()
        start = time.perf_counter()
        try:
            response = await client.get("/")
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc) from exc
        return response.status_code, time.perf_counter() - start


__all__ = [
    "IMAGES_TABLE",
    "SupabaseClient",
    "USERS_TABLE",
]
