from __future__ import annotations

import errno
import json
import socket
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from gallery import (
    DecodeError,
    HostUnreachable,
    InvalidRequest,
    NoConnectivity,
    ServerError,
    Timeout,
)
from supabase_client import SupabaseClient, UPSERT_PREFER


class _DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, *, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


def _user_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": "2b7c5c7e-6b43-4a8e-9d1a-2f0f3f4f5a6b",
        "apple_id": "001234.apple",
        "email": "ada@example.com",
        "name": "Ada Lovelace",
        "avatar_url": None,
        "created_at": "2025-03-15T08:00:00.000000+00:00",
        "last_login": "2025-03-16T08:00:00+00:00",
    }
    row.update(overrides)
    return row


def _connect_error_with(cause: OSError) -> httpx.ConnectError:
    try:
        try:
            raise cause
        except OSError as inner:
            raise httpx.ConnectError("connect failed") from inner
    except httpx.ConnectError as exc:
        return exc


@pytest.mark.asyncio
async def test_fetch_page_builds_range_query(monkeypatch, image_row):
    client = SupabaseClient(url="https://example.supabase.co/", key="test-key")
    request_mock = AsyncMock(return_value=_DummyResponse(200, [image_row(9), image_row(8)]))
    monkeypatch.setattr(client._client, "request", request_mock)

    records = await client.fetch_page(20, 10, owner_filter="user-1")
    await client.aclose()

    assert [record.id for record in records] == [9, 8]
    args = request_mock.await_args
    assert args.args == ("GET", "/images")
    params = args.kwargs["params"]
    assert params == {
        "select": "*",
        "order": "created_at.desc",
        "offset": 20,
        "limit": 10,
        "user_id": "eq.user-1",
    }


@pytest.mark.asyncio
async def test_fetch_page_without_owner_filter(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    request_mock = AsyncMock(return_value=_DummyResponse(200, []))
    monkeypatch.setattr(client._client, "request", request_mock)

    assert await client.fetch_page(0, 5) == []
    assert "user_id" not in request_mock.await_args.kwargs["params"]
    await client.aclose()


def test_client_sends_credential_headers():
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    assert client._client is not None
    headers = client._client.headers
    assert headers["apikey"] == "test-key"
    assert headers["Authorization"] == "Bearer test-key"
    assert headers["Content-Type"] == "application/json"
    assert str(client._client.base_url).rstrip("/") == "https://example.supabase.co/rest/v1"


@pytest.mark.asyncio
async def test_non_2xx_is_server_error(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    response = _DummyResponse(401, text='{"message":"Invalid API key"}')
    monkeypatch.setattr(client._client, "request", AsyncMock(return_value=response))

    with pytest.raises(ServerError) as excinfo:
        await client.fetch_page(0, 10)
    await client.aclose()

    assert excinfo.value.status_code == 401
    assert not excinfo.value.retryable


@pytest.mark.asyncio
async def test_bad_row_fails_whole_page(monkeypatch, image_row):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    payload = [image_row(9), image_row("8")]
    monkeypatch.setattr(client._client, "request", AsyncMock(return_value=_DummyResponse(200, payload)))

    with pytest.raises(DecodeError) as excinfo:
        await client.fetch_page(0, 10)
    await client.aclose()

    assert excinfo.value.index == 1


@pytest.mark.asyncio
async def test_non_json_body_is_decode_error(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    response = _DummyResponse(200, text="<html>gateway</html>")
    monkeypatch.setattr(client._client, "request", AsyncMock(return_value=response))

    with pytest.raises(DecodeError):
        await client.fetch_page(0, 10)
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectTimeout("slow"), Timeout),
        (httpx.ReadTimeout("slow"), Timeout),
        (_connect_error_with(socket.gaierror(socket.EAI_NONAME, "Name or service not known")), HostUnreachable),
        (_connect_error_with(socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution")), NoConnectivity),
        (_connect_error_with(OSError(errno.ENETUNREACH, "Network is unreachable")), NoConnectivity),
        (_connect_error_with(ConnectionRefusedError(errno.ECONNREFUSED, "refused")), HostUnreachable),
    ],
)
async def test_transport_failures_are_classified(monkeypatch, exc, expected):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    request_mock = AsyncMock(side_effect=exc)
    monkeypatch.setattr(client._client, "request", request_mock)

    with pytest.raises(expected):
        await client.fetch_page(0, 10)
    await client.aclose()

    assert request_mock.await_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("offset, limit", [(-1, 10), (0, 0)])
async def test_invalid_range_is_rejected(offset, limit):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    with pytest.raises(InvalidRequest):
        await client.fetch_page(offset, limit)
    await client.aclose()


@pytest.mark.asyncio
async def test_disabled_client_raises(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    client = SupabaseClient(url=None, key=None)

    assert client.enabled is False
    with pytest.raises(InvalidRequest):
        await client.fetch_page(0, 10)


@pytest.mark.asyncio
async def test_fetch_user_by_apple_id(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    request_mock = AsyncMock(return_value=_DummyResponse(200, [_user_row()]))
    monkeypatch.setattr(client._client, "request", request_mock)

    user = await client.fetch_user_by_apple_id("001234.apple")
    await client.aclose()

    assert user is not None
    assert user.email == "ada@example.com"
    assert request_mock.await_args.args == ("GET", "/users")
    assert request_mock.await_args.kwargs["params"] == {
        "select": "*",
        "apple_id": "eq.001234.apple",
        "limit": 1,
    }


@pytest.mark.asyncio
async def test_fetch_user_by_apple_id_missing(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    monkeypatch.setattr(client._client, "request", AsyncMock(return_value=_DummyResponse(200, [])))

    assert await client.fetch_user_by_apple_id("nobody") is None
    await client.aclose()


@pytest.mark.asyncio
async def test_upsert_user_sends_merge_preference(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    request_mock = AsyncMock(return_value=_DummyResponse(201, [_user_row()]))
    monkeypatch.setattr(client._client, "request", request_mock)

    login = datetime(2025, 3, 16, 8, 0, tzinfo=UTC)
    user = await client.upsert_user(
        apple_id="001234.apple",
        email="ada@example.com",
        name="Ada Lovelace",
        last_login=login,
    )
    await client.aclose()

    assert user.apple_id == "001234.apple"
    kwargs = request_mock.await_args.kwargs
    assert request_mock.await_args.args == ("POST", "/users")
    assert kwargs["headers"] == {"Prefer": UPSERT_PREFER}
    assert kwargs["params"] == {"on_conflict": "apple_id"}
    assert kwargs["json"] == {
        "apple_id": "001234.apple",
        "email": "ada@example.com",
        "name": "Ada Lovelace",
        "avatar_url": None,
        "last_login": "2025-03-16T08:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_upsert_user_empty_response_is_decode_error(monkeypatch):
    client = SupabaseClient(url="https://example.supabase.co", key="test-key")
    monkeypatch.setattr(client._client, "request", AsyncMock(return_value=_DummyResponse(201, [])))

    with pytest.raises(DecodeError):
        await client.upsert_user(apple_id="001234.apple")
    await client.aclose()
