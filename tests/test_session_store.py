from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from gallery import SessionStore, UserRecord

UTC = timezone.utc


def _user(**overrides) -> UserRecord:
    values = dict(
        id="2b7c5c7e-6b43-4a8e-9d1a-2f0f3f4f5a6b",
        apple_id="001234.apple",
        created_at=datetime(2025, 3, 15, 8, 0, tzinfo=UTC),
        last_login=datetime(2025, 3, 16, 8, 0, tzinfo=UTC),
        email="ada@example.com",
        name="Ada Lovelace",
    )
    values.update(overrides)
    return UserRecord(**values)


@pytest.mark.parametrize("email", [None, "ada@example.com"])
def test_session_store_round_trip(tmp_path: Path, email: str | None) -> None:
    store = SessionStore(tmp_path / "nested" / "session.json")
    user = _user(email=email)

    store.save_user(user)

    assert store.path.exists()
    assert store.load_user() == user

    store.clear()
    assert store.load_user() is None


def test_session_store_missing_file(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")
    assert store.load_user() is None
    store.clear()
    assert not store.path.exists()


def test_session_store_rejects_corrupted_root(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(ValueError):
        SessionStore(path).load_user()


def test_session_store_rejects_invalid_user(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text('{"current_user": {"id": "u1", "created_at": "yesterday"}}')

    with pytest.raises(ValueError, match="Corrupted session store"):
        SessionStore(path).load_user()
