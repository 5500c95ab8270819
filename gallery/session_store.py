"""Persistence of the last signed-in user for offline identity display."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from .decoder import decode_user_row
from .errors import DecodeError
from .models import UserRecord

_USER_KEY = "current_user"


class SessionStore:
    """Persists the signed-in user on disk as a JSON document."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def path(self) -> Path:
        return self._storage_path

    def _read(self) -> Dict[str, Any]:
        if not self._storage_path.exists():
            return {}
        data = json.loads(self._storage_path.read_text())
        if not isinstance(data, dict):
            raise ValueError("Corrupted session store: expected object at root")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_text(json.dumps(data, separators=(",", ":")))

    def save_user(self, user: UserRecord) -> None:
        """Persist ``user`` as the current session."""

        data = self._read()
        data[_USER_KEY] = user.to_payload()
        self._write(data)

    def load_user(self) -> Optional[UserRecord]:
        """Return the stored user, if any."""

        stored = self._read().get(_USER_KEY)
        if not stored:
            return None
        try:
            return decode_user_row(stored)
        except DecodeError as exc:
            raise ValueError(f"Corrupted session store: {exc}") from exc

    def clear(self) -> None:
        """Forget the stored user."""

        data = self._read()
        if _USER_KEY in data:
            data.pop(_USER_KEY)
            self._write(data)
