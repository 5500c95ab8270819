from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from gallery import GalleryController, SessionStore, UserRecord
from observability import context


@dataclass(frozen=True)
class AppleCredential:
    """What the platform's Sign in with Apple flow hands over."""

    user: str
    email: str | None = None
    given_name: str | None = None
    family_name: str | None = None

    @property
    def display_name(self) -> str | None:
        parts = [part.strip() for part in (self.given_name, self.family_name) if part and part.strip()]
        return " ".join(parts) or None


class UserDirectory(Protocol):
    async def fetch_user_by_apple_id(self, apple_id: str) -> UserRecord | None: ...

    async def upsert_user(
        self,
        *,
        apple_id: str,
        email: str | None = None,
        name: str | None = None,
        avatar_url: str | None = None,
        last_login: datetime | None = None,
    ) -> UserRecord: ...


class AuthService:
    def __init__(
        self,
        directory: UserDirectory,
        store: SessionStore,
        *,
        gallery: GalleryController | None = None,
    ) -> None:
        self._directory = directory
        self._store = store
        self._gallery = gallery
        self._current: UserRecord | None = None

    @property
    def current_user(self) -> UserRecord | None:
        return self._current

    def restore(self) -> UserRecord | None:
        """Load the last signed-in user from the local store."""

        try:
            user = self._store.load_user()
        except ValueError as exc:
            logging.warning("AUTH stored session unreadable, ignoring: %s", exc)
            return None
        self._current = user
        if user is not None:
            logging.info("AUTH restored session user_id=%s", user.id)
            if self._gallery is not None:
                self._gallery.switch_owner(user.id)
        return user

    async def sign_in(self, credential: AppleCredential) -> UserRecord:
        """Create or refresh the backend user for ``credential``.

        Apple only sends the name and email on the first authorisation, so a
        stored value is never overwritten; missing ones are filled in.
        """

        with context(apple_id=credential.user):
            existing = await self._directory.fetch_user_by_apple_id(credential.user)
            email = credential.email
            name = credential.display_name
            avatar_url = None
            if existing is not None:
                email = existing.email or email
                name = existing.name or name
                avatar_url = existing.avatar_url
            user = await self._directory.upsert_user(
                apple_id=credential.user,
                email=email,
                name=name,
                avatar_url=avatar_url,
                last_login=datetime.now(UTC),
            )
            self._store.save_user(user)
            self._current = user
            logging.info(
                "AUTH signed in user_id=%s new=%s", user.id, existing is None
            )
        if self._gallery is not None:
            self._gallery.switch_owner(user.id)
        return user

    def sign_out(self) -> None:
        self._store.clear()
        previous = self._current
        self._current = None
        if self._gallery is not None:
            self._gallery.switch_owner(None)
        if previous is not None:
            logging.info("AUTH signed out user_id=%s", previous.id)
