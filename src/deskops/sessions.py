"""Per-user credential storage."""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol

from msgspec import Struct


class StoredToken(Struct, frozen=True):
    """An OAuth access token held for one chat user."""

    access_token: str
    created_at: float
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CredentialStore(Protocol):
    """Get/put/delete OAuth tokens by chat user identity."""

    def get(self, user_id: str) -> StoredToken | None:  # pragma: no cover - protocol
        ...

    def put(self, user_id: str, access_token: str) -> StoredToken:  # pragma: no cover - protocol
        ...

    def delete(self, user_id: str) -> bool:  # pragma: no cover - protocol
        ...


class InMemoryCredentialStore:
    """Process-local token table guarded by a single lock.

    The lock is held only for the individual lookup, insert or delete. Entries
    do not survive a restart.
    """

    def __init__(self, *, ttl: float | None = None, clock: Callable[[], float] = time.time) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, StoredToken] = {}

    def get(self, user_id: str) -> StoredToken | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if entry.expired(now):
                del self._entries[user_id]
                return None
            return entry

    def put(self, user_id: str, access_token: str) -> StoredToken:
        if not user_id:
            raise ValueError("user_id is required")
        now = self._clock()
        entry = StoredToken(
            access_token=access_token,
            created_at=now,
            expires_at=None if self.ttl is None else now + self.ttl,
        )
        with self._lock:
            self._entries[user_id] = entry
        return entry

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._entries.pop(user_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["CredentialStore", "InMemoryCredentialStore", "StoredToken"]
