"""Time-limited in-memory store for pending Dropbox authorizations."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class PendingAuthorization:
    """Who started an authorization and which scope the connection is for."""

    org_id: str | None
    project_id: str | None


class OAuthStateStore:
    """Map random state values to pending authorizations until they expire."""

    def __init__(self, ttl_seconds: int = 600, max_entries: int = 100) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: dict[str, tuple[PendingAuthorization, float]] = {}

    def issue(self, pending: PendingAuthorization) -> str:
        """Store ``pending`` under a fresh state value and return it."""
        self.cleanup()
        if len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]
        state = secrets.token_urlsafe(24)
        self._entries[state] = (pending, time.time())
        return state

    def pop(self, state: str) -> PendingAuthorization | None:
        """Consume a state value. Unknown or expired states return None."""
        entry = self._entries.pop(state, None)
        if entry is None:
            return None
        pending, created_at = entry
        if time.time() - created_at > self._ttl:
            return None
        return pending

    def cleanup(self) -> None:
        now = time.time()
        expired = [k for k, (_, t) in self._entries.items() if now - t > self._ttl]
        for k in expired:
            del self._entries[k]
