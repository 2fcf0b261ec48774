"""In-process leases that serialize sync runs per connection.

A scheduler (the HTTP endpoint, or any other caller) acquires the lease for a
connection before invoking the orchestrator and releases it afterwards. A lease
that outlives its TTL is treated as abandoned and may be taken over.
"""

from __future__ import annotations

import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dropsync.exceptions import SyncInProgress

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass(frozen=True)
class SyncLease:
    connection_id: int
    token: str
    expires_at: float


class SyncLeaseManager:
    """Hand out at most one live lease per connection."""

    def __init__(self, ttl_seconds: int = 900) -> None:
        self._ttl = ttl_seconds
        self._leases: dict[int, SyncLease] = {}

    def acquire(self, connection_id: int) -> SyncLease:
        """Take the lease for ``connection_id``. Raises SyncInProgress if it is held."""
        now = time.monotonic()
        current = self._leases.get(connection_id)
        if current is not None and current.expires_at > now:
            raise SyncInProgress(f"A sync is already running for connection {connection_id}")
        lease = SyncLease(
            connection_id=connection_id,
            token=secrets.token_urlsafe(16),
            expires_at=now + self._ttl,
        )
        self._leases[connection_id] = lease
        return lease

    def is_held(self, lease: SyncLease) -> bool:
        current = self._leases.get(lease.connection_id)
        return (
            current is not None
            and secrets.compare_digest(current.token, lease.token)
            and current.expires_at > time.monotonic()
        )

    def release(self, lease: SyncLease) -> bool:
        """Drop the lease if it is still the current one. Returns True when dropped."""
        current = self._leases.get(lease.connection_id)
        if current is None or not secrets.compare_digest(current.token, lease.token):
            return False
        del self._leases[lease.connection_id]
        return True

    def active_count(self) -> int:
        """Number of leases that have not expired."""
        now = time.monotonic()
        return sum(1 for lease in self._leases.values() if lease.expires_at > now)

    @asynccontextmanager
    async def hold(self, connection_id: int) -> AsyncIterator[SyncLease]:
        lease = self.acquire(connection_id)
        try:
            yield lease
        finally:
            self.release(lease)
