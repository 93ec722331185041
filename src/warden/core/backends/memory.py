"""
In-memory counter store for testing and development.

Counters live in a dictionary guarded by an asyncio.Lock, which makes the
increment-and-check atomic for every request served by one event loop.

WARNING: Not suitable for multi-process deployments!
- No persistence (data lost on restart)
- No distribution (each worker process counts on its own)

Use RedisBackend for production deployments.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from warden.core.backends.base import StorageBackend, WindowState


@dataclass
class CounterEntry:
    count: int
    window_start: float
    expires_at: float


class InMemoryBackend(StorageBackend):
    """
    In-memory implementation of StorageBackend.

    Expired windows are reset lazily on access. When the number of stored
    keys exceeds `max_entries`, expired entries are purged in one pass.

    Example:
        >>> backend = InMemoryBackend()
        >>> state = await backend.increment_and_check("key", limit=2, window_seconds=60)
        >>> state.count
        1

    Args:
        clock: Time source returning unix seconds. Tests inject a fake one
            to move across window boundaries without sleeping.
        max_entries: Key count that triggers a purge of expired entries.
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, CounterEntry] = {}
        self._lock = asyncio.Lock()

    async def increment_and_check(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> WindowState:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now >= entry.expires_at:
                if len(self._entries) >= self._max_entries:
                    self._purge_expired(now)
                entry = CounterEntry(
                    count=0,
                    window_start=now,
                    expires_at=now + window_seconds,
                )
                self._entries[key] = entry

            if entry.count >= limit:
                return WindowState(
                    count=entry.count,
                    allowed=False,
                    reset_at=entry.expires_at,
                    ttl=entry.expires_at - now,
                )

            entry.count += 1
            return WindowState(
                count=entry.count,
                allowed=True,
                reset_at=entry.expires_at,
                ttl=entry.expires_at - now,
            )

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # =========================================================================
    # Utility Methods (not part of interface, useful for testing)
    # =========================================================================

    def clear(self) -> None:
        """Clear all counters. Useful for resetting state between tests."""
        self._entries.clear()

    def keys(self) -> list[str]:
        """Get all keys whose window has not expired yet."""
        now = self._clock()
        return [k for k, e in self._entries.items() if now < e.expires_at]
