"""
Abstract base class for counter store backends.

This module defines the contract that all counter stores must follow.
Separating storage from the enforcement logic allows:
- Testing with the in-memory backend (no Redis needed)
- Sharing counters across server instances through Redis
- Running locally without external dependencies

The store is a fixed-window counter: each key counts requests from the
first hit until the window elapses, then starts over.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowState:
    """
    Snapshot of a counter right after an increment-and-check.

    Attributes:
        count: Requests recorded in the current window, including this one
            if it was admitted.
        allowed: Whether this request fit within the limit.
        reset_at: Unix timestamp when the current window expires.
        ttl: Seconds left in the current window, measured by the store's
            own clock.
    """

    count: int
    allowed: bool
    reset_at: float
    ttl: float


class StorageBackend(ABC):
    """
    Abstract base class for rate limit counter storage.

    Implementations must make `increment_and_check` atomic per key: two
    concurrent requests for the same key must never both observe a count
    below the limit when only one slot is left.

    Available implementations:
    - InMemoryBackend: For testing and development (single process)
    - RedisBackend: For production (distributed, Lua-scripted)

    Example:
        >>> backend = InMemoryBackend()  # for testing
        >>> strategy = FixedWindowStrategy(backend)

        >>> backend = RedisBackend(redis_client)  # for production
        >>> strategy = FixedWindowStrategy(backend)
    """

    @abstractmethod
    async def increment_and_check(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> WindowState:
        """
        Count one request against `key` if the window still has room.

        The counter is only incremented while it is below `limit`, so
        rejected requests neither inflate the count nor extend the window.
        The window starts on the first hit for a key and expires
        `window_seconds` later.

        Args:
            key: Counter key.
            limit: Maximum requests admitted per window.
            window_seconds: Window length in seconds.

        Returns:
            WindowState for this request.

        Raises:
            CounterStoreUnavailable: If the store cannot be reached.

        Example:
            >>> state = await backend.increment_and_check("ip:1.2.3.4", 5, 60)
            >>> state.count, state.allowed
            (1, True)
        """
        pass

    async def close(self) -> None:
        """Release any connections held by the backend."""
